"""Quota calculator: remaining spin entitlement from raw ledger facts."""

from dataclasses import dataclass
from datetime import datetime, timedelta


@dataclass(frozen=True)
class EntitlementFacts:
    """Ledger facts for one (user, campaign) pair.

    ``regular_spin_dates`` holds the timestamps of every non-bonus spin the
    user took in the campaign; the calculator applies the cooldown window.
    """

    spin_limit: int
    cooldown_hours: int
    referrals_required_for_spin: int
    successful_referrals: int
    bonus_spins_earned: int
    regular_spin_dates: tuple[datetime, ...]
    bonus_spins_used: int


@dataclass(frozen=True)
class Entitlement:
    """Spins a user may take right now."""

    regular_remaining: int
    bonus_remaining: int

    @property
    def total(self) -> int:
        return self.regular_remaining + self.bonus_remaining

    def to_dict(self) -> dict:
        return {
            "regular_remaining": self.regular_remaining,
            "bonus_remaining": self.bonus_remaining,
            "total": self.total,
        }


def bonus_earned(facts: EntitlementFacts) -> int:
    """Bonus spins earned from referral milestones plus granted spins."""
    from_referrals = 0
    if facts.referrals_required_for_spin > 0:
        from_referrals = facts.successful_referrals // facts.referrals_required_for_spin
    return from_referrals + facts.bonus_spins_earned


def compute_entitlement(facts: EntitlementFacts, now: datetime) -> Entitlement:
    """Compute remaining regular and bonus spins.

    Regular spins are counted inside the sliding cooldown window ending at
    ``now``. The bonus pool never expires.
    """
    window_start = now - timedelta(hours=facts.cooldown_hours)
    regular_used = sum(1 for spin_date in facts.regular_spin_dates if spin_date >= window_start)
    regular_remaining = max(0, facts.spin_limit - regular_used)
    bonus_remaining = max(0, bonus_earned(facts) - facts.bonus_spins_used)
    return Entitlement(regular_remaining=regular_remaining, bonus_remaining=bonus_remaining)
