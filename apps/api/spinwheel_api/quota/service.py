"""Entitlement facts loader and read-only entitlement service."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from spinwheel_api.db.transaction import TransactionRunner
from spinwheel_api.errors import AccessDenied, EngineError, NotFound, Outcome
from spinwheel_api.models import BonusLedgerEntry, BonusSource, Campaign, EndUser, Spin
from spinwheel_api.quota.calculator import Entitlement, EntitlementFacts, compute_entitlement
from spinwheel_api.utils.clock import utcnow

logger = logging.getLogger(__name__)


def ledger_totals(db: Session, user_id: int) -> tuple[int, int]:
    """Return ``(successful_referrals, bonus_spins_earned)`` summed from the ledger."""
    rows = db.execute(
        select(BonusLedgerEntry.source, func.coalesce(func.sum(BonusLedgerEntry.amount), 0))
        .where(BonusLedgerEntry.user_id == user_id)
        .group_by(BonusLedgerEntry.source)
    ).all()
    referrals = 0
    granted = 0
    for source, amount in rows:
        if BonusSource(source) == BonusSource.REFERRAL:
            referrals += int(amount)
        else:
            granted += int(amount)
    return referrals, granted


def load_facts(db: Session, user: EndUser, campaign: Campaign, now: datetime) -> EntitlementFacts:
    """Read every fact the calculator needs, inside the caller's transaction."""
    window_start = now - timedelta(hours=campaign.spin_cooldown_hours)
    regular_dates = db.execute(
        select(Spin.spin_date).where(
            Spin.user_id == user.id,
            Spin.campaign_id == campaign.id,
            Spin.is_referral_bonus.is_(False),
            Spin.spin_date >= window_start,
        )
    ).scalars().all()
    bonus_used = db.execute(
        select(func.count(Spin.id)).where(
            Spin.user_id == user.id,
            Spin.campaign_id == campaign.id,
            Spin.is_referral_bonus.is_(True),
        )
    ).scalar_one()
    referrals, granted = ledger_totals(db, user.id)

    return EntitlementFacts(
        spin_limit=campaign.spin_limit,
        cooldown_hours=campaign.spin_cooldown_hours,
        referrals_required_for_spin=campaign.referrals_required_for_spin,
        successful_referrals=referrals,
        bonus_spins_earned=granted,
        regular_spin_dates=tuple(regular_dates),
        bonus_spins_used=bonus_used,
    )


def load_user_and_campaign(db: Session, user_id: int, campaign_id: int) -> tuple[EndUser, Campaign]:
    """Fetch both rows and check they share a tenant."""
    user = db.get(EndUser, user_id)
    if user is None:
        raise NotFound(f"User {user_id} not found")
    campaign = db.get(Campaign, campaign_id)
    if campaign is None:
        raise NotFound(f"Campaign {campaign_id} not found")
    if user.tenant_id != campaign.tenant_id:
        raise AccessDenied("User and campaign belong to different tenants")
    return user, campaign


class EntitlementService:
    """Read-only entitlement queries."""

    def __init__(self, db: Session):
        """Initialize service."""
        self.db = db

    def compute_entitlement(self, user_id: int, campaign_id: int) -> Outcome[Entitlement]:
        """Compute the current entitlement for a (user, campaign) pair."""

        def work(db: Session) -> Entitlement:
            user, campaign = load_user_and_campaign(db, user_id, campaign_id)
            now = utcnow()
            return compute_entitlement(load_facts(db, user, campaign, now), now)

        try:
            entitlement = TransactionRunner(self.db).run("compute_entitlement", work)
        except EngineError as e:
            return Outcome.failure(e)
        return Outcome.success(entitlement)
