"""Spin admission controller.

Entitlement check, plan limit check, prize stock decrement, the spin row
and the usage increment all happen in one transaction, so two concurrent
requests can never both consume the last unit of anything.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from spinwheel_api.bonus.service import lock_user
from spinwheel_api.db.transaction import TransactionRunner
from spinwheel_api.errors import (
    AccessDenied,
    CampaignInactive,
    EngineError,
    NotFound,
    Outcome,
    QuotaExhausted,
)
from spinwheel_api.models import Campaign, Spin
from spinwheel_api.notifications.service import SPIN_WON, NotificationSink, dispatch
from spinwheel_api.quota.calculator import Entitlement, compute_entitlement
from spinwheel_api.quota.service import load_facts
from spinwheel_api.spins.selection import available_prizes, choose_prize, take_stock
from spinwheel_api.usage.service import check_spin_allowance, increment_spins_used
from spinwheel_api.utils.clock import utcnow
from spinwheel_api.utils.metrics import prize_stock_misses, spin_admissions
from spinwheel_api.vouchers.service import issue_voucher

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpinRecord:
    """An admitted spin and what it yielded."""

    spin_id: int
    user_id: int
    campaign_id: int
    spin_date: datetime
    is_referral_bonus: bool
    won_prize: bool
    prize_id: Optional[int] = None
    prize_name: Optional[str] = None
    out_of_stock: bool = False
    voucher_code: Optional[str] = None
    remaining: Optional[Entitlement] = None


class SpinAdmissionController:
    """Gatekeeper for spins."""

    def __init__(
        self,
        db: Session,
        sink: Optional[NotificationSink] = None,
        rng: Optional[random.Random] = None,
    ):
        """Initialize controller."""
        self.db = db
        self.sink = sink
        self.rng = rng or random.SystemRandom()

    def admit_spin(self, user_id: int, campaign_id: int) -> Outcome[SpinRecord]:
        """Admit one spin for (user, campaign) or explain why not.

        Regular quota is consumed before the bonus pool because it expires
        with the cooldown window.
        """
        try:
            record = TransactionRunner(self.db).run(
                "admit_spin", lambda db: self._admit(db, user_id, campaign_id)
            )
        except EngineError as e:
            spin_admissions.labels(outcome=e.code).inc()
            logger.info(
                f"Spin refused: {e.code}",
                extra={"user_id": user_id, "campaign_id": campaign_id},
            )
            return Outcome.failure(e)

        spin_admissions.labels(outcome="ADMITTED").inc()
        if record.out_of_stock:
            prize_stock_misses.inc()
        logger.info(
            "Spin admitted",
            extra={
                "user_id": user_id,
                "campaign_id": campaign_id,
                "spin_id": record.spin_id,
                "won_prize": record.won_prize,
                "is_referral_bonus": record.is_referral_bonus,
            },
        )
        if record.won_prize:
            dispatch(
                self.sink,
                user_id,
                SPIN_WON,
                {
                    "campaign_id": campaign_id,
                    "prize_name": record.prize_name,
                    "voucher_code": record.voucher_code,
                },
            )
        return Outcome.success(record)

    def _admit(self, db: Session, user_id: int, campaign_id: int) -> SpinRecord:
        user = lock_user(db, user_id)
        campaign = db.get(Campaign, campaign_id)
        if campaign is None:
            raise NotFound(f"Campaign {campaign_id} not found")
        if campaign.tenant_id != user.tenant_id:
            raise AccessDenied("User and campaign belong to different tenants")

        tenant = campaign.tenant
        if tenant.is_locked:
            raise AccessDenied("Tenant is locked")
        if not tenant.is_active or not campaign.accepts_spins:
            raise CampaignInactive()

        now = utcnow()
        entitlement = compute_entitlement(load_facts(db, user, campaign, now), now)
        if entitlement.total <= 0:
            raise QuotaExhausted()
        check_spin_allowance(db, tenant, now)

        use_bonus = entitlement.regular_remaining == 0

        prize = choose_prize(available_prizes(db, campaign.id, now), self.rng)
        out_of_stock = False
        if prize is not None and not prize.is_no_prize and not take_stock(db, prize):
            prize = None
            out_of_stock = True
        won = prize is not None and not prize.is_no_prize

        spin = Spin(
            user_id=user.id,
            campaign_id=campaign.id,
            prize_id=prize.id if prize else None,
            spin_date=now,
            is_referral_bonus=use_bonus,
            won_prize=won,
        )
        db.add(spin)
        db.flush()
        increment_spins_used(db, tenant.id, now)

        voucher_code = None
        if won and prize.voucher_validity_days:
            voucher_code = issue_voucher(db, tenant, spin, prize, user).code

        if use_bonus:
            remaining = Entitlement(entitlement.regular_remaining, entitlement.bonus_remaining - 1)
        else:
            remaining = Entitlement(entitlement.regular_remaining - 1, entitlement.bonus_remaining)

        return SpinRecord(
            spin_id=spin.id,
            user_id=user.id,
            campaign_id=campaign.id,
            spin_date=spin.spin_date,
            is_referral_bonus=use_bonus,
            won_prize=won,
            prize_id=prize.id if prize else None,
            prize_name=prize.name if prize else None,
            out_of_stock=out_of_stock,
            voucher_code=voucher_code,
            remaining=remaining,
        )
