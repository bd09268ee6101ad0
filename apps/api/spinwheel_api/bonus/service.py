"""Bonus accrual: referral milestones, verified tasks, direct grants, overrides.

Every accrual is one ``BonusLedgerEntry`` with an idempotency key, so a
replayed event can never be counted twice. The counters on ``EndUser``
are denormalized from the ledger and move in the same transaction.
"""

import logging
import re
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from spinwheel_api.audit.service import GRANT, OVERRIDE_CREDIT, AuditTrail
from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.db.transaction import TransactionRunner
from spinwheel_api.db.upsert import insert_ignore
from spinwheel_api.errors import (
    AccessDenied,
    CapExceeded,
    EngineError,
    InvalidRequest,
    InvalidTransition,
    NotEligible,
    NotFound,
    Outcome,
)
from spinwheel_api.models import (
    BonusLedgerEntry,
    BonusSource,
    Campaign,
    EndUser,
    Manager,
    SocialTask,
    Spin,
    Tenant,
)
from spinwheel_api.models.end_user import MANAGER_SOURCES
from spinwheel_api.notifications.service import (
    BONUS_GRANTED,
    REFERRAL_MILESTONE,
    NotificationSink,
    dispatch,
)
from spinwheel_api.settings import get_settings
from spinwheel_api.utils.clock import start_of_day, utcnow
from spinwheel_api.utils.metrics import bonus_grants

logger = logging.getLogger(__name__)

PHONE_PATTERN = re.compile(r"^[0-9]{10,15}$")


def clean_phone(phone: Optional[str]) -> str:
    """Strip everything but digits and validate length."""
    digits = re.sub(r"\D", "", phone or "")
    if not PHONE_PATTERN.match(digits):
        raise InvalidRequest("Invalid phone number format")
    return digits


def referral_key(referred_user_id: int) -> str:
    return f"referral:{referred_user_id}"


def task_key(completion_id: int) -> str:
    return f"task:{completion_id}"


@dataclass(frozen=True)
class BonusBalance:
    """A user's bonus facts after an accrual."""

    user_id: int
    successful_referrals: int
    bonus_spins_earned: int
    manager_granted_total: int


@dataclass(frozen=True)
class RegistrationResult:
    """Outcome of registering an end user."""

    user_id: int
    created: bool
    referrer_id: Optional[int] = None
    referral_credited: bool = False
    milestone_reached: bool = False


def append_entry(
    db: Session,
    user: EndUser,
    source: BonusSource,
    amount: int,
    idempotency_key: str,
    manager_id: Optional[int] = None,
    reason: Optional[str] = None,
) -> bool:
    """Write a ledger entry and bump the matching counter.

    Returns False without touching anything if the key was already used.
    """
    created = insert_ignore(
        db,
        BonusLedgerEntry,
        {
            "tenant_id": user.tenant_id,
            "user_id": user.id,
            "source": source,
            "amount": amount,
            "idempotency_key": idempotency_key,
            "manager_id": manager_id,
            "reason": reason,
            "issued_at": utcnow(),
        },
        ["idempotency_key"],
    )
    if not created:
        return False

    if source == BonusSource.REFERRAL:
        values = {"successful_referrals": EndUser.successful_referrals + amount}
    else:
        values = {"bonus_spins_earned": EndUser.bonus_spins_earned + amount}
    db.execute(
        update(EndUser)
        .where(EndUser.id == user.id)
        .values(values)
        .execution_options(synchronize_session=False)
    )
    db.refresh(user)
    return True


def manager_granted_total(db: Session, tenant_id: int, user_id: int) -> int:
    """Bonus spins granted to a user by any manager of the tenant."""
    return db.execute(
        select(func.coalesce(func.sum(BonusLedgerEntry.amount), 0)).where(
            BonusLedgerEntry.tenant_id == tenant_id,
            BonusLedgerEntry.user_id == user_id,
            BonusLedgerEntry.source.in_(MANAGER_SOURCES),
        )
    ).scalar_one()


def lock_user(db: Session, user_id: int) -> EndUser:
    """Load and row-lock a user; the bonus balance is a hot resource."""
    user = db.execute(
        select(EndUser)
        .where(EndUser.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return user


def load_active_manager(db: Session, actor: Actor) -> Manager:
    """Resolve the acting manager; inactive or mismatched accounts are refused."""
    manager = db.get(Manager, actor.manager_id)
    if manager is None or not manager.is_active:
        raise AccessDenied("Manager account is not active")
    if manager.tenant_id != actor.tenant_id:
        raise AccessDenied("Manager does not belong to this tenant")
    return manager


def balance_of(db: Session, user: EndUser) -> BonusBalance:
    return BonusBalance(
        user_id=user.id,
        successful_referrals=user.successful_referrals,
        bonus_spins_earned=user.bonus_spins_earned,
        manager_granted_total=manager_granted_total(db, user.tenant_id, user.id),
    )


def credit_referral_in(db: Session, referred: EndUser) -> Optional[EndUser]:
    """Credit the referrer of ``referred`` once. Returns the referrer if credited."""
    if referred.referred_by_id is None:
        raise NotEligible("User was not referred")
    referrer = lock_user(db, referred.referred_by_id)
    if referrer.tenant_id != referred.tenant_id:
        raise AccessDenied("Cross-tenant referrals are not allowed")
    if referrer.id == referred.id:
        raise InvalidRequest("Users cannot refer themselves")

    if not append_entry(db, referrer, BonusSource.REFERRAL, 1, referral_key(referred.id)):
        logger.info(
            "Referral already credited",
            extra={"user_id": referred.id, "referrer_id": referrer.id},
        )
        return None
    return referrer


def apply_task_verification(
    db: Session,
    manager: Manager,
    user: EndUser,
    completion_id: int,
    task: SocialTask,
) -> int:
    """Credit a verified task, clamped to the manager's caps.

    Runs inside the approval transaction. Returns the spins granted.
    """
    already_granted = manager_granted_total(db, user.tenant_id, user.id)
    amount = min(
        task.spins_reward,
        manager.max_bonus_spins_per_approval,
        manager.max_spins_per_user - already_granted,
    )
    if amount <= 0:
        raise CapExceeded(
            f"User already holds {already_granted} manager-granted spins "
            f"(limit {manager.max_spins_per_user})"
        )
    if not append_entry(
        db,
        user,
        BonusSource.TASK_VERIFICATION,
        amount,
        task_key(completion_id),
        manager_id=manager.id,
        reason=f"Task verified: {task.label}",
    ):
        raise InvalidTransition("Task completion was already credited")
    return amount


class BonusService:
    """Public bonus accrual operations."""

    def __init__(self, db: Session, sink: Optional[NotificationSink] = None):
        """Initialize service."""
        self.db = db
        self.sink = sink

    def register_end_user(
        self,
        tenant_id: int,
        campaign_id: int,
        phone: str,
        name: Optional[str] = None,
        referral_code: Optional[str] = None,
    ) -> Outcome[RegistrationResult]:
        """Create a customer on first interaction and credit their referrer once."""

        def work(db: Session) -> RegistrationResult:
            cleaned = clean_phone(phone)
            tenant = db.get(Tenant, tenant_id)
            if tenant is None:
                raise NotFound(f"Tenant {tenant_id} not found")
            if not tenant.is_active or tenant.is_locked:
                raise AccessDenied("Tenant is not accepting registrations")
            campaign = db.get(Campaign, campaign_id)
            if campaign is None or campaign.tenant_id != tenant_id:
                raise NotFound(f"Campaign {campaign_id} not found")

            referrer = None
            if referral_code:
                code = re.sub(r"\D", "", referral_code)
                referrer = db.execute(
                    select(EndUser).where(EndUser.tenant_id == tenant_id, EndUser.referral_code == code)
                ).scalar_one_or_none()
                if referrer is None:
                    logger.info("Unknown referral code ignored", extra={"tenant_id": tenant_id})
                elif referrer.phone == cleaned:
                    referrer = None

            created = insert_ignore(
                db,
                EndUser,
                {
                    "tenant_id": tenant_id,
                    "phone": cleaned,
                    "name": name.strip() if name else None,
                    "referral_code": cleaned,
                    "referred_by_id": referrer.id if referrer else None,
                    "successful_referrals": 0,
                    "bonus_spins_earned": 0,
                    "created_at": utcnow(),
                },
                ["tenant_id", "phone"],
            )
            user = db.execute(
                select(EndUser).where(EndUser.tenant_id == tenant_id, EndUser.phone == cleaned)
            ).scalar_one()
            if not created or user.referred_by_id is None:
                return RegistrationResult(user_id=user.id, created=created)

            credited = credit_referral_in(db, user)
            milestone = False
            if credited is not None and campaign.referrals_required_for_spin > 0:
                milestone = credited.successful_referrals % campaign.referrals_required_for_spin == 0
            return RegistrationResult(
                user_id=user.id,
                created=True,
                referrer_id=user.referred_by_id,
                referral_credited=credited is not None,
                milestone_reached=milestone,
            )

        try:
            result = TransactionRunner(self.db).run("register_end_user", work)
        except EngineError as e:
            return Outcome.failure(e)

        if result.referral_credited:
            bonus_grants.labels(source=BonusSource.REFERRAL.value).inc()
            logger.info(
                "Referral credited",
                extra={"tenant_id": tenant_id, "user_id": result.user_id, "referrer_id": result.referrer_id},
            )
        if result.milestone_reached:
            dispatch(
                self.sink,
                result.referrer_id,
                REFERRAL_MILESTONE,
                {"campaign_id": campaign_id, "referred_user_id": result.user_id},
            )
        return Outcome.success(result)

    def credit_referral(self, referred_user_id: int) -> Outcome[bool]:
        """Replay-safe referral credit. Returns False if it was already applied."""

        def work(db: Session) -> bool:
            referred = db.get(EndUser, referred_user_id)
            if referred is None:
                raise NotFound(f"User {referred_user_id} not found")
            return credit_referral_in(db, referred) is not None

        try:
            credited = TransactionRunner(self.db).run("credit_referral", work)
        except EngineError as e:
            return Outcome.failure(e)
        if credited:
            bonus_grants.labels(source=BonusSource.REFERRAL.value).inc()
        return Outcome.success(credited)

    def grant_bonus(
        self, actor: Actor, user_id: int, amount: int, reason: Optional[str] = None
    ) -> Outcome[BonusBalance]:
        """Direct grant by a manager (standee / in-person use).

        Refused with CapExceeded when ``amount`` is above the per-approval
        cap, when the tenant-wide manager total for the user would pass
        ``max_spins_per_user``, or when this manager's grants to the user
        today would pass the daily ceiling.
        """
        settings = get_settings()

        def work(db: Session) -> BonusBalance:
            manager = load_active_manager(db, actor)
            user = lock_user(db, user_id)
            if user.tenant_id != manager.tenant_id:
                raise AccessDenied("User belongs to another tenant")
            if amount <= 0:
                raise InvalidRequest("Amount must be positive")
            if amount > manager.max_bonus_spins_per_approval:
                raise CapExceeded(
                    f"Amount {amount} exceeds per-grant limit of {manager.max_bonus_spins_per_approval}"
                )

            if settings.require_prior_spin_for_bonus:
                has_spun = db.execute(
                    select(Spin.id).where(Spin.user_id == user.id).limit(1)
                ).first()
                if has_spun is None:
                    raise NotEligible("User must spin at least once before receiving bonus spins")

            already_granted = manager_granted_total(db, user.tenant_id, user.id)
            if already_granted + amount > manager.max_spins_per_user:
                raise CapExceeded(
                    f"User already holds {already_granted} manager-granted spins "
                    f"(limit {manager.max_spins_per_user})"
                )

            ceiling = settings.direct_grant_daily_ceiling
            if ceiling is not None:
                granted_today = db.execute(
                    select(func.coalesce(func.sum(BonusLedgerEntry.amount), 0)).where(
                        BonusLedgerEntry.user_id == user.id,
                        BonusLedgerEntry.manager_id == manager.id,
                        BonusLedgerEntry.source == BonusSource.DIRECT_GRANT,
                        BonusLedgerEntry.issued_at >= start_of_day(utcnow()),
                    )
                ).scalar_one()
                if granted_today + amount > ceiling:
                    raise CapExceeded(f"Daily grant ceiling of {ceiling} reached for this user")

            append_entry(
                db,
                user,
                BonusSource.DIRECT_GRANT,
                amount,
                f"grant:{manager.id}:{user.id}:{uuid.uuid4().hex}",
                manager_id=manager.id,
                reason=reason,
            )
            AuditTrail(db).record_manager_action(
                manager.tenant_id,
                manager.id,
                GRANT,
                user_id=user.id,
                bonus_spins_granted=amount,
                comment=reason,
            )
            return balance_of(db, user)

        try:
            balance = TransactionRunner(self.db).run("grant_bonus", work)
        except EngineError as e:
            logger.info(
                f"Bonus grant refused: {e.code}",
                extra={"user_id": user_id, "actor_id": actor.actor_id, "amount": amount},
            )
            return Outcome.failure(e)

        bonus_grants.labels(source=BonusSource.DIRECT_GRANT.value).inc()
        logger.info(
            "Bonus spins granted",
            extra={"user_id": user_id, "manager_id": actor.actor_id, "amount": amount},
        )
        dispatch(self.sink, user_id, BONUS_GRANTED, {"amount": amount, "reason": reason})
        return Outcome.success(balance)

    def apply_override_credit(
        self, actor: Actor, user_id: int, amount: int, reason: str
    ) -> Outcome[BonusBalance]:
        """Goodwill credit by a super admin. Not subject to manager caps."""

        def work(db: Session) -> BonusBalance:
            actor.require(ActorRole.SUPER_ADMIN)
            if amount <= 0:
                raise InvalidRequest("Amount must be positive")
            if not reason or not reason.strip():
                raise InvalidRequest("Reason is required")
            user = lock_user(db, user_id)

            append_entry(
                db,
                user,
                BonusSource.OVERRIDE,
                amount,
                f"override:{user.id}:{uuid.uuid4().hex}",
                reason=reason.strip(),
            )
            AuditTrail(db).record_admin_action(
                actor.actor_id,
                OVERRIDE_CREDIT,
                "EndUser",
                str(user.id),
                tenant_id=user.tenant_id,
                changes={"bonus_spins": amount, "reason": reason.strip()},
            )
            return balance_of(db, user)

        try:
            balance = TransactionRunner(self.db).run("apply_override_credit", work)
        except EngineError as e:
            return Outcome.failure(e)

        bonus_grants.labels(source=BonusSource.OVERRIDE.value).inc()
        dispatch(self.sink, user_id, BONUS_GRANTED, {"amount": amount, "reason": reason})
        return Outcome.success(balance)
