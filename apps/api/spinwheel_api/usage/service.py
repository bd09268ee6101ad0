"""Monthly usage accountant and effective plan limits.

Usage rows are created lazily on the first access in a month; there is
no scheduled reset. Creation is an idempotent upsert keyed on
``(tenant_id, month)`` and counters only ever move up.
"""

import calendar
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from spinwheel_api.audit.service import CREATE_OVERRIDE, AuditTrail
from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.db.transaction import TransactionRunner
from spinwheel_api.db.upsert import insert_ignore
from spinwheel_api.errors import (
    AccessDenied,
    EngineError,
    InvalidRequest,
    NotFound,
    Outcome,
    PlanLimitReached,
)
from spinwheel_api.models import Tenant, TenantLimitOverride, TenantUsage
from spinwheel_api.utils.clock import as_naive_utc, month_key, previous_month_key, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UsageRecord:
    """Snapshot of one tenant's usage row."""

    tenant_id: int
    month: str
    campaigns_created: int
    spins_used: int

    @classmethod
    def from_row(cls, row: TenantUsage) -> "UsageRecord":
        return cls(
            tenant_id=row.tenant_id,
            month=row.month,
            campaigns_created=row.campaigns_created,
            spins_used=row.spins_used,
        )


@dataclass(frozen=True)
class EffectiveLimits:
    """Plan limits plus active overrides. ``None`` means unlimited."""

    spins_per_month: Optional[int]
    campaigns_per_month: Optional[int]
    override_bonus_spins: int
    override_bonus_vouchers: int


@dataclass(frozen=True)
class UsageTrend:
    """Current month usage compared with the previous month."""

    current: UsageRecord
    previous_spins_used: int
    previous_campaigns_created: int
    limits: EffectiveLimits
    spins_percentage: int
    spins_change: int
    campaigns_change: int
    days_until_reset: int


@dataclass(frozen=True)
class OverrideRecord:
    """Snapshot of a tenant limit override."""

    id: int
    tenant_id: int
    bonus_spins: int
    bonus_vouchers: int
    reason: str
    granted_by: str
    expires_at: Optional[datetime]
    is_active: bool
    created_at: datetime

    @classmethod
    def from_row(cls, row: TenantLimitOverride) -> "OverrideRecord":
        return cls(
            id=row.id,
            tenant_id=row.tenant_id,
            bonus_spins=row.bonus_spins,
            bonus_vouchers=row.bonus_vouchers,
            reason=row.reason,
            granted_by=row.granted_by,
            expires_at=row.expires_at,
            is_active=row.is_active,
            created_at=row.created_at,
        )


def ensure_month_row(db: Session, tenant_id: int, now: datetime, lock: bool = False) -> TenantUsage:
    """Create the usage row for the month of ``now`` if missing and return it."""
    month = month_key(now)
    created = insert_ignore(
        db,
        TenantUsage,
        {
            "tenant_id": tenant_id,
            "month": month,
            "campaigns_created": 0,
            "spins_used": 0,
            "created_at": now,
        },
        ["tenant_id", "month"],
    )
    if created:
        logger.info(f"Usage row created for {month}", extra={"tenant_id": tenant_id, "month": month})

    return _fetch_month_row(db, tenant_id, month, lock)


def _fetch_month_row(db: Session, tenant_id: int, month: str, lock: bool = False) -> TenantUsage:
    stmt = (
        select(TenantUsage)
        .where(TenantUsage.tenant_id == tenant_id, TenantUsage.month == month)
        .execution_options(populate_existing=True)
    )
    if lock:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalar_one()


def _increment(db: Session, tenant_id: int, now: datetime, column: str) -> TenantUsage:
    ensure_month_row(db, tenant_id, now)
    month = month_key(now)
    counter = getattr(TenantUsage, column)
    db.execute(
        update(TenantUsage)
        .where(TenantUsage.tenant_id == tenant_id, TenantUsage.month == month)
        .values({column: counter + 1})
        .execution_options(synchronize_session=False)
    )
    return _fetch_month_row(db, tenant_id, month)


def increment_spins_used(db: Session, tenant_id: int, now: datetime) -> TenantUsage:
    """Atomically add one spin to the current month, in the caller's transaction."""
    return _increment(db, tenant_id, now, "spins_used")


def increment_campaigns_created(db: Session, tenant_id: int, now: datetime) -> TenantUsage:
    """Atomically add one campaign to the current month, in the caller's transaction."""
    return _increment(db, tenant_id, now, "campaigns_created")


def active_overrides_query(tenant_id: int, now: datetime):
    return select(TenantLimitOverride).where(
        TenantLimitOverride.tenant_id == tenant_id,
        TenantLimitOverride.is_active.is_(True),
        or_(TenantLimitOverride.expires_at.is_(None), TenantLimitOverride.expires_at > now),
    )


def effective_limits(db: Session, tenant: Tenant, now: datetime) -> EffectiveLimits:
    """Base plan limits plus the bonus of every active, unexpired override."""
    overrides = db.execute(active_overrides_query(tenant.id, now)).scalars().all()
    bonus_spins = sum(o.bonus_spins for o in overrides)
    bonus_vouchers = sum(o.bonus_vouchers for o in overrides)

    spins_limit = None
    if tenant.spins_per_month is not None:
        spins_limit = tenant.spins_per_month + bonus_spins

    return EffectiveLimits(
        spins_per_month=spins_limit,
        campaigns_per_month=tenant.campaigns_per_month,
        override_bonus_spins=bonus_spins,
        override_bonus_vouchers=bonus_vouchers,
    )


def check_spin_allowance(db: Session, tenant: Tenant, now: datetime) -> TenantUsage:
    """Lock the month row and refuse when the spin allowance is used up."""
    usage = ensure_month_row(db, tenant.id, now, lock=True)
    limit = effective_limits(db, tenant, now).spins_per_month
    if limit is not None and usage.spins_used >= limit:
        raise PlanLimitReached(f"Monthly spin limit of {limit} reached")
    return usage


def check_campaign_allowance(db: Session, tenant: Tenant, now: datetime) -> TenantUsage:
    """Lock the month row and refuse when the campaign allowance is used up."""
    usage = ensure_month_row(db, tenant.id, now, lock=True)
    limit = effective_limits(db, tenant, now).campaigns_per_month
    if limit is not None and usage.campaigns_created >= limit:
        raise PlanLimitReached(f"Monthly campaign limit of {limit} reached")
    return usage


def days_until_reset(now: datetime) -> int:
    """Days until the first day of next month, rounded up."""
    last_day = calendar.monthrange(now.year, now.month)[1]
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    seconds_left = (last_day * 86400) - (now - start_of_month).total_seconds()
    return math.ceil(seconds_left / 86400)


def percentage_change(current: int, previous: int) -> int:
    if previous > 0:
        return round((current - previous) / previous * 100)
    return 100 if current > 0 else 0


class UsageService:
    """Public usage operations, each in its own transaction."""

    def __init__(self, db: Session):
        """Initialize service."""
        self.db = db

    def _run(self, operation: str, work) -> Outcome:
        try:
            return Outcome.success(TransactionRunner(self.db).run(operation, work))
        except EngineError as e:
            return Outcome.failure(e)

    @staticmethod
    def _tenant(db: Session, tenant_id: int) -> Tenant:
        tenant = db.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFound(f"Tenant {tenant_id} not found")
        return tenant

    def ensure_current_month(self, tenant_id: int) -> Outcome[UsageRecord]:
        """Materialize (if needed) and return the current month's usage."""

        def work(db: Session) -> UsageRecord:
            self._tenant(db, tenant_id)
            return UsageRecord.from_row(ensure_month_row(db, tenant_id, utcnow()))

        return self._run("ensure_current_month", work)

    def increment_campaigns_created(self, tenant_id: int) -> Outcome[UsageRecord]:
        """Add one to this month's campaign counter."""

        def work(db: Session) -> UsageRecord:
            self._tenant(db, tenant_id)
            return UsageRecord.from_row(increment_campaigns_created(db, tenant_id, utcnow()))

        return self._run("increment_campaigns_created", work)

    def increment_spins_used(self, tenant_id: int) -> Outcome[UsageRecord]:
        """Add one to this month's spin counter."""

        def work(db: Session) -> UsageRecord:
            self._tenant(db, tenant_id)
            return UsageRecord.from_row(increment_spins_used(db, tenant_id, utcnow()))

        return self._run("increment_spins_used", work)

    def usage_with_trend(self, actor: Actor, tenant_id: int) -> Outcome[UsageTrend]:
        """Current usage, limits and change against the previous month."""

        def work(db: Session) -> UsageTrend:
            if not actor.can_access_tenant(tenant_id):
                raise AccessDenied("Cannot read another tenant's usage")
            tenant = self._tenant(db, tenant_id)
            now = utcnow()
            current = ensure_month_row(db, tenant_id, now)
            previous = db.execute(
                select(TenantUsage).where(
                    TenantUsage.tenant_id == tenant_id,
                    TenantUsage.month == previous_month_key(now),
                )
            ).scalar_one_or_none()
            limits = effective_limits(db, tenant, now)

            previous_spins = previous.spins_used if previous else 0
            previous_campaigns = previous.campaigns_created if previous else 0
            spins_percentage = 0
            if limits.spins_per_month:
                spins_percentage = round(current.spins_used / limits.spins_per_month * 100)

            return UsageTrend(
                current=UsageRecord.from_row(current),
                previous_spins_used=previous_spins,
                previous_campaigns_created=previous_campaigns,
                limits=limits,
                spins_percentage=spins_percentage,
                spins_change=percentage_change(current.spins_used, previous_spins),
                campaigns_change=percentage_change(current.campaigns_created, previous_campaigns),
                days_until_reset=days_until_reset(now),
            )

        return self._run("usage_with_trend", work)

    def create_override(
        self,
        actor: Actor,
        tenant_id: int,
        bonus_spins: int,
        bonus_vouchers: int,
        reason: str,
        expires_at: Optional[datetime] = None,
    ) -> Outcome[OverrideRecord]:
        """Grant a tenant extra monthly allowance (super admin only)."""
        expires_at = as_naive_utc(expires_at)

        def work(db: Session) -> OverrideRecord:
            actor.require(ActorRole.SUPER_ADMIN)
            if bonus_spins < 0 or bonus_vouchers < 0:
                raise InvalidRequest("Bonus amounts must be non-negative")
            if bonus_spins == 0 and bonus_vouchers == 0:
                raise InvalidRequest("At least one bonus amount must be positive")
            if not reason or not reason.strip():
                raise InvalidRequest("Reason is required")
            now = utcnow()
            if expires_at is not None and expires_at <= now:
                raise InvalidRequest("Expiration date must be in the future")
            self._tenant(db, tenant_id)

            override = TenantLimitOverride(
                tenant_id=tenant_id,
                bonus_spins=bonus_spins,
                bonus_vouchers=bonus_vouchers,
                reason=reason.strip(),
                granted_by=actor.actor_id,
                expires_at=expires_at,
                is_active=True,
                created_at=now,
            )
            db.add(override)
            db.flush()

            AuditTrail(db).record_admin_action(
                actor.actor_id,
                CREATE_OVERRIDE,
                "TenantLimitOverride",
                str(override.id),
                tenant_id=tenant_id,
                changes={
                    "bonus_spins": bonus_spins,
                    "bonus_vouchers": bonus_vouchers,
                    "reason": override.reason,
                    "expires_at": expires_at.isoformat() if expires_at else None,
                },
            )
            logger.info(
                "Limit override created",
                extra={"tenant_id": tenant_id, "override_id": override.id, "admin_id": actor.actor_id},
            )
            return OverrideRecord.from_row(override)

        return self._run("create_override", work)

    def list_active_overrides(self, actor: Actor, tenant_id: int) -> Outcome[list[OverrideRecord]]:
        """Active, unexpired overrides for a tenant, newest first."""

        def work(db: Session) -> list[OverrideRecord]:
            if not actor.can_access_tenant(tenant_id):
                raise AccessDenied("Cannot read another tenant's overrides")
            self._tenant(db, tenant_id)
            rows = db.execute(
                active_overrides_query(tenant_id, utcnow()).order_by(
                    TenantLimitOverride.created_at.desc()
                )
            ).scalars().all()
            return [OverrideRecord.from_row(row) for row in rows]

        return self._run("list_active_overrides", work)
