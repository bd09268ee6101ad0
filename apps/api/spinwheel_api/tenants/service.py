"""Security lockout of whole tenants by a super admin."""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from spinwheel_api.audit.service import LOCK_TENANT, UNLOCK_TENANT, AuditTrail
from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.db.transaction import TransactionRunner
from spinwheel_api.errors import EngineError, InvalidRequest, InvalidTransition, NotFound, Outcome
from spinwheel_api.models import Tenant

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TenantStatus:
    id: int
    slug: str
    is_active: bool
    is_locked: bool
    locked_reason: Optional[str]

    @classmethod
    def from_row(cls, tenant: Tenant) -> "TenantStatus":
        return cls(
            id=tenant.id,
            slug=tenant.slug,
            is_active=tenant.is_active,
            is_locked=tenant.is_locked,
            locked_reason=tenant.locked_reason,
        )


class TenantService:
    """Lock and unlock tenants. A locked tenant admits no spins or registrations."""

    def __init__(self, db: Session):
        """Initialize service."""
        self.db = db

    @staticmethod
    def _lock_row(db: Session, tenant_id: int) -> Tenant:
        tenant = db.execute(
            select(Tenant)
            .where(Tenant.id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if tenant is None:
            raise NotFound(f"Tenant {tenant_id} not found")
        return tenant

    def _run(self, operation: str, work, actor: Actor, tenant_id: int) -> Outcome[TenantStatus]:
        try:
            status = TransactionRunner(self.db).run(operation, work)
        except EngineError as e:
            return Outcome.failure(e)
        logger.warning(
            f"Tenant {'locked' if status.is_locked else 'unlocked'}",
            extra={"tenant_id": tenant_id, "admin_id": actor.actor_id},
        )
        return Outcome.success(status)

    def lock_tenant(
        self,
        actor: Actor,
        tenant_id: int,
        reason: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Outcome[TenantStatus]:
        """Lock a tenant out of the engine until a super admin unlocks it."""

        def work(db: Session) -> TenantStatus:
            actor.require(ActorRole.SUPER_ADMIN)
            if not reason or not reason.strip():
                raise InvalidRequest("Reason is required")
            tenant = self._lock_row(db, tenant_id)
            if tenant.is_locked:
                raise InvalidTransition("Tenant is already locked")

            tenant.is_locked = True
            tenant.locked_reason = reason.strip()
            db.flush()
            AuditTrail(db).record_admin_action(
                actor.actor_id,
                LOCK_TENANT,
                "Tenant",
                str(tenant.id),
                tenant_id=tenant.id,
                changes={"is_locked": True, "reason": tenant.locked_reason},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return TenantStatus.from_row(tenant)

        return self._run("lock_tenant", work, actor, tenant_id)

    def unlock_tenant(
        self,
        actor: Actor,
        tenant_id: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Outcome[TenantStatus]:
        def work(db: Session) -> TenantStatus:
            actor.require(ActorRole.SUPER_ADMIN)
            tenant = self._lock_row(db, tenant_id)
            if not tenant.is_locked:
                raise InvalidTransition("Tenant is not locked")

            previous_reason = tenant.locked_reason
            tenant.is_locked = False
            tenant.locked_reason = None
            db.flush()
            AuditTrail(db).record_admin_action(
                actor.actor_id,
                UNLOCK_TENANT,
                "Tenant",
                str(tenant.id),
                tenant_id=tenant.id,
                changes={"is_locked": False, "previous_reason": previous_reason},
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return TenantStatus.from_row(tenant)

        return self._run("unlock_tenant", work, actor, tenant_id)
