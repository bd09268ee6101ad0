"""Audit trail: append-only write path, hash chain and paginated reads."""

import hashlib
import json
import logging
import math
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.db.transaction import TransactionRunner
from spinwheel_api.db.upsert import insert_ignore
from spinwheel_api.errors import AccessDenied, EngineError, InvalidRequest, Outcome
from spinwheel_api.models import AdminAuditLog, AuditSequence, ManagerAuditLog
from spinwheel_api.utils.clock import as_naive_utc, utcnow

logger = logging.getLogger(__name__)

# Manager actions
APPROVE = "APPROVE"
REJECT = "REJECT"
GRANT = "GRANT"

# Admin actions
CREATE_OVERRIDE = "CREATE_OVERRIDE"
VOID_VOUCHER = "VOID_VOUCHER"
OVERRIDE_CREDIT = "OVERRIDE_CREDIT"
LOCK_TENANT = "LOCK_TENANT"
UNLOCK_TENANT = "UNLOCK_TENANT"

MAX_PAGE_SIZE = 200


class AuditLogFilter(BaseModel):
    """Filter for audit log queries."""

    tenant_id: Optional[int] = None
    manager_id: Optional[int] = None
    action: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value)


class Pagination(BaseModel):
    """Page request (1-based)."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=50, ge=1, le=MAX_PAGE_SIZE)


class AuditEntry(BaseModel):
    """Read-only view of a manager audit row."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    manager_id: int
    tenant_id: int
    action: str
    task_completion_id: Optional[int] = None
    user_id: Optional[int] = None
    bonus_spins_granted: int
    comment: Optional[str] = None
    tenant_sequence: int
    event_hash: str
    created_at: datetime


class AuditPage(BaseModel):
    """A complete, consistently filtered page of audit entries."""

    model_config = ConfigDict(frozen=True)

    entries: tuple[AuditEntry, ...]
    page: int
    limit: int
    total: int
    total_pages: int
    has_more: bool


def _hash_event(event_data: dict) -> str:
    """Compute hash of event data."""
    event_str = json.dumps(event_data, sort_keys=True)
    return hashlib.sha256(event_str.encode()).hexdigest()


def _event_data(
    *,
    tenant_id: int,
    tenant_sequence: int,
    manager_id: int,
    action: str,
    task_completion_id: Optional[int],
    user_id: Optional[int],
    bonus_spins_granted: int,
    comment: Optional[str],
    previous_hash: Optional[str],
    created_at: datetime,
) -> dict:
    return {
        "tenant_id": tenant_id,
        "tenant_sequence": tenant_sequence,
        "manager_id": manager_id,
        "action": action,
        "task_completion_id": task_completion_id,
        "user_id": user_id,
        "bonus_spins_granted": bonus_spins_granted,
        "comment": comment,
        "previous_hash": previous_hash,
        "timestamp": created_at.isoformat(),
    }


class AuditTrail:
    """Append-only audit log for manager and admin actions.

    There is deliberately no update or delete method; the ORM guard in
    ``models.audit`` rejects any attempt made outside this class.
    Writes join the caller's transaction so a mutation and its audit row
    commit or roll back together.
    """

    def __init__(self, db: Session):
        """Initialize audit trail."""
        self.db = db

    def _lock_sequence(self, tenant_id: int) -> AuditSequence:
        """Fetch the tenant's chain head, creating it if needed, and lock it."""
        insert_ignore(
            self.db,
            AuditSequence,
            {"tenant_id": tenant_id, "last_sequence": 0, "updated_at": utcnow()},
            ["tenant_id"],
        )
        return self.db.execute(
            select(AuditSequence)
            .where(AuditSequence.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one()

    def record_manager_action(
        self,
        tenant_id: int,
        manager_id: int,
        action: str,
        *,
        task_completion_id: Optional[int] = None,
        user_id: Optional[int] = None,
        bonus_spins_granted: int = 0,
        comment: Optional[str] = None,
    ) -> ManagerAuditLog:
        """Append a manager audit row chained to the tenant's previous row."""
        head = self._lock_sequence(tenant_id)
        sequence = head.last_sequence + 1
        created_at = utcnow()

        event_hash = _hash_event(
            _event_data(
                tenant_id=tenant_id,
                tenant_sequence=sequence,
                manager_id=manager_id,
                action=action,
                task_completion_id=task_completion_id,
                user_id=user_id,
                bonus_spins_granted=bonus_spins_granted,
                comment=comment,
                previous_hash=head.last_event_hash,
                created_at=created_at,
            )
        )

        entry = ManagerAuditLog(
            manager_id=manager_id,
            tenant_id=tenant_id,
            action=action,
            task_completion_id=task_completion_id,
            user_id=user_id,
            bonus_spins_granted=bonus_spins_granted,
            comment=comment,
            tenant_sequence=sequence,
            event_hash=event_hash,
            previous_event_hash=head.last_event_hash,
            created_at=created_at,
        )
        self.db.add(entry)

        head.last_sequence = sequence
        head.last_event_hash = event_hash
        head.updated_at = created_at
        self.db.flush()

        logger.info(
            f"Audit {action} recorded",
            extra={"tenant_id": tenant_id, "manager_id": manager_id, "tenant_sequence": sequence},
        )
        return entry

    def record_admin_action(
        self,
        admin_id: str,
        action: str,
        target_type: str,
        target_id: str,
        *,
        tenant_id: Optional[int] = None,
        changes: Optional[dict] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AdminAuditLog:
        """Append a super admin audit row."""
        entry = AdminAuditLog(
            admin_id=admin_id,
            tenant_id=tenant_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            changes=changes,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=utcnow(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def query_audit_logs(
        self,
        actor: Actor,
        log_filter: Optional[AuditLogFilter] = None,
        pagination: Optional[Pagination] = None,
    ) -> Outcome[AuditPage]:
        """Return one page of manager audit rows visible to ``actor``."""
        log_filter = log_filter or AuditLogFilter()
        pagination = pagination or Pagination()
        try:
            scoped = self._scope_filter(actor, log_filter)
            page = TransactionRunner(self.db).run(
                "query_audit_logs", lambda db: self._read_page(db, scoped, pagination)
            )
        except EngineError as e:
            return Outcome.failure(e)
        return Outcome.success(page)

    def _scope_filter(self, actor: Actor, log_filter: AuditLogFilter) -> AuditLogFilter:
        """Restrict a filter to what the actor may see."""
        if log_filter.start_date and log_filter.end_date and log_filter.start_date > log_filter.end_date:
            raise InvalidRequest("start_date must not be after end_date")

        if actor.role == ActorRole.SUPER_ADMIN:
            return log_filter

        if log_filter.tenant_id is not None and log_filter.tenant_id != actor.tenant_id:
            raise AccessDenied("Cannot read another tenant's audit trail")
        scoped = log_filter.model_copy(update={"tenant_id": actor.tenant_id})

        if actor.role == ActorRole.MANAGER:
            if log_filter.manager_id is not None and log_filter.manager_id != actor.manager_id:
                raise AccessDenied("Managers can only read their own audit entries")
            scoped = scoped.model_copy(update={"manager_id": actor.manager_id})
        return scoped

    def _read_page(self, db: Session, log_filter: AuditLogFilter, pagination: Pagination) -> AuditPage:
        conditions = []
        if log_filter.tenant_id is not None:
            conditions.append(ManagerAuditLog.tenant_id == log_filter.tenant_id)
        if log_filter.manager_id is not None:
            conditions.append(ManagerAuditLog.manager_id == log_filter.manager_id)
        if log_filter.action:
            conditions.append(ManagerAuditLog.action == log_filter.action)
        if log_filter.start_date:
            conditions.append(ManagerAuditLog.created_at >= log_filter.start_date)
        if log_filter.end_date:
            conditions.append(ManagerAuditLog.created_at <= log_filter.end_date)

        total = db.execute(
            select(func.count()).select_from(ManagerAuditLog).where(*conditions)
        ).scalar_one()
        rows = db.execute(
            select(ManagerAuditLog)
            .where(*conditions)
            .order_by(ManagerAuditLog.created_at.desc(), ManagerAuditLog.id.desc())
            .offset((pagination.page - 1) * pagination.limit)
            .limit(pagination.limit)
        ).scalars().all()

        total_pages = math.ceil(total / pagination.limit) if total else 0
        return AuditPage(
            entries=tuple(AuditEntry.model_validate(row) for row in rows),
            page=pagination.page,
            limit=pagination.limit,
            total=total,
            total_pages=total_pages,
            has_more=pagination.page < total_pages,
        )

    def verify_chain(self, tenant_id: int) -> tuple[bool, Optional[str]]:
        """Verify hash chain integrity for a tenant."""
        events = self.db.execute(
            select(ManagerAuditLog)
            .where(ManagerAuditLog.tenant_id == tenant_id)
            .order_by(ManagerAuditLog.tenant_sequence.asc())
        ).scalars().all()

        previous_hash = None
        for expected_sequence, event in enumerate(events, start=1):
            if event.tenant_sequence != expected_sequence:
                return False, f"Sequence gap at {expected_sequence}"
            if event.previous_event_hash != previous_hash:
                return False, f"Broken link at sequence {event.tenant_sequence}"

            computed = _hash_event(
                _event_data(
                    tenant_id=event.tenant_id,
                    tenant_sequence=event.tenant_sequence,
                    manager_id=event.manager_id,
                    action=event.action,
                    task_completion_id=event.task_completion_id,
                    user_id=event.user_id,
                    bonus_spins_granted=event.bonus_spins_granted,
                    comment=event.comment,
                    previous_hash=event.previous_event_hash,
                    created_at=event.created_at,
                )
            )
            if computed != event.event_hash:
                return False, f"Hash mismatch at sequence {event.tenant_sequence}"
            previous_hash = event.event_hash

        return True, None
