"""Append-only audit models with hash chaining."""

from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, JSON, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Session, relationship

from spinwheel_api.db.base import Base
from spinwheel_api.errors import AuditImmutableError
from spinwheel_api.utils.clock import utcnow


class ManagerAuditLog(Base):
    """Immutable record of a manager decision or grant."""

    __tablename__ = "manager_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    manager_id = Column(Integer, ForeignKey("managers.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    action = Column(String(50), nullable=False, index=True)  # APPROVE, REJECT, GRANT
    task_completion_id = Column(Integer, ForeignKey("task_completions.id"), nullable=True, index=True)
    user_id = Column(Integer, ForeignKey("end_users.id"), nullable=True, index=True)
    bonus_spins_granted = Column(Integer, default=0, nullable=False)
    comment = Column(Text, nullable=True)
    tenant_sequence = Column(BigInteger, nullable=False)
    event_hash = Column(String(64), nullable=False, unique=True, index=True)
    previous_event_hash = Column(String(64), nullable=True)  # NULL for first event
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "tenant_sequence", name="uq_manager_audit_tenant_sequence"),
    )

    # Relationships
    manager = relationship("Manager")


class AdminAuditLog(Base):
    """Immutable record of a super admin action."""

    __tablename__ = "admin_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    admin_id = Column(String(255), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=True, index=True)
    action = Column(String(50), nullable=False, index=True)  # VOID_VOUCHER, CREATE_OVERRIDE, ...
    target_type = Column(String(50), nullable=False)
    target_id = Column(String(255), nullable=False)
    changes = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


IMMUTABLE_MODELS = (ManagerAuditLog, AdminAuditLog)


def _refuse(mapper, connection, target):
    raise AuditImmutableError(f"{type(target).__name__} rows are append-only")


for _model in IMMUTABLE_MODELS:
    event.listen(_model, "before_update", _refuse)
    event.listen(_model, "before_delete", _refuse)


@event.listens_for(Session, "do_orm_execute")
def _refuse_bulk_audit_writes(orm_execute_state):
    """Block ``update(...)`` / ``delete(...)`` statements against audit tables."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    for mapper in orm_execute_state.all_mappers:
        if mapper.class_ in IMMUTABLE_MODELS:
            raise AuditImmutableError(f"{mapper.class_.__name__} rows are append-only")


class AuditSequence(Base):
    """Per-tenant head of the manager audit hash chain."""

    __tablename__ = "audit_sequences"

    tenant_id = Column(Integer, ForeignKey("tenants.id"), primary_key=True)
    last_sequence = Column(BigInteger, default=0, nullable=False)
    last_event_hash = Column(String(64), nullable=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)
