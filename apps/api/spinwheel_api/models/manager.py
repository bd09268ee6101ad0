"""Manager and task completion models."""

import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from spinwheel_api.db.base import Base
from spinwheel_api.utils.clock import utcnow


class Manager(Base):
    """Tenant staff account allowed to verify tasks and grant spins."""

    __tablename__ = "managers"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    username = Column(String(100), nullable=False, unique=True, index=True)
    pin_hash = Column(String(255), nullable=False)
    max_bonus_spins_per_approval = Column(Integer, default=10, nullable=False)
    max_spins_per_user = Column(Integer, default=5, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)  # deactivated, never deleted
    created_at = Column(DateTime, default=utcnow, nullable=False)


class CompletionStatus(str, enum.Enum):
    """Task completion review state. APPROVED and REJECTED are terminal."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class TaskCompletion(Base):
    """A customer's claim to have completed a social task."""

    __tablename__ = "task_completions"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    task_id = Column(Integer, ForeignKey("social_tasks.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("end_users.id"), nullable=False, index=True)
    status = Column(
        Enum(CompletionStatus, name="completion_status"),
        default=CompletionStatus.PENDING,
        nullable=False,
        index=True,
    )
    claimed_at = Column(DateTime, default=utcnow, nullable=False)
    verified_by = Column(Integer, ForeignKey("managers.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    verification_comment = Column(Text, nullable=True)

    __table_args__ = (UniqueConstraint("task_id", "user_id", name="uq_task_completion_user"),)

    # Relationships
    task = relationship("SocialTask")
    user = relationship("EndUser")
