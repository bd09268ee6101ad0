"""Manager approval workflow for social task completions.

PENDING -> APPROVED | REJECTED. Both targets are terminal. Each decision
writes exactly one audit row in the same transaction as the state change.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from spinwheel_api.audit.service import APPROVE, REJECT, AuditTrail, Pagination
from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.bonus.service import apply_task_verification, load_active_manager, lock_user
from spinwheel_api.db.transaction import TransactionRunner
from spinwheel_api.db.upsert import insert_ignore
from spinwheel_api.errors import (
    AccessDenied,
    EngineError,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    Outcome,
)
from spinwheel_api.models import BonusSource, CompletionStatus, EndUser, SocialTask, TaskCompletion
from spinwheel_api.notifications.service import (
    TASK_APPROVED,
    TASK_REJECTED,
    NotificationSink,
    dispatch,
)
from spinwheel_api.utils.clock import utcnow
from spinwheel_api.utils.metrics import bonus_grants, task_decisions

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaskSummary:
    """Task completion as shown to staff. Customer data is kept minimal."""

    completion_id: int
    task_id: int
    task_label: str
    spins_reward: int
    user_id: int
    customer_name: Optional[str]
    customer_phone_last4: str
    status: str
    claimed_at: datetime
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    verification_comment: Optional[str] = None

    @classmethod
    def from_row(cls, completion: TaskCompletion) -> "TaskSummary":
        return cls(
            completion_id=completion.id,
            task_id=completion.task_id,
            task_label=completion.task.label,
            spins_reward=completion.task.spins_reward,
            user_id=completion.user_id,
            customer_name=completion.user.name,
            customer_phone_last4=completion.user.phone[-4:],
            status=CompletionStatus(completion.status).value,
            claimed_at=completion.claimed_at,
            verified_by=completion.verified_by,
            verified_at=completion.verified_at,
            verification_comment=completion.verification_comment,
        )


@dataclass(frozen=True)
class TaskPage:
    """One page of task completions."""

    items: tuple[TaskSummary, ...]
    page: int
    limit: int
    total: int
    total_pages: int


@dataclass(frozen=True)
class TaskDecision:
    """Result of approving or rejecting a completion."""

    completion_id: int
    user_id: int
    status: str
    bonus_spins_granted: int


def _require_comment(comment: Optional[str]) -> str:
    if not comment or not comment.strip():
        raise InvalidRequest("A comment is required")
    return comment.strip()


def _lock_completion(db: Session, completion_id: int, tenant_id: int) -> TaskCompletion:
    completion = db.execute(
        select(TaskCompletion)
        .where(TaskCompletion.id == completion_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if completion is None:
        raise NotFound(f"Task completion {completion_id} not found")
    if completion.tenant_id != tenant_id:
        raise AccessDenied("Task completion belongs to another tenant")
    if completion.status != CompletionStatus.PENDING:
        raise InvalidTransition(
            f"Task completion is already {CompletionStatus(completion.status).value}"
        )
    return completion


class ManagerWorkflow:
    """Approve, reject and review task completions."""

    def __init__(self, db: Session, sink: Optional[NotificationSink] = None):
        """Initialize workflow."""
        self.db = db
        self.sink = sink

    def approve_task(self, actor: Actor, completion_id: int, comment: str) -> Outcome[TaskDecision]:
        """Approve a pending completion and credit the task reward."""

        def work(db: Session) -> TaskDecision:
            text = _require_comment(comment)
            manager = load_active_manager(db, actor)
            completion = _lock_completion(db, completion_id, manager.tenant_id)
            user = lock_user(db, completion.user_id)

            amount = apply_task_verification(db, manager, user, completion.id, completion.task)

            completion.status = CompletionStatus.APPROVED
            completion.verified_by = manager.id
            completion.verified_at = utcnow()
            completion.verification_comment = text
            db.flush()

            AuditTrail(db).record_manager_action(
                manager.tenant_id,
                manager.id,
                APPROVE,
                task_completion_id=completion.id,
                user_id=user.id,
                bonus_spins_granted=amount,
                comment=text,
            )
            return TaskDecision(
                completion_id=completion.id,
                user_id=user.id,
                status=CompletionStatus.APPROVED.value,
                bonus_spins_granted=amount,
            )

        try:
            decision = TransactionRunner(self.db).run("approve_task", work)
        except EngineError as e:
            logger.info(
                f"Approval refused: {e.code}",
                extra={"completion_id": completion_id, "actor_id": actor.actor_id},
            )
            return Outcome.failure(e)

        task_decisions.labels(decision="approved").inc()
        bonus_grants.labels(source=BonusSource.TASK_VERIFICATION.value).inc()
        logger.info(
            "Task approved",
            extra={
                "completion_id": completion_id,
                "manager_id": actor.actor_id,
                "bonus_spins_granted": decision.bonus_spins_granted,
            },
        )
        dispatch(
            self.sink,
            decision.user_id,
            TASK_APPROVED,
            {"completion_id": completion_id, "bonus_spins": decision.bonus_spins_granted},
        )
        return Outcome.success(decision)

    def reject_task(self, actor: Actor, completion_id: int, comment: str) -> Outcome[TaskDecision]:
        """Reject a pending completion. No balance change."""

        def work(db: Session) -> TaskDecision:
            text = _require_comment(comment)
            manager = load_active_manager(db, actor)
            completion = _lock_completion(db, completion_id, manager.tenant_id)

            completion.status = CompletionStatus.REJECTED
            completion.verified_by = manager.id
            completion.verified_at = utcnow()
            completion.verification_comment = text
            db.flush()

            AuditTrail(db).record_manager_action(
                manager.tenant_id,
                manager.id,
                REJECT,
                task_completion_id=completion.id,
                user_id=completion.user_id,
                bonus_spins_granted=0,
                comment=text,
            )
            return TaskDecision(
                completion_id=completion.id,
                user_id=completion.user_id,
                status=CompletionStatus.REJECTED.value,
                bonus_spins_granted=0,
            )

        try:
            decision = TransactionRunner(self.db).run("reject_task", work)
        except EngineError as e:
            return Outcome.failure(e)

        task_decisions.labels(decision="rejected").inc()
        logger.info("Task rejected", extra={"completion_id": completion_id, "manager_id": actor.actor_id})
        dispatch(self.sink, decision.user_id, TASK_REJECTED, {"completion_id": completion_id})
        return Outcome.success(decision)

    def list_tasks(
        self,
        actor: Actor,
        status: CompletionStatus = CompletionStatus.PENDING,
        pagination: Optional[Pagination] = None,
    ) -> Outcome[TaskPage]:
        """Completions in the actor's tenant with ``status``, oldest claim first."""
        pagination = pagination or Pagination()

        def work(db: Session) -> TaskPage:
            actor.require(ActorRole.MANAGER, ActorRole.TENANT_ADMIN)
            if actor.role == ActorRole.MANAGER:
                load_active_manager(db, actor)
            conditions = (TaskCompletion.tenant_id == actor.tenant_id, TaskCompletion.status == status)
            total = db.execute(
                select(func.count(TaskCompletion.id)).where(*conditions)
            ).scalar_one()
            rows = db.execute(
                select(TaskCompletion)
                .where(*conditions)
                .order_by(TaskCompletion.claimed_at.asc(), TaskCompletion.id.asc())
                .offset((pagination.page - 1) * pagination.limit)
                .limit(pagination.limit)
            ).scalars().all()
            return TaskPage(
                items=tuple(TaskSummary.from_row(row) for row in rows),
                page=pagination.page,
                limit=pagination.limit,
                total=total,
                total_pages=math.ceil(total / pagination.limit) if total else 0,
            )

        try:
            return Outcome.success(TransactionRunner(self.db).run("list_tasks", work))
        except EngineError as e:
            return Outcome.failure(e)

    def get_task_detail(self, actor: Actor, completion_id: int) -> Outcome[TaskSummary]:
        """One completion from the actor's tenant."""

        def work(db: Session) -> TaskSummary:
            actor.require(ActorRole.MANAGER, ActorRole.TENANT_ADMIN)
            completion = db.get(TaskCompletion, completion_id)
            if completion is None:
                raise NotFound(f"Task completion {completion_id} not found")
            if completion.tenant_id != actor.tenant_id:
                raise AccessDenied("Task completion belongs to another tenant")
            return TaskSummary.from_row(completion)

        try:
            return Outcome.success(TransactionRunner(self.db).run("get_task_detail", work))
        except EngineError as e:
            return Outcome.failure(e)

    def submit_task_completion(self, user_id: int, task_id: int) -> Outcome[TaskSummary]:
        """Customer claims a task. One claim per user per task."""

        def work(db: Session) -> TaskSummary:
            user = db.get(EndUser, user_id)
            if user is None:
                raise NotFound(f"User {user_id} not found")
            task = db.get(SocialTask, task_id)
            if task is None or not task.is_active:
                raise NotFound(f"Task {task_id} not found")
            if task.campaign.tenant_id != user.tenant_id:
                raise AccessDenied("Task belongs to another tenant")

            created = insert_ignore(
                db,
                TaskCompletion,
                {
                    "tenant_id": user.tenant_id,
                    "task_id": task.id,
                    "user_id": user.id,
                    "status": CompletionStatus.PENDING,
                    "claimed_at": utcnow(),
                },
                ["task_id", "user_id"],
            )
            if not created:
                raise InvalidTransition("Task was already submitted")
            completion = db.execute(
                select(TaskCompletion).where(
                    TaskCompletion.task_id == task.id, TaskCompletion.user_id == user.id
                )
            ).scalar_one()
            return TaskSummary.from_row(completion)

        try:
            return Outcome.success(TransactionRunner(self.db).run("submit_task_completion", work))
        except EngineError as e:
            return Outcome.failure(e)
