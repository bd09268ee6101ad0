"""Manager routes: task review, direct grants and voucher redemption."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from spinwheel_api.audit.service import Pagination
from spinwheel_api.auth.actor import Actor
from spinwheel_api.bonus.service import BonusService
from spinwheel_api.db.session import get_db
from spinwheel_api.managers.service import ManagerWorkflow
from spinwheel_api.models import CompletionStatus
from spinwheel_api.notifications.service import NotificationSink
from spinwheel_api.routes.deps import current_actor, notification_sink
from spinwheel_api.vouchers.service import VoucherService

router = APIRouter(prefix="/manager", tags=["manager"])


class DecisionRequest(BaseModel):
    """Approve / reject request."""

    comment: str


class DecisionResponse(BaseModel):
    """Task decision."""

    model_config = ConfigDict(from_attributes=True)

    completion_id: int
    user_id: int
    status: str
    bonus_spins_granted: int


class TaskResponse(BaseModel):
    """Task completion summary."""

    model_config = ConfigDict(from_attributes=True)

    completion_id: int
    task_id: int
    task_label: str
    spins_reward: int
    user_id: int
    customer_name: Optional[str] = None
    customer_phone_last4: str
    status: str
    claimed_at: datetime
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    verification_comment: Optional[str] = None


class TaskPageResponse(BaseModel):
    """Page of task completions."""

    model_config = ConfigDict(from_attributes=True)

    items: list[TaskResponse]
    page: int
    limit: int
    total: int
    total_pages: int


class GrantRequest(BaseModel):
    """Direct bonus grant."""

    user_id: int
    amount: int = Field(gt=0)
    reason: Optional[str] = None


class BalanceResponse(BaseModel):
    """Bonus balance after a grant."""

    model_config = ConfigDict(from_attributes=True)

    user_id: int
    successful_referrals: int
    bonus_spins_earned: int
    manager_granted_total: int


class VoucherCodeRequest(BaseModel):
    """Voucher code."""

    code: str


class VoucherResponse(BaseModel):
    """Voucher details."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    tenant_id: int
    prize_name: str
    customer_phone_last4: str
    expires_at: datetime
    redemption_count: int
    redemption_limit: int
    is_redeemed: bool
    voided_at: Optional[datetime] = None


class VoucherCheckResponse(BaseModel):
    """Voucher validation result."""

    model_config = ConfigDict(from_attributes=True)

    valid: bool
    reason: Optional[str] = None
    voucher: Optional[VoucherResponse] = None


@router.get("/tasks", response_model=TaskPageResponse)
async def list_tasks(
    status: CompletionStatus = CompletionStatus.PENDING,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
):
    """Task completions in the manager's tenant."""
    result = ManagerWorkflow(db).list_tasks(actor, status, Pagination(page=page, limit=limit)).unwrap()
    return TaskPageResponse.model_validate(result)


@router.get("/tasks/{completion_id}", response_model=TaskResponse)
async def get_task(completion_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    """One task completion."""
    return TaskResponse.model_validate(ManagerWorkflow(db).get_task_detail(actor, completion_id).unwrap())


@router.post("/tasks/{completion_id}/approve", response_model=DecisionResponse)
async def approve_task(
    completion_id: int,
    request: DecisionRequest,
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(notification_sink),
):
    """Approve a pending completion."""
    decision = ManagerWorkflow(db, sink).approve_task(actor, completion_id, request.comment).unwrap()
    return DecisionResponse.model_validate(decision)


@router.post("/tasks/{completion_id}/reject", response_model=DecisionResponse)
async def reject_task(
    completion_id: int,
    request: DecisionRequest,
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(notification_sink),
):
    """Reject a pending completion."""
    decision = ManagerWorkflow(db, sink).reject_task(actor, completion_id, request.comment).unwrap()
    return DecisionResponse.model_validate(decision)


@router.post("/grants", response_model=BalanceResponse)
async def grant_bonus(
    request: GrantRequest,
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(notification_sink),
):
    """Grant bonus spins directly to a customer."""
    balance = BonusService(db, sink).grant_bonus(actor, request.user_id, request.amount, request.reason).unwrap()
    return BalanceResponse.model_validate(balance)


@router.post("/vouchers/validate", response_model=VoucherCheckResponse)
async def validate_voucher(
    request: VoucherCodeRequest, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)
):
    """Check a voucher code without redeeming it."""
    return VoucherCheckResponse.model_validate(VoucherService(db).validate_voucher(actor, request.code).unwrap())


@router.post("/vouchers/redeem", response_model=VoucherResponse)
async def redeem_voucher(
    request: VoucherCodeRequest, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)
):
    """Redeem one use of a voucher."""
    return VoucherResponse.model_validate(VoucherService(db).redeem_voucher(actor, request.code).unwrap())
