"""Customer-facing spin, entitlement and registration routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session

from spinwheel_api.bonus.service import BonusService
from spinwheel_api.db.session import get_db
from spinwheel_api.managers.service import ManagerWorkflow
from spinwheel_api.notifications.service import NotificationSink
from spinwheel_api.quota.service import EntitlementService
from spinwheel_api.routes.deps import notification_sink
from spinwheel_api.spins.service import SpinAdmissionController

router = APIRouter(tags=["spins"])


class SpinRequest(BaseModel):
    """Spin request."""

    user_id: int
    campaign_id: int


class EntitlementResponse(BaseModel):
    """Remaining spins."""

    model_config = ConfigDict(from_attributes=True)

    regular_remaining: int
    bonus_remaining: int
    total: int


class SpinResponse(BaseModel):
    """Admitted spin."""

    model_config = ConfigDict(from_attributes=True)

    spin_id: int
    user_id: int
    campaign_id: int
    spin_date: datetime
    is_referral_bonus: bool
    won_prize: bool
    prize_id: Optional[int] = None
    prize_name: Optional[str] = None
    out_of_stock: bool
    voucher_code: Optional[str] = None
    remaining: Optional[EntitlementResponse] = None


class RegisterRequest(BaseModel):
    """End user registration request."""

    tenant_id: int
    campaign_id: int
    phone: str
    name: Optional[str] = None
    referral_code: Optional[str] = None


class RegisterResponse(BaseModel):
    """End user registration result."""

    model_config = ConfigDict(from_attributes=True)

    user_id: int
    created: bool
    referrer_id: Optional[int] = None
    referral_credited: bool


class TaskSubmission(BaseModel):
    """Customer task claim."""

    user_id: int


@router.post("/spins", response_model=SpinResponse, status_code=status.HTTP_201_CREATED)
async def spin(
    request: SpinRequest,
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(notification_sink),
):
    """Spin the wheel."""
    record = SpinAdmissionController(db, sink).admit_spin(request.user_id, request.campaign_id).unwrap()
    return SpinResponse.model_validate(record)


@router.get("/users/{user_id}/entitlement", response_model=EntitlementResponse)
async def get_entitlement(user_id: int, campaign_id: int, db: Session = Depends(get_db)):
    """Remaining regular and bonus spins for a campaign."""
    entitlement = EntitlementService(db).compute_entitlement(user_id, campaign_id).unwrap()
    return EntitlementResponse.model_validate(entitlement)


@router.post("/users/register", response_model=RegisterResponse)
async def register_user(
    request: RegisterRequest,
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(notification_sink),
):
    """Register a customer on first interaction, crediting any referrer."""
    result = BonusService(db, sink).register_end_user(
        request.tenant_id,
        request.campaign_id,
        request.phone,
        name=request.name,
        referral_code=request.referral_code,
    ).unwrap()
    return RegisterResponse.model_validate(result)


@router.post("/tasks/{task_id}/completions", status_code=status.HTTP_201_CREATED)
async def submit_task(task_id: int, request: TaskSubmission, db: Session = Depends(get_db)):
    """Claim a social task for manager review."""
    summary = ManagerWorkflow(db).submit_task_completion(request.user_id, task_id).unwrap()
    return {"completion_id": summary.completion_id, "status": summary.status}
