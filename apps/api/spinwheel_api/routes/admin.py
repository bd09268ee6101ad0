"""Tenant admin and super admin routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.bonus.service import BonusService
from spinwheel_api.campaigns.service import CampaignService
from spinwheel_api.db.session import get_db
from spinwheel_api.notifications.service import NotificationSink
from spinwheel_api.routes.deps import current_actor, notification_sink
from spinwheel_api.routes.managers import BalanceResponse, VoucherResponse
from spinwheel_api.tenants.service import TenantService
from spinwheel_api.usage.service import UsageService
from spinwheel_api.vouchers.service import VoucherService

router = APIRouter(prefix="/admin", tags=["admin"])


class CampaignCreate(BaseModel):
    """Campaign creation request."""

    name: str
    spin_limit: int = Field(default=1, ge=0)
    spin_cooldown_hours: int = Field(default=24, gt=0)
    referrals_required_for_spin: int = Field(default=0, ge=0)


class CampaignResponse(BaseModel):
    """Campaign."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    name: str
    spin_limit: int
    spin_cooldown_hours: int
    referrals_required_for_spin: int
    is_active: bool
    is_archived: bool
    archived_at: Optional[datetime] = None


class OverrideCreate(BaseModel):
    """Tenant limit override request."""

    bonus_spins: int = Field(default=0, ge=0)
    bonus_vouchers: int = Field(default=0, ge=0)
    reason: str
    expires_at: Optional[datetime] = None


class OverrideResponse(BaseModel):
    """Tenant limit override."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    bonus_spins: int
    bonus_vouchers: int
    reason: str
    granted_by: str
    expires_at: Optional[datetime] = None
    is_active: bool
    created_at: datetime


class LockRequest(BaseModel):
    """Tenant lock request."""

    reason: str


class TenantStatusResponse(BaseModel):
    """Tenant lock state."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    is_active: bool
    is_locked: bool
    locked_reason: Optional[str] = None


class CreditRequest(BaseModel):
    """Goodwill credit to a customer."""

    amount: int = Field(gt=0)
    reason: str


class UsageResponse(BaseModel):
    """Usage snapshot with trend."""

    tenant_id: int
    month: str
    spins_used: int
    campaigns_created: int
    spins_limit: Optional[int] = None
    campaigns_limit: Optional[int] = None
    spins_percentage: int
    previous_spins_used: int
    previous_campaigns_created: int
    spins_change: int
    campaigns_change: int
    days_until_reset: int


def _client(request: Request) -> tuple[Optional[str], Optional[str]]:
    ip_address = request.headers.get("x-forwarded-for", "").split(",")[0].strip() or (
        request.client.host if request.client else None
    )
    return ip_address, request.headers.get("user-agent")


@router.post("/campaigns", response_model=CampaignResponse, status_code=status.HTTP_201_CREATED)
async def create_campaign(
    request: CampaignCreate, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)
):
    """Create a campaign (counts against the monthly plan)."""
    record = CampaignService(db).create_campaign(
        actor,
        request.name,
        spin_limit=request.spin_limit,
        spin_cooldown_hours=request.spin_cooldown_hours,
        referrals_required_for_spin=request.referrals_required_for_spin,
    ).unwrap()
    return CampaignResponse.model_validate(record)


@router.post("/campaigns/{campaign_id}/archive", response_model=CampaignResponse)
async def archive_campaign(campaign_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    """Archive a campaign."""
    return CampaignResponse.model_validate(CampaignService(db).archive_campaign(actor, campaign_id).unwrap())


@router.get("/tenants/{tenant_id}/usage", response_model=UsageResponse)
async def get_usage(tenant_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    """Current month usage compared with last month."""
    trend = UsageService(db).usage_with_trend(actor, tenant_id).unwrap()
    return UsageResponse(
        tenant_id=trend.current.tenant_id,
        month=trend.current.month,
        spins_used=trend.current.spins_used,
        campaigns_created=trend.current.campaigns_created,
        spins_limit=trend.limits.spins_per_month,
        campaigns_limit=trend.limits.campaigns_per_month,
        spins_percentage=trend.spins_percentage,
        previous_spins_used=trend.previous_spins_used,
        previous_campaigns_created=trend.previous_campaigns_created,
        spins_change=trend.spins_change,
        campaigns_change=trend.campaigns_change,
        days_until_reset=trend.days_until_reset,
    )


@router.get("/tenants/{tenant_id}/overrides", response_model=list[OverrideResponse])
async def list_overrides(tenant_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    """Active overrides for a tenant."""
    overrides = UsageService(db).list_active_overrides(actor, tenant_id).unwrap()
    return [OverrideResponse.model_validate(o) for o in overrides]


@router.post(
    "/tenants/{tenant_id}/overrides",
    response_model=OverrideResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_override(
    tenant_id: int,
    request: OverrideCreate,
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
):
    """Grant a tenant extra monthly allowance."""
    record = UsageService(db).create_override(
        actor,
        tenant_id,
        request.bonus_spins,
        request.bonus_vouchers,
        request.reason,
        expires_at=request.expires_at,
    ).unwrap()
    return OverrideResponse.model_validate(record)


@router.post("/vouchers/{voucher_id}/void", response_model=VoucherResponse)
async def void_voucher(
    voucher_id: int,
    request: Request,
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
):
    """Void an active voucher."""
    ip_address, user_agent = _client(request)
    view = VoucherService(db).void_voucher(
        actor, voucher_id, ip_address=ip_address, user_agent=user_agent
    ).unwrap()
    return VoucherResponse.model_validate(view)


@router.post("/users/{user_id}/credit", response_model=BalanceResponse)
async def credit_user(
    user_id: int,
    request: CreditRequest,
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
    sink: NotificationSink = Depends(notification_sink),
):
    """Goodwill bonus spins for a customer."""
    balance = BonusService(db, sink).apply_override_credit(
        actor, user_id, request.amount, request.reason
    ).unwrap()
    return BalanceResponse.model_validate(balance)


@router.post("/users/{user_id}/credit-referral")
async def credit_referral(user_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    """Replay a referral credit. A no-op if it was already applied."""
    actor.require(ActorRole.SUPER_ADMIN)
    credited = BonusService(db).credit_referral(user_id).unwrap()
    return {"user_id": user_id, "credited": credited}


@router.post("/tenants/{tenant_id}/lock", response_model=TenantStatusResponse)
async def lock_tenant(
    tenant_id: int,
    body: LockRequest,
    request: Request,
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
):
    """Lock a tenant. Spins and registrations are refused until it is unlocked."""
    ip_address, user_agent = _client(request)
    tenant_status = TenantService(db).lock_tenant(
        actor, tenant_id, body.reason, ip_address=ip_address, user_agent=user_agent
    ).unwrap()
    return TenantStatusResponse.model_validate(tenant_status)


@router.post("/tenants/{tenant_id}/unlock", response_model=TenantStatusResponse)
async def unlock_tenant(
    tenant_id: int,
    request: Request,
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
):
    """Lift a tenant lock."""
    ip_address, user_agent = _client(request)
    tenant_status = TenantService(db).unlock_tenant(
        actor, tenant_id, ip_address=ip_address, user_agent=user_agent
    ).unwrap()
    return TenantStatusResponse.model_validate(tenant_status)
