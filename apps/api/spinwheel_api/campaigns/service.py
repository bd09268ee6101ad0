"""Campaign creation and archival, metered against the monthly plan."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.db.transaction import TransactionRunner
from spinwheel_api.errors import (
    AccessDenied,
    EngineError,
    InvalidRequest,
    InvalidTransition,
    NotFound,
    Outcome,
)
from spinwheel_api.models import Campaign, Tenant
from spinwheel_api.usage.service import check_campaign_allowance, increment_campaigns_created
from spinwheel_api.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CampaignRecord:
    id: int
    tenant_id: int
    name: str
    spin_limit: int
    spin_cooldown_hours: int
    referrals_required_for_spin: int
    is_active: bool
    is_archived: bool
    archived_at: Optional[datetime]

    @classmethod
    def from_row(cls, campaign: Campaign) -> "CampaignRecord":
        return cls(
            id=campaign.id,
            tenant_id=campaign.tenant_id,
            name=campaign.name,
            spin_limit=campaign.spin_limit,
            spin_cooldown_hours=campaign.spin_cooldown_hours,
            referrals_required_for_spin=campaign.referrals_required_for_spin,
            is_active=campaign.is_active,
            is_archived=campaign.is_archived,
            archived_at=campaign.archived_at,
        )


class CampaignService:
    """Tenant admin campaign lifecycle hooks."""

    def __init__(self, db: Session):
        """Initialize service."""
        self.db = db

    def create_campaign(
        self,
        actor: Actor,
        name: str,
        spin_limit: int = 1,
        spin_cooldown_hours: int = 24,
        referrals_required_for_spin: int = 0,
    ) -> Outcome[CampaignRecord]:
        """Create a campaign if the tenant's monthly allowance permits."""

        def work(db: Session) -> CampaignRecord:
            actor.require(ActorRole.TENANT_ADMIN)
            if not name or not name.strip():
                raise InvalidRequest("Campaign name is required")
            if spin_limit < 0 or spin_cooldown_hours <= 0 or referrals_required_for_spin < 0:
                raise InvalidRequest("Spin limit, cooldown and referral threshold must be non-negative")
            tenant = db.get(Tenant, actor.tenant_id)
            if tenant is None:
                raise NotFound("Tenant not found")
            if tenant.is_locked or not tenant.is_active:
                raise AccessDenied("Tenant is not active")

            now = utcnow()
            check_campaign_allowance(db, tenant, now)
            campaign = Campaign(
                tenant_id=tenant.id,
                name=name.strip(),
                spin_limit=spin_limit,
                spin_cooldown_hours=spin_cooldown_hours,
                referrals_required_for_spin=referrals_required_for_spin,
                is_active=True,
                is_archived=False,
                created_at=now,
            )
            db.add(campaign)
            db.flush()
            increment_campaigns_created(db, tenant.id, now)
            return CampaignRecord.from_row(campaign)

        try:
            record = TransactionRunner(self.db).run("create_campaign", work)
        except EngineError as e:
            return Outcome.failure(e)
        logger.info("Campaign created", extra={"tenant_id": record.tenant_id, "campaign_id": record.id})
        return Outcome.success(record)

    def archive_campaign(self, actor: Actor, campaign_id: int) -> Outcome[CampaignRecord]:
        """Archive a campaign. Archived campaigns admit no new spins."""

        def work(db: Session) -> CampaignRecord:
            actor.require(ActorRole.TENANT_ADMIN, ActorRole.SUPER_ADMIN)
            campaign = db.get(Campaign, campaign_id)
            if campaign is None:
                raise NotFound(f"Campaign {campaign_id} not found")
            if not actor.can_access_tenant(campaign.tenant_id):
                raise AccessDenied("Campaign belongs to another tenant")
            if campaign.is_archived:
                raise InvalidTransition("Campaign is already archived")
            campaign.is_archived = True
            campaign.is_active = False
            campaign.archived_at = utcnow()
            db.flush()
            return CampaignRecord.from_row(campaign)

        try:
            record = TransactionRunner(self.db).run("archive_campaign", work)
        except EngineError as e:
            return Outcome.failure(e)
        logger.info("Campaign archived", extra={"tenant_id": record.tenant_id, "campaign_id": record.id})
        return Outcome.success(record)
