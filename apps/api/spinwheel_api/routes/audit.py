"""Audit log read routes."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from spinwheel_api.audit.service import AuditLogFilter, AuditPage, AuditTrail, Pagination
from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.db.session import get_db
from spinwheel_api.errors import AccessDenied
from spinwheel_api.routes.deps import current_actor

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/logs", response_model=AuditPage)
async def query_audit_logs(
    tenant_id: Optional[int] = None,
    manager_id: Optional[int] = None,
    action: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    actor: Actor = Depends(current_actor),
    db: Session = Depends(get_db),
):
    """Filtered, paginated manager audit entries."""
    log_filter = AuditLogFilter(
        tenant_id=tenant_id,
        manager_id=manager_id,
        action=action,
        start_date=start_date,
        end_date=end_date,
    )
    return AuditTrail(db).query_audit_logs(actor, log_filter, Pagination(page=page, limit=limit)).unwrap()


@router.get("/verify/{tenant_id}")
async def verify_chain(tenant_id: int, actor: Actor = Depends(current_actor), db: Session = Depends(get_db)):
    """Check the tenant's audit hash chain."""
    actor.require(ActorRole.SUPER_ADMIN, ActorRole.TENANT_ADMIN)
    if not actor.can_access_tenant(tenant_id):
        raise AccessDenied("Cannot verify another tenant's audit trail")
    valid, error = AuditTrail(db).verify_chain(tenant_id)
    return {"tenant_id": tenant_id, "valid": valid, "error": error}
