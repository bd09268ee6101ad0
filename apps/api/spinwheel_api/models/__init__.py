"""Database models - import all models here for Alembic discovery."""

from spinwheel_api.models.audit import AdminAuditLog, AuditSequence, ManagerAuditLog
from spinwheel_api.models.campaign import Campaign, Prize, SocialTask
from spinwheel_api.models.end_user import BonusLedgerEntry, BonusSource, EndUser, Spin
from spinwheel_api.models.manager import CompletionStatus, Manager, TaskCompletion
from spinwheel_api.models.tenant import Tenant, TenantLimitOverride, TenantUsage
from spinwheel_api.models.voucher import Voucher

__all__ = [
    "Tenant",
    "TenantUsage",
    "TenantLimitOverride",
    "Campaign",
    "Prize",
    "SocialTask",
    "EndUser",
    "Spin",
    "BonusLedgerEntry",
    "BonusSource",
    "Manager",
    "TaskCompletion",
    "CompletionStatus",
    "ManagerAuditLog",
    "AdminAuditLog",
    "AuditSequence",
    "Voucher",
]
