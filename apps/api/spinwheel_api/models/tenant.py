"""Tenant, monthly usage and limit override models."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from spinwheel_api.db.base import Base
from spinwheel_api.utils.clock import utcnow


class Tenant(Base):
    """Tenant model for multi-tenancy."""

    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    slug = Column(String(100), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_locked = Column(Boolean, default=False, nullable=False)  # security lockout
    locked_reason = Column(Text, nullable=True)
    # Plan limits, NULL = unlimited
    spins_per_month = Column(Integer, nullable=True)
    campaigns_per_month = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    campaigns = relationship("Campaign", back_populates="tenant")
    overrides = relationship("TenantLimitOverride", back_populates="tenant")


class TenantUsage(Base):
    """Per-tenant counters for one calendar month. Created lazily."""

    __tablename__ = "tenant_usage"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    month = Column(String(7), nullable=False)  # YYYY-MM
    campaigns_created = Column(Integer, default=0, nullable=False)
    spins_used = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (UniqueConstraint("tenant_id", "month", name="uq_tenant_usage_month"),)


class TenantLimitOverride(Base):
    """Time-bounded extra allowance granted to a tenant by a super admin."""

    __tablename__ = "tenant_limit_overrides"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    bonus_spins = Column(Integer, default=0, nullable=False)
    bonus_vouchers = Column(Integer, default=0, nullable=False)
    reason = Column(Text, nullable=False)
    granted_by = Column(String(255), nullable=False)
    expires_at = Column(DateTime, nullable=True)  # NULL = permanent
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    tenant = relationship("Tenant", back_populates="overrides")
