"""End user, spin event and bonus ledger models."""

import enum

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from spinwheel_api.db.base import Base
from spinwheel_api.utils.clock import utcnow


class EndUser(Base):
    """Customer of a tenant who spins the wheel."""

    __tablename__ = "end_users"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    phone = Column(String(32), nullable=False)
    name = Column(String(255), nullable=True)
    referral_code = Column(String(32), nullable=False)
    referred_by_id = Column(Integer, ForeignKey("end_users.id"), nullable=True, index=True)
    # Denormalized from bonus_ledger_entries, updated in the same transaction
    successful_referrals = Column(Integer, default=0, nullable=False)
    bonus_spins_earned = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("tenant_id", "phone", name="uq_end_users_tenant_phone"),
        UniqueConstraint("tenant_id", "referral_code", name="uq_end_users_tenant_referral_code"),
    )

    # Relationships
    referred_by = relationship("EndUser", remote_side=[id])


class Spin(Base):
    """Immutable record of one admitted spin."""

    __tablename__ = "spins"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("end_users.id"), nullable=False, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    prize_id = Column(Integer, ForeignKey("prizes.id"), nullable=True, index=True)
    spin_date = Column(DateTime, default=utcnow, nullable=False, index=True)
    is_referral_bonus = Column(Boolean, default=False, nullable=False)  # consumed a bonus unit
    won_prize = Column(Boolean, default=False, nullable=False)

    __table_args__ = (Index("ix_spins_user_campaign_date", "user_id", "campaign_id", "spin_date"),)

    # Relationships
    prize = relationship("Prize")


class BonusSource(str, enum.Enum):
    """Where a bonus ledger entry came from."""

    REFERRAL = "REFERRAL"
    TASK_VERIFICATION = "TASK_VERIFICATION"
    DIRECT_GRANT = "DIRECT_GRANT"
    OVERRIDE = "OVERRIDE"


MANAGER_SOURCES = (BonusSource.TASK_VERIFICATION, BonusSource.DIRECT_GRANT)


class BonusLedgerEntry(Base):
    """One accrual towards a user's bonus pool.

    REFERRAL entries count referrals (converted to spins on read); every
    other source counts spins directly.
    """

    __tablename__ = "bonus_ledger_entries"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("end_users.id"), nullable=False, index=True)
    source = Column(Enum(BonusSource, name="bonus_source"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    idempotency_key = Column(String(255), nullable=False, unique=True, index=True)
    manager_id = Column(Integer, ForeignKey("managers.id"), nullable=True, index=True)
    reason = Column(Text, nullable=True)
    issued_at = Column(DateTime, default=utcnow, nullable=False, index=True)
