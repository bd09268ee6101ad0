"""Voucher model."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from spinwheel_api.db.base import Base
from spinwheel_api.utils.clock import utcnow


class Voucher(Base):
    """Voucher issued for a winning spin. Voided by moving ``expires_at`` to now."""

    __tablename__ = "vouchers"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    code = Column(String(64), nullable=False, unique=True, index=True)
    spin_id = Column(Integer, ForeignKey("spins.id"), nullable=False, unique=True)
    prize_id = Column(Integer, ForeignKey("prizes.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("end_users.id"), nullable=False, index=True)
    expires_at = Column(DateTime, nullable=False, index=True)
    redemption_limit = Column(Integer, default=1, nullable=False)
    redemption_count = Column(Integer, default=0, nullable=False)
    is_redeemed = Column(Boolean, default=False, nullable=False)
    redeemed_at = Column(DateTime, nullable=True)
    redeemed_by = Column(String(255), nullable=True)
    voided_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    prize = relationship("Prize")
    user = relationship("EndUser")
