"""Campaign, prize and social task models."""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from spinwheel_api.db.base import Base
from spinwheel_api.utils.clock import utcnow


class Campaign(Base):
    """Spin campaign owned by a tenant."""

    __tablename__ = "campaigns"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    spin_limit = Column(Integer, default=1, nullable=False)  # regular spins per cooldown window
    spin_cooldown_hours = Column(Integer, default=24, nullable=False)
    referrals_required_for_spin = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    tenant = relationship("Tenant", back_populates="campaigns")
    prizes = relationship("Prize", back_populates="campaign", order_by="Prize.position")
    tasks = relationship("SocialTask", back_populates="campaign")

    @property
    def accepts_spins(self) -> bool:
        return bool(self.is_active) and not self.is_archived


class Prize(Base):
    """Wheel segment. ``current_stock`` NULL means unlimited."""

    __tablename__ = "prizes"

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    probability = Column(Float, default=0.0, nullable=False)  # relative weight
    position = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_no_prize = Column(Boolean, default=False, nullable=False)  # "try again" segment
    current_stock = Column(Integer, nullable=True)
    daily_limit = Column(Integer, nullable=True)
    voucher_validity_days = Column(Integer, nullable=True)
    voucher_redemption_limit = Column(Integer, default=1, nullable=False)
    coupon_code = Column(String(100), nullable=True)

    __table_args__ = (
        CheckConstraint("current_stock IS NULL OR current_stock >= 0", name="ck_prizes_stock_non_negative"),
    )

    # Relationships
    campaign = relationship("Campaign", back_populates="prizes")


class SocialTask(Base):
    """Social media task that earns bonus spins once verified by a manager."""

    __tablename__ = "social_tasks"

    id = Column(Integer, primary_key=True, index=True)
    campaign_id = Column(Integer, ForeignKey("campaigns.id"), nullable=False, index=True)
    platform = Column(String(50), nullable=False)  # instagram, facebook, google
    action_type = Column(String(50), nullable=False)  # follow, review, share
    target_url = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    spins_reward = Column(Integer, default=1, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    # Relationships
    campaign = relationship("Campaign", back_populates="tasks")

    @property
    def label(self) -> str:
        return f"{self.platform} - {self.action_type}"
