"""Seed data for development and testing."""

from sqlalchemy.orm import Session

from spinwheel_api.auth.pin import hash_pin
from spinwheel_api.models import Campaign, Manager, Prize, SocialTask, Tenant

DEMO_MANAGER_PIN = "1234"


def seed_tenant(db: Session) -> Tenant:
    """Seed the demo tenant with one campaign."""
    tenant = db.query(Tenant).filter(Tenant.slug == "demo").first()
    if tenant:
        print(f"✓ Demo tenant already exists: {tenant.slug}")
        return tenant

    tenant = Tenant(slug="demo", name="Demo Cafe", spins_per_month=1000, campaigns_per_month=5)
    db.add(tenant)
    db.flush()

    campaign = Campaign(
        tenant_id=tenant.id,
        name="Launch Week",
        spin_limit=1,
        spin_cooldown_hours=24,
        referrals_required_for_spin=3,
    )
    db.add(campaign)
    db.flush()

    prizes = [
        Prize(campaign_id=campaign.id, name="Free Coffee", probability=10, position=0,
              current_stock=50, daily_limit=10, voucher_validity_days=7),
        Prize(campaign_id=campaign.id, name="10% Off", probability=30, position=1,
              voucher_validity_days=30, voucher_redemption_limit=3),
        Prize(campaign_id=campaign.id, name="Try Again", probability=60, position=2, is_no_prize=True),
    ]
    db.add_all(prizes)
    db.add(
        SocialTask(
            campaign_id=campaign.id,
            platform="instagram",
            action_type="follow",
            target_url="https://instagram.com/demo",
            spins_reward=2,
        )
    )
    db.commit()
    print(f"✓ Created demo tenant: {tenant.slug} (ID: {tenant.id}), campaign ID: {campaign.id}")
    return tenant


def seed_manager(db: Session, tenant: Tenant) -> Manager:
    """Seed a demo manager."""
    manager = db.query(Manager).filter(Manager.username == "demo-manager").first()
    if manager:
        print(f"✓ Demo manager already exists: {manager.username}")
        return manager

    manager = Manager(
        tenant_id=tenant.id,
        name="Demo Manager",
        username="demo-manager",
        pin_hash=hash_pin(DEMO_MANAGER_PIN),
        max_bonus_spins_per_approval=5,
        max_spins_per_user=10,
    )
    db.add(manager)
    db.commit()
    print(f"✓ Created demo manager: {manager.username} (PIN: {DEMO_MANAGER_PIN})")
    return manager


def seed_all(db: Session):
    """Seed all initial data."""
    tenant = seed_tenant(db)
    seed_manager(db, tenant)
