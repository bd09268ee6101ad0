"""Tests for tenant security lockout."""

from spinwheel_api.bonus.service import BonusService
from spinwheel_api.errors import AccessDenied, InvalidRequest, InvalidTransition, NotFound
from spinwheel_api.models import AdminAuditLog, Tenant
from spinwheel_api.spins.service import SpinAdmissionController
from spinwheel_api.tenants.service import TenantService


class TestLockTenant:
    def test_lock_records_reason_and_audit(self, db, tenant, super_admin):
        status = TenantService(db).lock_tenant(
            super_admin, tenant.id, "  credential stuffing  ", ip_address="10.0.0.1"
        ).unwrap()

        assert status.is_locked is True
        assert status.locked_reason == "credential stuffing"
        entry = db.query(AdminAuditLog).one()
        assert entry.action == "LOCK_TENANT"
        assert entry.target_id == str(tenant.id)
        assert entry.ip_address == "10.0.0.1"
        assert entry.changes == {"is_locked": True, "reason": "credential stuffing"}

    def test_locked_tenant_refuses_spins_and_registrations(self, db, tenant, campaign, user, super_admin):
        tenant_id, campaign_id, user_id = tenant.id, campaign.id, user.id
        TenantService(db).lock_tenant(super_admin, tenant_id, "abuse").unwrap()

        spin = SpinAdmissionController(db).admit_spin(user_id, campaign_id)
        registration = BonusService(db).register_end_user(tenant_id, campaign_id, "5550009999")

        assert isinstance(spin.error, AccessDenied)
        assert isinstance(registration.error, AccessDenied)

    def test_second_lock_is_refused(self, db, tenant, super_admin):
        service = TenantService(db)
        service.lock_tenant(super_admin, tenant.id, "abuse").unwrap()

        outcome = service.lock_tenant(super_admin, tenant.id, "again")

        assert isinstance(outcome.error, InvalidTransition)
        assert db.query(AdminAuditLog).count() == 1

    def test_reason_required(self, db, tenant, super_admin):
        outcome = TenantService(db).lock_tenant(super_admin, tenant.id, "  ")

        assert isinstance(outcome.error, InvalidRequest)
        assert db.get(Tenant, tenant.id).is_locked is False

    def test_only_super_admin(self, db, tenant, tenant_admin):
        outcome = TenantService(db).lock_tenant(tenant_admin, tenant.id, "abuse")

        assert isinstance(outcome.error, AccessDenied)
        assert db.query(AdminAuditLog).count() == 0

    def test_unknown_tenant(self, db, super_admin):
        outcome = TenantService(db).lock_tenant(super_admin, 4242, "abuse")

        assert isinstance(outcome.error, NotFound)


class TestUnlockTenant:
    def test_unlock_restores_spins(self, db, tenant, campaign, user, super_admin):
        tenant_id, campaign_id, user_id = tenant.id, campaign.id, user.id
        service = TenantService(db)
        service.lock_tenant(super_admin, tenant_id, "abuse").unwrap()

        status = service.unlock_tenant(super_admin, tenant_id).unwrap()
        spin = SpinAdmissionController(db).admit_spin(user_id, campaign_id)

        assert status.is_locked is False
        assert status.locked_reason is None
        assert spin.ok
        actions = [e.action for e in db.query(AdminAuditLog).order_by(AdminAuditLog.id)]
        assert actions == ["LOCK_TENANT", "UNLOCK_TENANT"]

    def test_unlocking_an_unlocked_tenant_is_refused(self, db, tenant, super_admin):
        outcome = TenantService(db).unlock_tenant(super_admin, tenant.id)

        assert isinstance(outcome.error, InvalidTransition)
        assert db.query(AdminAuditLog).count() == 0
