"""Tests for monthly usage accounting, overrides and campaign metering."""

import threading
from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select

from spinwheel_api.campaigns.service import CampaignService
from spinwheel_api.errors import AccessDenied, InvalidRequest, InvalidTransition, NotFound, PlanLimitReached
from spinwheel_api.models import AdminAuditLog, TenantLimitOverride, TenantUsage
from spinwheel_api.usage.service import UsageService, days_until_reset, effective_limits, percentage_change
from spinwheel_api.utils.clock import month_key, previous_month_key, utcnow

from factories import create_campaign, create_tenant, manager_actor


def usage_rows(db, tenant_id):
    return db.execute(
        select(func.count(TenantUsage.id)).where(TenantUsage.tenant_id == tenant_id)
    ).scalar_one()


class TestHelpers:
    def test_days_until_reset(self):
        assert days_until_reset(datetime(2026, 10, 19, 12, 0)) == 13
        assert days_until_reset(datetime(2026, 2, 28, 0, 0)) == 1

    def test_percentage_change(self):
        assert percentage_change(150, 100) == 50
        assert percentage_change(50, 100) == -50
        assert percentage_change(5, 0) == 100
        assert percentage_change(0, 0) == 0

    def test_previous_month_wraps_year(self):
        assert previous_month_key(datetime(2026, 1, 5)) == "2025-12"
        assert month_key(datetime(2026, 1, 5)) == "2026-01"


class TestEnsureCurrentMonth:
    """Lazy, idempotent month rows."""

    def test_creates_zeroed_row(self, db, tenant):
        record = UsageService(db).ensure_current_month(tenant.id).unwrap()

        assert record.month == month_key(utcnow())
        assert record.spins_used == 0
        assert record.campaigns_created == 0

    def test_repeated_calls_keep_one_row(self, db, tenant):
        service = UsageService(db)
        service.increment_spins_used(tenant.id).unwrap()

        for _ in range(3):
            record = service.ensure_current_month(tenant.id).unwrap()

        assert usage_rows(db, tenant.id) == 1
        assert record.spins_used == 1

    def test_unknown_tenant(self, db):
        outcome = UsageService(db).ensure_current_month(404)
        assert isinstance(outcome.error, NotFound)

    def test_concurrent_first_access_creates_one_row(self, file_session_factory):
        with file_session_factory() as session:
            tenant_id = create_tenant(session).id

        records = []
        lock = threading.Lock()
        barrier = threading.Barrier(8)

        def touch():
            with file_session_factory() as session:
                barrier.wait()
                outcome = UsageService(session).ensure_current_month(tenant_id)
            with lock:
                records.append(outcome.unwrap())

        threads = [threading.Thread(target=touch) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(records) == 8
        assert all(r.spins_used == 0 and r.campaigns_created == 0 for r in records)
        with file_session_factory() as session:
            assert usage_rows(session, tenant_id) == 1

    def test_concurrent_increments_are_not_lost(self, file_session_factory):
        with file_session_factory() as session:
            tenant_id = create_tenant(session).id

        barrier = threading.Barrier(6)

        def bump():
            with file_session_factory() as session:
                barrier.wait()
                UsageService(session).increment_spins_used(tenant_id).unwrap()

        threads = [threading.Thread(target=bump) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        with file_session_factory() as session:
            assert UsageService(session).ensure_current_month(tenant_id).unwrap().spins_used == 6


class TestUsageTrend:
    """Dashboard view of usage against limits."""

    def test_trend_against_previous_month(self, db, tenant, tenant_admin):
        tenant.spins_per_month = 10
        db.add(TenantUsage(tenant_id=tenant.id, month=previous_month_key(utcnow()), spins_used=4))
        db.commit()
        service = UsageService(db)
        service.increment_spins_used(tenant.id)
        service.increment_spins_used(tenant.id)

        trend = service.usage_with_trend(tenant_admin, tenant.id).unwrap()

        assert trend.current.spins_used == 2
        assert trend.previous_spins_used == 4
        assert trend.spins_change == -50
        assert trend.spins_percentage == 20
        assert trend.limits.spins_per_month == 10
        assert trend.days_until_reset >= 1

    def test_other_tenant_usage_hidden(self, db, tenant, tenant_admin):
        other = create_tenant(db, slug="globex")

        outcome = UsageService(db).usage_with_trend(tenant_admin, other.id)

        assert isinstance(outcome.error, AccessDenied)

    def test_super_admin_sees_any_tenant(self, db, tenant, super_admin):
        assert UsageService(db).usage_with_trend(super_admin, tenant.id).ok


class TestOverrides:
    """Super admin limit overrides."""

    def test_create_override_audits(self, db, tenant, super_admin):
        expires = utcnow() + timedelta(days=7)

        record = UsageService(db).create_override(
            super_admin, tenant.id, bonus_spins=100, bonus_vouchers=0, reason=" launch ", expires_at=expires
        ).unwrap()

        assert record.reason == "launch"
        assert record.granted_by == "admin-1"
        audit = db.execute(select(AdminAuditLog)).scalar_one()
        assert audit.action == "CREATE_OVERRIDE"
        assert audit.target_id == str(record.id)
        assert audit.changes["bonus_spins"] == 100

    def test_aware_expiry_is_stored_as_utc(self, db, tenant, super_admin):
        expires = datetime(2030, 1, 1, 5, 0, tzinfo=timezone(timedelta(hours=5)))

        record = UsageService(db).create_override(
            super_admin, tenant.id, bonus_spins=10, bonus_vouchers=0, reason="promo", expires_at=expires
        ).unwrap()

        assert record.expires_at == datetime(2030, 1, 1, 0, 0)

    def test_override_requires_super_admin(self, db, tenant, tenant_admin):
        outcome = UsageService(db).create_override(tenant_admin, tenant.id, 10, 0, "please")
        assert isinstance(outcome.error, AccessDenied)

    def test_override_validation(self, db, tenant, super_admin):
        service = UsageService(db)

        assert isinstance(service.create_override(super_admin, tenant.id, 0, 0, "x").error, InvalidRequest)
        assert isinstance(service.create_override(super_admin, tenant.id, -1, 5, "x").error, InvalidRequest)
        assert isinstance(service.create_override(super_admin, tenant.id, 1, 0, "").error, InvalidRequest)
        past = utcnow() - timedelta(hours=1)
        assert isinstance(
            service.create_override(super_admin, tenant.id, 1, 0, "x", expires_at=past).error, InvalidRequest
        )
        assert db.execute(select(func.count(TenantLimitOverride.id))).scalar_one() == 0

    def test_expired_and_inactive_overrides_ignored(self, db, tenant, super_admin):
        tenant.spins_per_month = 100
        now = utcnow()
        db.add_all(
            [
                TenantLimitOverride(tenant_id=tenant.id, bonus_spins=10, reason="a", granted_by="x"),
                TenantLimitOverride(
                    tenant_id=tenant.id, bonus_spins=20, reason="b", granted_by="x",
                    expires_at=now - timedelta(days=1),
                ),
                TenantLimitOverride(
                    tenant_id=tenant.id, bonus_spins=40, reason="c", granted_by="x", is_active=False
                ),
            ]
        )
        db.commit()

        limits = effective_limits(db, tenant, now)
        active = UsageService(db).list_active_overrides(super_admin, tenant.id).unwrap()

        assert limits.spins_per_month == 110
        assert limits.override_bonus_spins == 10
        assert [o.reason for o in active] == ["a"]

    def test_unlimited_plan_stays_unlimited(self, db, tenant):
        db.add(TenantLimitOverride(tenant_id=tenant.id, bonus_spins=10, reason="a", granted_by="x"))
        db.commit()

        assert effective_limits(db, tenant, utcnow()).spins_per_month is None


class TestCampaignMetering:
    """Campaign creation counts against the plan."""

    def test_create_increments_usage(self, db, tenant, tenant_admin):
        record = CampaignService(db).create_campaign(tenant_admin, "Autumn", spin_limit=2).unwrap()

        assert record.spin_limit == 2
        assert UsageService(db).ensure_current_month(tenant.id).unwrap().campaigns_created == 1

    def test_campaign_limit(self, db, tenant, tenant_admin):
        tenant.campaigns_per_month = 1
        db.commit()
        service = CampaignService(db)

        assert service.create_campaign(tenant_admin, "One").ok
        outcome = service.create_campaign(tenant_admin, "Two")

        assert isinstance(outcome.error, PlanLimitReached)
        assert UsageService(db).ensure_current_month(tenant.id).unwrap().campaigns_created == 1

    def test_only_tenant_admins_create(self, db, manager):
        outcome = CampaignService(db).create_campaign(manager_actor(manager), "Nope")
        assert isinstance(outcome.error, AccessDenied)

    def test_archive_is_one_way(self, db, campaign, tenant_admin):
        service = CampaignService(db)

        archived = service.archive_campaign(tenant_admin, campaign.id).unwrap()
        again = service.archive_campaign(tenant_admin, campaign.id)

        assert archived.is_archived is True
        assert archived.is_active is False
        assert isinstance(again.error, InvalidTransition)

    def test_archive_other_tenant_refused(self, db, tenant_admin):
        other = create_tenant(db, slug="globex")
        foreign = create_campaign(db, other)

        outcome = CampaignService(db).archive_campaign(tenant_admin, foreign.id)

        assert isinstance(outcome.error, AccessDenied)
