"""Tests for the audit trail."""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import delete, text, update

from spinwheel_api.audit.service import AuditLogFilter, AuditTrail, Pagination
from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.errors import AccessDenied, AuditImmutableError, InvalidRequest
from spinwheel_api.models import AdminAuditLog, ManagerAuditLog
from spinwheel_api.utils.clock import utcnow

from factories import create_manager, create_tenant, manager_actor


def record(db, manager, action="GRANT", **kwargs):
    entry = AuditTrail(db).record_manager_action(manager.tenant_id, manager.id, action, **kwargs)
    db.commit()
    return entry


class TestImmutability:
    """Audit rows can be appended but never changed."""

    def test_update_through_orm_is_refused(self, db, manager):
        entry = record(db, manager)

        entry.comment = "rewritten"
        with pytest.raises(AuditImmutableError):
            db.flush()
        db.rollback()

    def test_delete_through_orm_is_refused(self, db, manager):
        entry = record(db, manager)

        db.delete(entry)
        with pytest.raises(AuditImmutableError):
            db.flush()
        db.rollback()

    def test_bulk_statements_are_refused(self, db, manager):
        record(db, manager)

        with pytest.raises(AuditImmutableError):
            db.execute(update(ManagerAuditLog).values(comment="rewritten"))
        with pytest.raises(AuditImmutableError):
            db.execute(delete(AdminAuditLog))

    def test_no_mutation_api(self):
        public = {name for name in dir(AuditTrail) if not name.startswith("_")}
        assert public == {"record_manager_action", "record_admin_action", "query_audit_logs", "verify_chain"}


class TestHashChain:
    """Per-tenant hash chain."""

    def test_sequences_and_links(self, db, manager):
        first = record(db, manager, comment="one")
        second = record(db, manager, comment="two")

        assert (first.tenant_sequence, second.tenant_sequence) == (1, 2)
        assert first.previous_event_hash is None
        assert second.previous_event_hash == first.event_hash
        assert AuditTrail(db).verify_chain(manager.tenant_id) == (True, None)

    def test_chains_are_per_tenant(self, db, manager):
        other = create_tenant(db, slug="globex")
        outsider = create_manager(db, other, username="outsider")
        record(db, manager)

        entry = record(db, outsider)

        assert entry.tenant_sequence == 1
        assert entry.previous_event_hash is None

    def test_tampering_is_detected(self, db, manager):
        record(db, manager, bonus_spins_granted=1)
        second = record(db, manager, bonus_spins_granted=2)
        record(db, manager, bonus_spins_granted=3)

        db.execute(
            text("UPDATE manager_audit_logs SET bonus_spins_granted = 20 WHERE id = :id"),
            {"id": second.id},
        )
        db.commit()

        assert AuditTrail(db).verify_chain(manager.tenant_id) == (False, "Hash mismatch at sequence 2")

    def test_removed_row_is_detected(self, db, manager):
        record(db, manager)
        second = record(db, manager)
        record(db, manager)

        db.execute(text("DELETE FROM manager_audit_logs WHERE id = :id"), {"id": second.id})
        db.commit()

        valid, message = AuditTrail(db).verify_chain(manager.tenant_id)
        assert valid is False
        assert message == "Sequence gap at 2"

    def test_empty_chain_is_valid(self, db, tenant):
        assert AuditTrail(db).verify_chain(tenant.id) == (True, None)


class TestQueryAuditLogs:
    """Scoped, paginated reads."""

    def test_manager_sees_only_own_rows(self, db, tenant, manager):
        colleague = create_manager(db, tenant, username="colleague")
        record(db, manager)
        record(db, colleague)
        record(db, colleague)

        page = AuditTrail(db).query_audit_logs(manager_actor(manager)).unwrap()

        assert page.total == 1
        assert page.entries[0].manager_id == manager.id

    def test_manager_cannot_ask_for_colleague(self, db, tenant, manager):
        colleague = create_manager(db, tenant, username="colleague")

        outcome = AuditTrail(db).query_audit_logs(
            manager_actor(manager), AuditLogFilter(manager_id=colleague.id)
        )

        assert isinstance(outcome.error, AccessDenied)

    def test_tenant_admin_scoped_to_tenant(self, db, tenant, manager, tenant_admin):
        other = create_tenant(db, slug="globex")
        outsider = create_manager(db, other, username="outsider")
        record(db, manager)
        record(db, outsider)
        trail = AuditTrail(db)

        page = trail.query_audit_logs(tenant_admin).unwrap()
        foreign = trail.query_audit_logs(tenant_admin, AuditLogFilter(tenant_id=other.id))

        assert page.total == 1
        assert isinstance(foreign.error, AccessDenied)

    def test_super_admin_sees_everything(self, db, manager, super_admin):
        other = create_tenant(db, slug="globex")
        record(db, manager)
        record(db, create_manager(db, other, username="outsider"))

        page = AuditTrail(db).query_audit_logs(super_admin).unwrap()

        assert page.total == 2

    def test_pagination_newest_first(self, db, manager, tenant_admin):
        for i in range(5):
            record(db, manager, comment=str(i))

        page = AuditTrail(db).query_audit_logs(
            tenant_admin, pagination=Pagination(page=1, limit=2)
        ).unwrap()
        last = AuditTrail(db).query_audit_logs(
            tenant_admin, pagination=Pagination(page=3, limit=2)
        ).unwrap()

        assert [e.comment for e in page.entries] == ["4", "3"]
        assert page.total_pages == 3
        assert page.has_more is True
        assert [e.comment for e in last.entries] == ["0"]
        assert last.has_more is False

    def test_filters_by_action_and_dates(self, db, manager, tenant_admin):
        record(db, manager, action="GRANT")
        record(db, manager, action="REJECT")
        now = utcnow()
        trail = AuditTrail(db)

        grants = trail.query_audit_logs(tenant_admin, AuditLogFilter(action="GRANT")).unwrap()
        future = trail.query_audit_logs(
            tenant_admin, AuditLogFilter(start_date=now + timedelta(hours=1))
        ).unwrap()

        assert grants.total == 1
        assert future.total == 0

    def test_offset_dates_are_compared_in_utc(self, db, manager, tenant_admin):
        record(db, manager, action="GRANT")
        plus_five = timezone(timedelta(hours=5))
        an_hour_ago = datetime.now(timezone.utc) - timedelta(hours=1)
        trail = AuditTrail(db)

        offset_start = trail.query_audit_logs(
            tenant_admin, AuditLogFilter(start_date=an_hour_ago.astimezone(plus_five))
        ).unwrap()
        mixed = trail.query_audit_logs(
            tenant_admin,
            AuditLogFilter(
                start_date=an_hour_ago.astimezone(plus_five),
                end_date=utcnow() + timedelta(hours=1),
            ),
        ).unwrap()

        assert offset_start.total == 1
        assert mixed.total == 1

    def test_filter_dates_are_stored_as_naive_utc(self):
        log_filter = AuditLogFilter(start_date="2026-10-19T13:00:00+05:00")

        assert log_filter.start_date == datetime(2026, 10, 19, 8, 0)

    def test_inverted_date_range(self, db, tenant_admin):
        now = utcnow()

        outcome = AuditTrail(db).query_audit_logs(
            tenant_admin, AuditLogFilter(start_date=now, end_date=now - timedelta(days=1))
        )

        assert isinstance(outcome.error, InvalidRequest)

    def test_page_size_is_bounded(self):
        with pytest.raises(ValueError):
            Pagination(limit=500)


def test_admin_actions_are_not_chained(db, tenant):
    admin = Actor(actor_id="root", tenant_id=None, role=ActorRole.SUPER_ADMIN)

    entry = AuditTrail(db).record_admin_action(
        admin.actor_id, "VOID_VOUCHER", "Voucher", "7", tenant_id=tenant.id, changes={"a": 1}
    )
    db.commit()

    assert entry.id is not None
    assert AuditTrail(db).verify_chain(tenant.id) == (True, None)
