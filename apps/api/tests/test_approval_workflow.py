"""Tests for the task approval workflow."""

import pytest
from sqlalchemy import func, select

from spinwheel_api.audit.service import Pagination
from spinwheel_api.errors import AccessDenied, CapExceeded, InvalidRequest, InvalidTransition, NotFound
from spinwheel_api.managers.service import ManagerWorkflow
from spinwheel_api.models import BonusLedgerEntry, BonusSource, CompletionStatus, ManagerAuditLog, TaskCompletion
from spinwheel_api.notifications.service import TASK_APPROVED, TASK_REJECTED, NotificationSink

from factories import (
    create_campaign,
    create_completion,
    create_manager,
    create_task,
    create_tenant,
    create_user,
    manager_actor,
)


class RecordingSink(NotificationSink):
    def __init__(self):
        self.events = []

    def notify(self, user_id, event, payload):
        self.events.append((user_id, event, payload))


def audit_rows(db):
    return db.execute(select(func.count(ManagerAuditLog.id))).scalar_one()


@pytest.fixture
def task(db, campaign):
    return create_task(db, campaign, spins_reward=2)


@pytest.fixture
def completion(db, task, user):
    return create_completion(db, task, user)


class TestApproveTask:
    """Approving pending completions."""

    def test_approve_credits_reward_and_audits(self, db, user, manager, completion):
        sink = RecordingSink()

        decision = ManagerWorkflow(db, sink=sink).approve_task(
            manager_actor(manager), completion.id, "Checked the follow"
        ).unwrap()

        assert decision.status == "APPROVED"
        assert decision.bonus_spins_granted == 2
        db.refresh(user)
        db.refresh(completion)
        assert user.bonus_spins_earned == 2
        assert completion.status == CompletionStatus.APPROVED
        assert completion.verified_by == manager.id
        entry = db.execute(select(ManagerAuditLog)).scalar_one()
        assert entry.action == "APPROVE"
        assert entry.task_completion_id == completion.id
        assert entry.bonus_spins_granted == 2
        assert entry.tenant_sequence == 1
        ledger = db.execute(select(BonusLedgerEntry)).scalar_one()
        assert ledger.source == BonusSource.TASK_VERIFICATION
        assert ledger.idempotency_key == f"task:{completion.id}"
        assert sink.events == [(user.id, TASK_APPROVED, {"completion_id": completion.id, "bonus_spins": 2})]

    def test_reapproving_is_invalid_transition(self, db, user, manager, completion):
        """A second approval changes nothing and writes no audit row."""
        workflow = ManagerWorkflow(db)
        workflow.approve_task(manager_actor(manager), completion.id, "ok").unwrap()

        outcome = workflow.approve_task(manager_actor(manager), completion.id, "again")

        assert isinstance(outcome.error, InvalidTransition)
        assert audit_rows(db) == 1
        db.refresh(user)
        assert user.bonus_spins_earned == 2

    def test_reward_clamped_to_per_approval_cap(self, db, campaign, user, manager):
        big_task = create_task(db, campaign, spins_reward=8)
        completion = create_completion(db, big_task, user)

        decision = ManagerWorkflow(db).approve_task(manager_actor(manager), completion.id, "ok").unwrap()

        assert decision.bonus_spins_granted == 5

    def test_reward_clamped_to_remaining_user_cap(self, db, tenant, campaign, user):
        manager = create_manager(db, tenant, max_spins_per_user=3)
        completion = create_completion(db, create_task(db, campaign, spins_reward=2), user)
        other = create_completion(db, create_task(db, campaign, spins_reward=2), user)
        workflow = ManagerWorkflow(db)

        assert workflow.approve_task(manager_actor(manager), completion.id, "ok").unwrap().bonus_spins_granted == 2
        assert workflow.approve_task(manager_actor(manager), other.id, "ok").unwrap().bonus_spins_granted == 1

    def test_exhausted_user_cap_leaves_completion_pending(self, db, tenant, campaign, user):
        manager = create_manager(db, tenant, max_spins_per_user=2)
        first = create_completion(db, create_task(db, campaign, spins_reward=2), user)
        second = create_completion(db, create_task(db, campaign, spins_reward=2), user)
        workflow = ManagerWorkflow(db)
        workflow.approve_task(manager_actor(manager), first.id, "ok").unwrap()

        outcome = workflow.approve_task(manager_actor(manager), second.id, "ok")

        assert isinstance(outcome.error, CapExceeded)
        db.refresh(second)
        assert second.status == CompletionStatus.PENDING
        assert audit_rows(db) == 1

    def test_comment_required(self, db, manager, completion):
        outcome = ManagerWorkflow(db).approve_task(manager_actor(manager), completion.id, "   ")

        assert isinstance(outcome.error, InvalidRequest)
        assert audit_rows(db) == 0

    def test_cross_tenant_completion_refused(self, db, completion):
        other = create_tenant(db, slug="globex")
        outsider = create_manager(db, other, username="outsider")

        outcome = ManagerWorkflow(db).approve_task(manager_actor(outsider), completion.id, "ok")

        assert isinstance(outcome.error, AccessDenied)
        db.refresh(completion)
        assert completion.status == CompletionStatus.PENDING

    def test_inactive_manager_refused(self, db, manager, completion):
        manager.is_active = False
        db.commit()

        outcome = ManagerWorkflow(db).approve_task(manager_actor(manager), completion.id, "ok")

        assert isinstance(outcome.error, AccessDenied)

    def test_unknown_completion(self, db, manager):
        outcome = ManagerWorkflow(db).approve_task(manager_actor(manager), 999, "ok")
        assert isinstance(outcome.error, NotFound)


class TestRejectTask:
    """Rejecting pending completions."""

    def test_reject_audits_without_credit(self, db, user, manager, completion):
        sink = RecordingSink()

        decision = ManagerWorkflow(db, sink=sink).reject_task(
            manager_actor(manager), completion.id, "No follow found"
        ).unwrap()

        assert decision.status == "REJECTED"
        assert decision.bonus_spins_granted == 0
        db.refresh(user)
        assert user.bonus_spins_earned == 0
        entry = db.execute(select(ManagerAuditLog)).scalar_one()
        assert entry.action == "REJECT"
        assert entry.comment == "No follow found"
        assert sink.events == [(user.id, TASK_REJECTED, {"completion_id": completion.id})]

    def test_rejected_is_terminal(self, db, manager, completion):
        workflow = ManagerWorkflow(db)
        workflow.reject_task(manager_actor(manager), completion.id, "no").unwrap()

        outcome = workflow.approve_task(manager_actor(manager), completion.id, "changed my mind")

        assert isinstance(outcome.error, InvalidTransition)
        assert audit_rows(db) == 1


class TestTaskQueries:
    """Listing, detail and submission."""

    def test_list_pending_for_own_tenant(self, db, tenant, campaign, manager, task, completion):
        other = create_tenant(db, slug="globex")
        other_task = create_task(db, create_campaign(db, other))
        create_completion(db, other_task, create_user(db, other, phone="5559990000"))

        page = ManagerWorkflow(db).list_tasks(manager_actor(manager)).unwrap()

        assert page.total == 1
        assert page.items[0].completion_id == completion.id
        assert page.items[0].customer_phone_last4 == "1111"

    def test_list_paginates(self, db, tenant, campaign, manager, task):
        for i in range(3):
            create_completion(db, task, create_user(db, tenant, phone=f"555000777{i}"))

        page = ManagerWorkflow(db).list_tasks(manager_actor(manager), pagination=Pagination(page=2, limit=2)).unwrap()

        assert page.total == 3
        assert page.total_pages == 2
        assert len(page.items) == 1

    def test_list_by_status(self, db, manager, completion):
        workflow = ManagerWorkflow(db)
        workflow.reject_task(manager_actor(manager), completion.id, "no").unwrap()

        pending = workflow.list_tasks(manager_actor(manager)).unwrap()
        rejected = workflow.list_tasks(manager_actor(manager), status=CompletionStatus.REJECTED).unwrap()

        assert pending.total == 0
        assert rejected.total == 1

    def test_detail_hides_other_tenants(self, db, completion):
        other = create_tenant(db, slug="globex")
        outsider = create_manager(db, other, username="outsider")

        outcome = ManagerWorkflow(db).get_task_detail(manager_actor(outsider), completion.id)

        assert isinstance(outcome.error, AccessDenied)

    def test_submit_once_per_task(self, db, user, task):
        workflow = ManagerWorkflow(db)

        summary = workflow.submit_task_completion(user.id, task.id).unwrap()
        again = workflow.submit_task_completion(user.id, task.id)

        assert summary.status == "PENDING"
        assert isinstance(again.error, InvalidTransition)
        assert db.execute(select(func.count(TaskCompletion.id))).scalar_one() == 1

    def test_submit_cross_tenant_task_refused(self, db, task):
        other = create_tenant(db, slug="globex")
        stranger = create_user(db, other, phone="5559990000")

        outcome = ManagerWorkflow(db).submit_task_completion(stranger.id, task.id)

        assert isinstance(outcome.error, AccessDenied)
