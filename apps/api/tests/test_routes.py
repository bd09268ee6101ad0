"""HTTP surface tests: auth, error mapping and a manager flow end to end."""

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from spinwheel_api.auth.actor import Actor, JWTActorResolver
from spinwheel_api.db.session import get_db
from spinwheel_api.main import app
from spinwheel_api.notifications.service import NotificationSink
from spinwheel_api.routes.deps import notification_sink

from factories import create_completion, create_task, create_tenant, manager_actor, record_spin


class RecordingSink(NotificationSink):
    def __init__(self):
        self.events = []

    def notify(self, user_id, event, payload):
        self.events.append((user_id, event, payload))


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def client(db, sink):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[notification_sink] = lambda: sink
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(actor: Actor) -> dict:
    return {"Authorization": f"Bearer {JWTActorResolver().issue_token(actor)}"}


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.get("/manager/tasks")
        assert response.status_code == 401

    def test_garbage_token(self, client):
        response = client.get("/manager/tasks", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "ACCESS_DENIED"

    def test_wrong_scheme(self, client):
        response = client.get("/manager/tasks", headers={"Authorization": "Basic abc"})
        assert response.status_code == 401

    def test_token_signed_with_other_key(self, client, manager):
        token = JWTActorResolver(secret_key="someone-else").issue_token(manager_actor(manager))
        response = client.get("/manager/tasks", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestSpinRoutes:
    def test_spin_then_quota_exhausted(self, client, campaign, user):
        body = {"user_id": user.id, "campaign_id": campaign.id}

        first = client.post("/spins", json=body)
        second = client.post("/spins", json=body)

        assert first.status_code == 201
        assert first.json()["is_referral_bonus"] is False
        assert first.json()["remaining"]["total"] == 0
        assert second.status_code == 429
        assert second.json() == {
            "error": {"code": "QUOTA_EXHAUSTED", "message": "No spins remaining for this user in this campaign."}
        }

    def test_entitlement(self, client, campaign, user):
        response = client.get(f"/users/{user.id}/entitlement", params={"campaign_id": campaign.id})

        assert response.status_code == 200
        assert response.json() == {"regular_remaining": 1, "bonus_remaining": 0, "total": 1}

    def test_unknown_user_is_404(self, client, campaign):
        response = client.get("/users/999/entitlement", params={"campaign_id": campaign.id})
        assert response.status_code == 404

    def test_register_and_submit_task(self, client, db, tenant, campaign):
        task = create_task(db, campaign)

        registered = client.post(
            "/users/register",
            json={"tenant_id": tenant.id, "campaign_id": campaign.id, "phone": "555 000 9999"},
        )
        user_id = registered.json()["user_id"]
        submitted = client.post(f"/tasks/{task.id}/completions", json={"user_id": user_id})

        assert registered.status_code == 200
        assert registered.json()["created"] is True
        assert submitted.status_code == 201
        assert submitted.json()["status"] == "PENDING"


class TestManagerRoutes:
    def test_approve_flow(self, client, db, campaign, user, manager, sink):
        completion = create_completion(db, create_task(db, campaign), user)
        headers = auth(manager_actor(manager))

        listed = client.get("/manager/tasks", headers=headers)
        approved = client.post(
            f"/manager/tasks/{completion.id}/approve", json={"comment": "verified"}, headers=headers
        )
        again = client.post(
            f"/manager/tasks/{completion.id}/approve", json={"comment": "verified"}, headers=headers
        )

        assert listed.status_code == 200
        assert listed.json()["total"] == 1
        assert approved.status_code == 200
        assert approved.json()["bonus_spins_granted"] == 2
        assert again.status_code == 409
        assert len(sink.events) == 1

    def test_grant_over_cap_is_422(self, client, db, campaign, user, manager):
        record_spin(db, user, campaign)

        response = client.post(
            "/manager/grants", json={"user_id": user.id, "amount": 6}, headers=auth(manager_actor(manager))
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "CAP_EXCEEDED"

    def test_grant(self, client, db, campaign, user, manager):
        record_spin(db, user, campaign)

        response = client.post(
            "/manager/grants",
            json={"user_id": user.id, "amount": 2, "reason": "standee"},
            headers=auth(manager_actor(manager)),
        )

        assert response.status_code == 200
        assert response.json()["bonus_spins_earned"] == 2


class TestAdminRoutes:
    def test_tenant_admin_creates_campaign(self, client, tenant, tenant_admin):
        response = client.post("/admin/campaigns", json={"name": "Winter"}, headers=auth(tenant_admin))

        assert response.status_code == 201
        assert response.json()["tenant_id"] == tenant.id

    def test_plan_limit_is_402(self, client, db, tenant, tenant_admin):
        tenant.campaigns_per_month = 0
        db.commit()

        response = client.post("/admin/campaigns", json={"name": "Winter"}, headers=auth(tenant_admin))

        assert response.status_code == 402

    def test_usage_for_other_tenant_is_403(self, client, db, tenant_admin):
        other = create_tenant(db, slug="globex")

        response = client.get(f"/admin/tenants/{other.id}/usage", headers=auth(tenant_admin))

        assert response.status_code == 403

    def test_super_admin_override_and_usage(self, client, tenant, super_admin):
        created = client.post(
            f"/admin/tenants/{tenant.id}/overrides",
            json={"bonus_spins": 50, "reason": "launch"},
            headers=auth(super_admin),
        )
        listed = client.get(f"/admin/tenants/{tenant.id}/overrides", headers=auth(super_admin))
        usage = client.get(f"/admin/tenants/{tenant.id}/usage", headers=auth(super_admin))

        assert created.status_code == 201
        assert [o["bonus_spins"] for o in listed.json()] == [50]
        assert usage.status_code == 200
        assert usage.json()["spins_used"] == 0

    def test_override_accepts_utc_designator(self, client, tenant, super_admin):
        response = client.post(
            f"/admin/tenants/{tenant.id}/overrides",
            json={"bonus_spins": 5, "reason": "promo", "expires_at": "2030-01-01T00:00:00Z"},
            headers=auth(super_admin),
        )

        assert response.status_code == 201
        assert response.json()["expires_at"].startswith("2030-01-01T00:00:00")

    def test_override_in_the_past_with_offset_is_400(self, client, tenant, super_admin):
        response = client.post(
            f"/admin/tenants/{tenant.id}/overrides",
            json={"bonus_spins": 5, "reason": "promo", "expires_at": "2020-01-01T00:00:00+02:00"},
            headers=auth(super_admin),
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_REQUEST"

    def test_lock_and_unlock_tenant(self, client, tenant, super_admin, tenant_admin):
        forbidden = client.post(
            f"/admin/tenants/{tenant.id}/lock", json={"reason": "abuse"}, headers=auth(tenant_admin)
        )
        locked = client.post(
            f"/admin/tenants/{tenant.id}/lock", json={"reason": "abuse"}, headers=auth(super_admin)
        )
        again = client.post(
            f"/admin/tenants/{tenant.id}/lock", json={"reason": "abuse"}, headers=auth(super_admin)
        )
        unlocked = client.post(f"/admin/tenants/{tenant.id}/unlock", headers=auth(super_admin))

        assert forbidden.status_code == 403
        assert locked.status_code == 200
        assert locked.json()["is_locked"] is True
        assert again.status_code == 409
        assert unlocked.json()["is_locked"] is False

    def test_audit_logs_accept_offset_dates(self, client, db, campaign, user, manager, tenant_admin):
        record_spin(db, user, campaign)
        client.post(
            "/manager/grants", json={"user_id": user.id, "amount": 1}, headers=auth(manager_actor(manager))
        )
        an_hour_ago = (datetime.now(timezone.utc) - timedelta(hours=1)).astimezone(timezone(timedelta(hours=5)))

        logs = client.get(
            "/audit/logs",
            params={"start_date": an_hour_ago.isoformat(), "end_date": "2099-01-01T00:00:00"},
            headers=auth(tenant_admin),
        )

        assert logs.status_code == 200
        assert logs.json()["total"] == 1

    def test_audit_routes(self,client, db, campaign, user, manager, tenant, tenant_admin):
        record_spin(db, user, campaign)
        client.post(
            "/manager/grants", json={"user_id": user.id, "amount": 1}, headers=auth(manager_actor(manager))
        )

        logs = client.get("/audit/logs", headers=auth(tenant_admin))
        verify = client.get(f"/audit/verify/{tenant.id}", headers=auth(tenant_admin))
        forbidden = client.get(f"/audit/verify/{tenant.id}", headers=auth(manager_actor(manager)))

        assert logs.status_code == 200
        assert logs.json()["total"] == 1
        assert verify.json() == {"tenant_id": tenant.id, "valid": True, "error": None}
        assert forbidden.status_code == 403
