"""Tests for CLI commands and seed data."""

import pytest
from click.testing import CliRunner
from sqlalchemy.orm import sessionmaker

from spinwheel_api.audit.service import AuditTrail
from spinwheel_api.auth.actor import ActorRole, JWTActorResolver
from spinwheel_api.cli import cli
from spinwheel_api.db.seed import seed_all
from spinwheel_api.models import Campaign, Manager, Prize, Tenant


@pytest.fixture
def runner(engine, monkeypatch):
    monkeypatch.setattr("spinwheel_api.cli.SessionLocal", sessionmaker(bind=engine))
    return CliRunner()


def test_seed_is_idempotent(db):
    seed_all(db)
    seed_all(db)

    assert db.query(Tenant).count() == 1
    assert db.query(Campaign).count() == 1
    assert db.query(Prize).count() == 3
    assert db.query(Manager).count() == 1


def test_seed_command(runner, db):
    result = runner.invoke(cli, ["seed"])

    assert result.exit_code == 0
    assert db.query(Tenant).filter(Tenant.slug == "demo").count() == 1


def test_manager_token_requires_valid_pin(runner, db):
    runner.invoke(cli, ["seed"])

    ok = runner.invoke(cli, ["issue-token", "--role", "MANAGER", "--username", "demo-manager", "--pin", "1234"])
    bad = runner.invoke(cli, ["issue-token", "--role", "MANAGER", "--username", "demo-manager", "--pin", "0000"])

    assert ok.exit_code == 0
    actor = JWTActorResolver().resolve_actor(ok.output.strip())
    assert actor.role == ActorRole.MANAGER
    assert actor.tenant_id == db.query(Tenant).one().id
    assert bad.exit_code != 0
    assert "Invalid manager credentials" in bad.output


def test_tenant_admin_token_needs_tenant(runner):
    result = runner.invoke(cli, ["issue-token", "--role", "TENANT_ADMIN", "--subject", "owner"])
    assert result.exit_code != 0


def test_verify_audit_chain(runner, db, manager):
    tenant_id = manager.tenant_id
    AuditTrail(db).record_manager_action(tenant_id, manager.id, "GRANT", bonus_spins_granted=1)
    db.commit()
    db.close()

    result = runner.invoke(cli, ["verify-audit-chain", "--tenant-id", str(tenant_id)])

    assert result.exit_code == 0
    assert "intact" in result.output
