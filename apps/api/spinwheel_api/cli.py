"""CLI commands for the Spinwheel API."""

import click
from sqlalchemy.exc import SQLAlchemyError

from spinwheel_api.audit.service import AuditTrail
from spinwheel_api.auth.actor import Actor, ActorRole, JWTActorResolver
from spinwheel_api.auth.pin import verify_pin
from spinwheel_api.db.seed import seed_all
from spinwheel_api.db.session import SessionLocal
from spinwheel_api.models import Manager


@click.group()
def cli():
    """Spinwheel API CLI."""
    pass


@cli.command()
def seed():
    """Seed initial data."""
    click.echo("Seeding initial data...")
    db = SessionLocal()
    try:
        seed_all(db)
        click.echo("✓ Seed data created.")
    except SQLAlchemyError as e:
        click.echo(f"✗ Error seeding data: {e}", err=True)
        db.rollback()
    finally:
        db.close()


@cli.command("verify-audit-chain")
@click.option("--tenant-id", type=int, required=True, help="Tenant whose chain to verify.")
def verify_audit_chain(tenant_id: int):
    """Verify the manager audit hash chain of a tenant."""
    db = SessionLocal()
    try:
        valid, error = AuditTrail(db).verify_chain(tenant_id)
    finally:
        db.close()
    if valid:
        click.echo(f"✓ Audit chain for tenant {tenant_id} is intact.")
    else:
        click.echo(f"✗ Audit chain for tenant {tenant_id} is broken: {error}", err=True)
        raise SystemExit(1)


@cli.command("issue-token")
@click.option("--role", type=click.Choice([r.value for r in ActorRole]), required=True)
@click.option("--tenant-id", type=int, default=None)
@click.option("--subject", default=None, help="Actor id (admin id for admin roles).")
@click.option("--username", default=None, help="Manager username (MANAGER role).")
@click.option("--pin", default=None, help="Manager PIN (MANAGER role).")
def issue_token(role, tenant_id, subject, username, pin):
    """Issue a development bearer token."""
    actor_role = ActorRole(role)
    if actor_role == ActorRole.MANAGER:
        if not username or not pin:
            raise click.UsageError("--username and --pin are required for MANAGER tokens")
        db = SessionLocal()
        try:
            manager = db.query(Manager).filter(Manager.username == username).first()
        finally:
            db.close()
        if manager is None or not manager.is_active or not verify_pin(pin, manager.pin_hash):
            raise click.ClickException("Invalid manager credentials")
        actor = Actor(actor_id=str(manager.id), tenant_id=manager.tenant_id, role=actor_role)
    else:
        if not subject:
            raise click.UsageError("--subject is required for admin tokens")
        if actor_role == ActorRole.TENANT_ADMIN and tenant_id is None:
            raise click.UsageError("--tenant-id is required for TENANT_ADMIN tokens")
        actor = Actor(actor_id=subject, tenant_id=tenant_id, role=actor_role)

    click.echo(JWTActorResolver().issue_token(actor))


if __name__ == "__main__":
    cli()
