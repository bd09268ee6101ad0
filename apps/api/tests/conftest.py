"""Pytest configuration and fixtures."""

import os

# The app module builds its engine at import time; keep it off PostgreSQL
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("NOTIFICATIONS_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from spinwheel_api.auth.actor import Actor, ActorRole
from spinwheel_api.db.base import Base
from spinwheel_api.db.session import build_engine
from spinwheel_api.models import Campaign, EndUser, Manager, Tenant

from factories import create_campaign, create_manager, create_tenant, create_user


@pytest.fixture(scope="function")
def engine():
    """SQLite in-memory engine shared by every session of a test."""
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def file_session_factory(tmp_path):
    """Session factory over a file-backed SQLite database.

    Each thread gets its own connection, so BEGIN IMMEDIATE actually
    serializes concurrent writers the way a real server would.
    """
    engine = build_engine(
        f"sqlite:///{tmp_path / 'spinwheel.db'}",
        connect_args={"timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def tenant(db: Session) -> Tenant:
    """Create a test tenant."""
    return create_tenant(db)


@pytest.fixture
def campaign(db: Session, tenant: Tenant) -> Campaign:
    """Create a test campaign (1 spin per 24h)."""
    return create_campaign(db, tenant)


@pytest.fixture
def user(db: Session, tenant: Tenant) -> EndUser:
    """Create a test customer."""
    return create_user(db, tenant)


@pytest.fixture
def manager(db: Session, tenant: Tenant) -> Manager:
    """Create a test manager (5 per grant, 10 per user)."""
    return create_manager(db, tenant)


@pytest.fixture
def super_admin() -> Actor:
    return Actor(actor_id="admin-1", tenant_id=None, role=ActorRole.SUPER_ADMIN)


@pytest.fixture
def tenant_admin(tenant: Tenant) -> Actor:
    return Actor(actor_id="owner-1", tenant_id=tenant.id, role=ActorRole.TENANT_ADMIN)
