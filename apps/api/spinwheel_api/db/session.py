"""Database session management."""

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from spinwheel_api.settings import get_settings

settings = get_settings()


def configure_sqlite(engine: Engine) -> Engine:
    """Make SQLite open write transactions eagerly.

    pysqlite defers BEGIN until the first write, so two sessions can both
    read a stale count before either writes. Emitting BEGIN IMMEDIATE makes
    the second writer wait for the first to commit.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine with the isolation rules the ledger relies on."""
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        engine = create_engine(url, connect_args=connect_args, **kwargs)
        return configure_sqlite(engine)

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        isolation_level=settings.db_isolation_level,
        **kwargs,
    )


engine = build_engine(settings.database_url_computed)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Get database session."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
