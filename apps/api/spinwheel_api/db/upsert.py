"""Dialect-aware idempotent inserts."""

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def insert_ignore(db: Session, model, values: dict, index_elements: list[str]) -> bool:
    """INSERT ... ON CONFLICT DO NOTHING. Returns True if a row was created."""
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise NotImplementedError(f"insert_ignore not supported for {dialect}")

    stmt = stmt.values(**values).on_conflict_do_nothing(index_elements=index_elements)
    result = db.execute(stmt)
    return bool(result.rowcount)
