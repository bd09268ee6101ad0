"""Unit-of-work runner with a bounded retry on serialization conflicts."""

import logging
from typing import Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.orm import Session

from spinwheel_api.errors import EngineError, InternalError, TransientConflict
from spinwheel_api.settings import get_settings
from spinwheel_api.utils.metrics import transaction_retries

logger = logging.getLogger(__name__)

T = TypeVar("T")

# PostgreSQL: serialization_failure, deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_retryable(exc: SQLAlchemyError) -> bool:
    """Check whether a store error is a transient concurrency conflict."""
    if not isinstance(exc, DBAPIError):
        return False
    orig = exc.orig
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in RETRYABLE_SQLSTATES:
        return True
    message = str(orig).lower()
    return "database is locked" in message or "could not serialize" in message


class TransactionRunner:
    """Run a unit of work in one transaction.

    The work function receives the session and must perform every read it
    bases a decision on. On a serialization conflict the transaction is
    rolled back and the whole function runs again with fresh reads.
    """

    def __init__(self, db: Session, retries: Optional[int] = None):
        """Initialize runner."""
        self.db = db
        self.retries = get_settings().transaction_retries if retries is None else retries

    def run(self, operation: str, work: Callable[[Session], T]) -> T:
        """Execute ``work`` and commit, retrying on conflicts."""
        attempt = 0
        while True:
            try:
                result = work(self.db)
                self.db.commit()
                return result
            except EngineError:
                self.db.rollback()
                raise
            except SQLAlchemyError as e:
                self.db.rollback()
                if not is_retryable(e):
                    logger.error(
                        f"Store fault during {operation}: {e}",
                        exc_info=True,
                        extra={"operation": operation},
                    )
                    raise InternalError(f"{operation} failed") from e
                if attempt >= self.retries:
                    logger.warning(
                        f"{operation} still conflicting after {attempt} retries",
                        extra={"operation": operation},
                    )
                    raise TransientConflict(
                        f"{operation} conflicted with a concurrent update; retry later"
                    ) from e
                attempt += 1
                transaction_retries.labels(operation=operation).inc()
                logger.info(
                    f"Retrying {operation} after conflict",
                    extra={"operation": operation, "attempt": attempt},
                )
            except Exception:
                self.db.rollback()
                raise
