"""Engine error taxonomy and operation outcomes."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class EngineError(Exception):
    """Base class for errors with a stable, caller-facing code."""

    code = "ENGINE_ERROR"
    retryable = False

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        """Serialize for API responses."""
        return {"code": self.code, "message": self.message}


class QuotaExhausted(EngineError):
    """No spins remaining for this user in this campaign."""

    code = "QUOTA_EXHAUSTED"


class OutOfStock(EngineError):
    """The selected prize is out of stock."""

    code = "OUT_OF_STOCK"


class CampaignInactive(EngineError):
    """Campaign is not accepting spins."""

    code = "CAMPAIGN_INACTIVE"


class CapExceeded(EngineError):
    """Grant exceeds the manager's bonus spin caps."""

    code = "CAP_EXCEEDED"


class InvalidTransition(EngineError):
    """Requested state transition is not allowed."""

    code = "INVALID_TRANSITION"


class AccessDenied(EngineError):
    """Actor is not allowed to perform this operation."""

    code = "ACCESS_DENIED"


class NotFound(EngineError):
    """Requested record does not exist."""

    code = "NOT_FOUND"


class TransientConflict(EngineError):
    """Concurrent update conflict; the operation may be retried."""

    code = "TRANSIENT_CONFLICT"
    retryable = True


class PlanLimitReached(EngineError):
    """Tenant has used its monthly allowance."""

    code = "PLAN_LIMIT_REACHED"


class InvalidRequest(EngineError):
    """Request parameters are invalid."""

    code = "INVALID_REQUEST"


class NotEligible(EngineError):
    """Customer is not eligible for this operation."""

    code = "NOT_ELIGIBLE"


class AuditImmutableError(EngineError):
    """Audit rows cannot be updated or deleted."""

    code = "AUDIT_IMMUTABLE"


class InternalError(Exception):
    """Unexpected store-level fault. Never a policy decision."""

    code = "INTERNAL_ERROR"


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Result of an engine operation: either a value or a typed error."""

    value: Optional[T] = None
    error: Optional[EngineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: EngineError) -> "Outcome[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the error."""
        if self.error is not None:
            raise self.error
        return self.value
