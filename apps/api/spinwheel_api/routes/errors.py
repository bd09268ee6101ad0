"""Map engine error codes to HTTP responses."""

import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from spinwheel_api.errors import EngineError, InternalError

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "QUOTA_EXHAUSTED": status.HTTP_429_TOO_MANY_REQUESTS,
    "OUT_OF_STOCK": status.HTTP_409_CONFLICT,
    "CAMPAIGN_INACTIVE": status.HTTP_410_GONE,
    "CAP_EXCEEDED": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "INVALID_TRANSITION": status.HTTP_409_CONFLICT,
    "ACCESS_DENIED": status.HTTP_403_FORBIDDEN,
    "NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "TRANSIENT_CONFLICT": status.HTTP_503_SERVICE_UNAVAILABLE,
    "PLAN_LIMIT_REACHED": status.HTTP_402_PAYMENT_REQUIRED,
    "INVALID_REQUEST": status.HTTP_400_BAD_REQUEST,
    "NOT_ELIGIBLE": status.HTTP_422_UNPROCESSABLE_ENTITY,
}


async def engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    """Render an engine error as ``{"error": {"code", "message"}}``."""
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=STATUS_BY_CODE.get(exc.code, status.HTTP_400_BAD_REQUEST),
        content={"error": exc.to_dict()},
        headers=headers,
    )


async def internal_error_handler(request: Request, exc: InternalError) -> JSONResponse:
    """Store faults are opaque to callers."""
    logger.error(
        f"Internal error: {exc}",
        extra={"correlation_id": getattr(request.state, "correlation_id", None), "path": request.url.path},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": {"code": InternalError.code, "message": "Internal error"}},
    )
