"""Correlation ID middleware with a per-request access log line."""

import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)

HEADER = "x-correlation-id"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Tag every request with a correlation id and log how it ended.

    The id is taken from the caller when present so a spin can be traced
    from the kiosk through the API into the notification worker.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(HEADER) or uuid.uuid4().hex
        request.state.correlation_id = correlation_id
        started = time.perf_counter()

        response: Response = await call_next(request)

        response.headers[HEADER] = correlation_id
        actor = getattr(request.state, "actor", None)
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={
                "correlation_id": correlation_id,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                "tenant_id": actor.tenant_id if actor else None,
            },
        )
        return response
