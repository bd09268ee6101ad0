"""Actor resolution middleware: bearer token -> ``request.state.actor``."""

import logging

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from spinwheel_api.auth.actor import get_actor_resolver
from spinwheel_api.errors import AccessDenied

logger = logging.getLogger(__name__)

PUBLIC_PATHS = {"/health", "/ready", "/metrics", "/docs", "/openapi.json", "/"}


class ActorMiddleware(BaseHTTPMiddleware):
    """Resolve the caller from an ``Authorization: Bearer`` header.

    Requests without a token pass through with ``actor = None``; routes
    that need an actor refuse them. A token that is present but invalid
    is rejected here.
    """

    def __init__(self, app, resolver=None):
        super().__init__(app)
        self.resolver = resolver

    async def dispatch(self, request: Request, call_next):
        request.state.actor = None
        if request.url.path in PUBLIC_PATHS:
            return await call_next(request)

        header = request.headers.get("authorization", "")
        if not header:
            return await call_next(request)

        scheme, _, token = header.partition(" ")
        if scheme.lower() != "bearer" or not token:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"error": {"code": AccessDenied.code, "message": "Expected a bearer token"}},
            )

        resolver = self.resolver or get_actor_resolver()
        try:
            actor = resolver.resolve_actor(token)
        except AccessDenied as e:
            return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"error": e.to_dict()})

        request.state.actor = actor
        logger.info(
            "Authenticated request",
            extra={
                "actor_id": actor.actor_id,
                "tenant_id": actor.tenant_id,
                "role": actor.role.value,
                "correlation_id": getattr(request.state, "correlation_id", None),
                "path": request.url.path,
            },
        )
        return await call_next(request)
