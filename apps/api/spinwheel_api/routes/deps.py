"""Shared route dependencies."""

from fastapi import HTTPException, Request, status

from spinwheel_api.auth.actor import Actor
from spinwheel_api.notifications.service import NotificationSink, get_notification_sink


def current_actor(request: Request) -> Actor:
    """The resolved caller; 401 when the request carried no token."""
    actor = getattr(request.state, "actor", None)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token",
        )
    return actor


def notification_sink() -> NotificationSink:
    return get_notification_sink()
