"""Signed delivery of notification messages to the messaging gateway."""

import hashlib
import hmac
import json
import logging
import time
from typing import Optional

import httpx

from spinwheel_worker.settings import get_settings

logger = logging.getLogger(__name__)

TEMPLATES = {
    "spin.won": "Congratulations! You won {prize_name}.{voucher_line}",
    "bonus.granted": "You received {amount} bonus spin(s). Good luck!",
    "task.approved": "Your task was verified. {bonus_spins} bonus spin(s) added.",
    "task.rejected": "Your task submission could not be verified.",
    "referral.milestone": "A friend joined with your code. You unlocked a bonus spin!",
}


class DeliveryError(Exception):
    """Gateway did not accept the message."""


def render_message(event: str, payload: dict) -> Optional[str]:
    """Render the customer-facing text for an event, or None if unknown."""
    template = TEMPLATES.get(event)
    if template is None:
        return None
    values = dict(payload)
    voucher_code = values.get("voucher_code")
    values["voucher_line"] = f" Your voucher code: {voucher_code}" if voucher_code else ""
    try:
        return template.format(**values)
    except KeyError as e:
        logger.warning(f"Missing field {e} for {event} message")
        return None


def compute_signature(body: bytes, secret: str, timestamp: str) -> str:
    """HMAC-SHA256 over ``timestamp + "." + body``."""
    message = f"{timestamp}.{body.decode()}"
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


def send_message(phone: str, event: str, text: str, client: Optional[httpx.Client] = None) -> int:
    """POST a message to the gateway. Raises DeliveryError on non-2xx."""
    settings = get_settings()
    if not settings.notification_gateway_url:
        logger.info(f"No gateway configured; dropping {event} message", extra={"event": event})
        return 0

    body = json.dumps({"to": phone, "event": event, "text": text}, sort_keys=True).encode()
    timestamp = str(int(time.time()))
    headers = {
        "Content-Type": "application/json",
        "X-Spinwheel-Signature": f"sha256={compute_signature(body, settings.notification_secret, timestamp)}",
        "X-Spinwheel-Event": event,
        "X-Spinwheel-Timestamp": timestamp,
    }

    owns_client = client is None
    client = client or httpx.Client(timeout=settings.notification_timeout_seconds)
    try:
        response = client.post(settings.notification_gateway_url, content=body, headers=headers)
    except httpx.HTTPError as e:
        raise DeliveryError(f"Gateway request failed: {e}") from e
    finally:
        if owns_client:
            client.close()

    if not 200 <= response.status_code < 300:
        raise DeliveryError(f"Gateway returned {response.status_code}: {response.text[:200]}")
    return response.status_code
