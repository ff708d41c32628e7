"""Webhook handler registry."""

from __future__ import annotations

from matkassen.services.webhooks.base import WebhookHandler
from matkassen.services.webhooks.sms_status import SmsStatusWebhookHandler

_HANDLERS: dict[str, WebhookHandler] = {
    "sms_status": SmsStatusWebhookHandler(),
}


def get_handler(name: str) -> WebhookHandler:
    handler = _HANDLERS.get(name)
    if not handler:
        raise KeyError(f"Unknown webhook handler: {name}")
    return handler
