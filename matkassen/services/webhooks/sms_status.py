"""HelloSMS delivery status callbacks.

Contract with the provider:
- wrong or missing secret: 404, indistinguishable from an unknown route
- structurally bad payload: 400
- everything else: 200, including unknown message ids and internal errors,
  so the provider never retries a callback that cannot succeed
"""

from __future__ import annotations

import json
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from matkassen.core.config import settings
from matkassen.core.security import verify_callback_secret
from matkassen.db.enums import ProviderStatus
from matkassen.services.sms import sms_service
from matkassen.utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

MAX_PAYLOAD_BYTES = 16 * 1024
_VALID_STATUSES = {status.value for status in ProviderStatus}


def _not_found() -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": "Not Found"})


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


class SmsStatusWebhookHandler:
    async def handle(self, request: Request, db: Session, **kwargs) -> dict | JSONResponse:
        """
        Record the provider's delivery status for a sent message.

        kwargs:
            secret: path secret, or None on the legacy secretless route
            clock: time source for provider_status_updated_at
        """
        clock: Clock = kwargs.get("clock") or SystemClock()
        legacy = kwargs.get("legacy", False)

        if legacy:
            if settings.is_production:
                return _not_found()
            logger.warning("SMS status callback on legacy route without secret")
        elif not verify_callback_secret(kwargs.get("secret"), settings.SMS_CALLBACK_SECRET):
            logger.warning("SMS status callback with invalid secret")
            return _not_found()

        body = await request.body()
        if len(body) > MAX_PAYLOAD_BYTES:
            return _bad_request("Payload too large")
        try:
            payload = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _bad_request("Invalid JSON")
        if not isinstance(payload, dict):
            return _bad_request("Invalid payload")

        api_message_id = payload.get("apiMessageId")
        if not isinstance(api_message_id, str) or not api_message_id.strip():
            return _bad_request("Missing apiMessageId")
        status = payload.get("status")
        if status not in _VALID_STATUSES:
            return _bad_request("Invalid status")

        try:
            matched = sms_service.update_provider_status(db, api_message_id, status, clock)
        except Exception:
            db.rollback()
            logger.exception("Failed to process SMS status callback")
            return {"received": True, "error": "Processing failed"}

        if not matched:
            logger.info("SMS status callback for unknown message id")
        return {"received": True}
