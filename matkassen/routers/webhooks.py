"""Webhooks router - SMS provider delivery callbacks."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from matkassen.core.deps import get_clock, get_db
from matkassen.core.rate_limit import WEBHOOK_LIMIT, limiter
from matkassen.services.webhooks.registry import get_handler
from matkassen.utils.clock import Clock

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/sms/status/{secret}")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_sms_status(
    secret: str,
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """HelloSMS delivery status callback with the shared secret in the path."""
    handler = get_handler("sms_status")
    return await handler.handle(request, db, secret=secret, clock=clock)


@router.post("/sms/status")
@limiter.limit(WEBHOOK_LIMIT)
async def receive_sms_status_legacy(
    request: Request,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Secretless callback kept for old provider configuration; 404 in production."""
    handler = get_handler("sms_status")
    return await handler.handle(request, db, legacy=True, clock=clock)
