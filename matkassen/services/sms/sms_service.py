"""SMS service - queue records, drive delivery attempts, reconcile callbacks.

State machine per record:

    queued -> sending -> sent                      (gateway accepted)
    queued -> sending -> retrying -> sending ...   (retriable failure, attempts left)
    queued/sending/retrying -> failed              (permanent, balance, or exhausted)
    queued/sending/retrying -> cancelled           (operator or parcel change)

provider_status is written only by delivery callbacks; dismissed_at is an
operator flag on sent/failed records, not a state.
"""

from __future__ import annotations

import logging
import re
import zlib
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterator
from uuid import UUID

from sqlalchemy import and_, func, or_, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from matkassen.core.security import generate_token
from matkassen.core.structured_logging import build_log_context
from matkassen.db.enums import (
    CANCELLABLE_SMS_STATUSES,
    CLAIMABLE_SMS_STATUSES,
    PROVIDER_FAILURE_STATUSES,
    RETRYABLE_SMS_INTENTS,
    SUPERSEDABLE_SMS_STATUSES,
    ProviderStatus,
    SmsIntent,
    SmsStatus,
)
from matkassen.db.models import FoodParcel, Household, OutgoingSms
from matkassen.services.sms.gateway import (
    SendSmsRequest,
    SendSmsResponse,
    SmsGateway,
    normalize_phone_to_e164,
)
from matkassen.services.sms.templates import (
    SmsTemplateData,
    format_pickup_sms,
    public_parcel_url,
)
from matkassen.utils.clock import Clock

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
RETRIABLE_HTTP_STATUSES = frozenset({429, 500, 503})
INSUFFICIENT_BALANCE_HTTP_STATUS = 402
FIRST_RETRY_BACKOFF = timedelta(minutes=5)
LATER_RETRY_BACKOFF = timedelta(minutes=30)

RESEND_COOLDOWN = timedelta(minutes=5)
STALE_SENT_AFTER = timedelta(hours=24)
RETRY_MIN_LEAD_TIME = timedelta(hours=1)
BALANCE_FAILURE_WINDOW = timedelta(hours=24)
FAILURE_LIST_LIMIT = 100

SMS_QUEUE_LOCK_KEY = "sms-queue-processing"

PHONE_REDACTED = "[PHONE REDACTED]"
_PHONE_PATTERNS = (
    re.compile(r"\+\d{1,3}[-.\s]?\d{6,14}"),
    re.compile(r"\b07\d[-.\s]?\d{3}[-.\s]?\d{2}[-.\s]?\d{2}\b"),
    re.compile(r"\b\d{7,15}\b"),
)
_BALANCE_ERROR_RE = re.compile(
    r"HTTP 402|insufficient|balance|credits?\b|saldo", re.IGNORECASE
)


# =============================================================================
# Errors
# =============================================================================


class SmsError(Exception):
    """Base class for operator-facing SMS action failures."""

    code = "INVALID_ACTION"


class SmsNotFoundError(SmsError):
    code = "NOT_FOUND"


class SmsCooldownError(SmsError):
    """Another SMS for the parcel was created moments ago."""

    code = "COOLDOWN_ACTIVE"


class SmsActionError(SmsError):
    def __init__(self, message: str, code: str = "INVALID_ACTION"):
        super().__init__(message)
        self.code = code


@dataclass(frozen=True)
class SendOutcome:
    status: SmsStatus
    attempt: int
    next_attempt_at: datetime | None = None
    balance_failure: bool = False
    error: str | None = None


# =============================================================================
# Helpers
# =============================================================================


def build_idempotency_key(intent: SmsIntent | str, parcel_id: UUID | str) -> str:
    """Stable key: repeated edits of a parcel never queue a second reminder."""
    return f"{_intent_value(intent)}|{parcel_id}"


def build_manual_idempotency_key(
    intent: SmsIntent | str, parcel_id: UUID | str, kind: str = "manual"
) -> str:
    """Fresh key that deliberately bypasses deduplication (operator resend)."""
    return f"{_intent_value(intent)}|{parcel_id}|{kind}|{generate_token(6)}"


def _intent_value(intent: SmsIntent | str) -> str:
    return intent.value if isinstance(intent, SmsIntent) else intent


def redact_phone_numbers(value: str | None) -> str | None:
    """Scrub phone-number-shaped substrings from provider error text."""
    if not value:
        return value
    for pattern in _PHONE_PATTERNS:
        value = pattern.sub(PHONE_REDACTED, value)
    return value


def is_balance_error(message: str | None) -> bool:
    return bool(message and _BALANCE_ERROR_RE.search(message))


def _format_error(response: SendSmsResponse) -> str:
    error = response.error or "Unknown error"
    if response.http_status and f"HTTP {response.http_status}" not in error:
        return f"HTTP {response.http_status}: {error}"
    return error


def _get_sms(db: Session, sms_id: UUID) -> OutgoingSms:
    sms = db.query(OutgoingSms).filter(OutgoingSms.id == sms_id).first()
    if sms is None:
        raise SmsNotFoundError("SMS not found")
    return sms


# =============================================================================
# Queueing
# =============================================================================


def find_active_by_idempotency_key(db: Session, idempotency_key: str) -> OutgoingSms | None:
    return (
        db.query(OutgoingSms)
        .filter(
            OutgoingSms.idempotency_key == idempotency_key,
            OutgoingSms.status != SmsStatus.CANCELLED.value,
        )
        .first()
    )


def create_sms_record(
    db: Session,
    *,
    intent: SmsIntent | str,
    household_id: UUID,
    to_e164: str,
    text: str,
    clock: Clock,
    parcel_id: UUID | None = None,
    next_attempt_at: datetime | None = None,
    idempotency_key: str | None = None,
) -> UUID:
    """
    Queue an SMS in the caller's transaction (flushed, not committed).

    Returns the existing record's id when a non-cancelled record with the
    same idempotency key already exists.
    """
    now = clock.now()
    if idempotency_key is None:
        if parcel_id is not None:
            idempotency_key = build_idempotency_key(intent, parcel_id)
        else:
            # One message per household and intent per hour
            idempotency_key = f"{_intent_value(intent)}|{household_id}|{now:%Y-%m-%dT%H}"

    existing = find_active_by_idempotency_key(db, idempotency_key)
    if existing is not None:
        logger.info(
            "SMS with idempotency key already queued, skipping",
            extra=build_log_context(sms_id=existing.id, parcel_id=parcel_id),
        )
        return existing.id

    sms = OutgoingSms(
        intent=_intent_value(intent),
        parcel_id=parcel_id,
        household_id=household_id,
        to_e164=to_e164,
        text=text,
        status=SmsStatus.QUEUED.value,
        attempt_count=0,
        next_attempt_at=next_attempt_at or now,
        idempotency_key=idempotency_key,
        created_at=now,
    )
    try:
        with db.begin_nested():
            db.add(sms)
    except IntegrityError:
        # Lost a race against a concurrent insert with the same key
        existing = find_active_by_idempotency_key(db, idempotency_key)
        if existing is None:
            raise
        return existing.id

    logger.info(
        "SMS queued: %s",
        sms.intent,
        extra=build_log_context(sms_id=sms.id, parcel_id=parcel_id, household_id=household_id),
    )
    return sms.id


def get_sms_records_for_parcel(db: Session, parcel_id: UUID) -> list[OutgoingSms]:
    return (
        db.query(OutgoingSms)
        .filter(OutgoingSms.parcel_id == parcel_id)
        .order_by(OutgoingSms.created_at.desc())
        .all()
    )


def cancel_sms(db: Session, sms_id: UUID) -> OutgoingSms:
    """Cancel a message the scheduler has not finished with."""
    sms = _get_sms(db, sms_id)
    if sms.status not in CANCELLABLE_SMS_STATUSES:
        raise SmsActionError(f"SMS cannot be cancelled from status '{sms.status}'")
    sms.status = SmsStatus.CANCELLED.value
    sms.next_attempt_at = None
    db.commit()
    return sms


def cancel_unsent_sms_for_parcel(
    db: Session, parcel_id: UUID, intents: tuple[str, ...] | None = None
) -> int:
    """
    Cancel every undelivered message for a parcel (queued, sending, retrying
    or failed) so a rescheduled or cancelled parcel never keeps a stale one.
    Runs in the caller's transaction.
    """
    query = db.query(OutgoingSms).filter(
        OutgoingSms.parcel_id == parcel_id,
        OutgoingSms.status.in_(SUPERSEDABLE_SMS_STATUSES),
    )
    if intents:
        query = query.filter(OutgoingSms.intent.in_(intents))
    return query.update(
        {OutgoingSms.status: SmsStatus.CANCELLED.value, OutgoingSms.next_attempt_at: None},
        synchronize_session="fetch",
    )


# =============================================================================
# Delivery
# =============================================================================


def claim_due_sms(db: Session, clock: Clock, limit: int = 5) -> list[OutgoingSms]:
    """
    Atomically move due records to 'sending'.

    Each claim is a conditional UPDATE; a record another worker claimed first
    updates zero rows and is skipped.
    """
    now = clock.now()
    candidate_ids = [
        row.id
        for row in db.query(OutgoingSms.id)
        .filter(
            OutgoingSms.status.in_(CLAIMABLE_SMS_STATUSES),
            OutgoingSms.next_attempt_at <= now,
        )
        .order_by(OutgoingSms.next_attempt_at)
        .limit(limit)
        .all()
    ]

    claimed_ids: list[UUID] = []
    for sms_id in candidate_ids:
        updated = (
            db.query(OutgoingSms)
            .filter(
                OutgoingSms.id == sms_id,
                OutgoingSms.status.in_(CLAIMABLE_SMS_STATUSES),
                OutgoingSms.next_attempt_at <= now,
            )
            .update({OutgoingSms.status: SmsStatus.SENDING.value}, synchronize_session=False)
        )
        if updated == 1:
            claimed_ids.append(sms_id)
    db.commit()

    if not claimed_ids:
        return []
    return (
        db.query(OutgoingSms)
        .filter(OutgoingSms.id.in_(claimed_ids))
        .order_by(OutgoingSms.next_attempt_at)
        .all()
    )


async def send_sms_record(
    db: Session, sms: OutgoingSms, gateway: SmsGateway, clock: Clock
) -> SendOutcome:
    """Make one delivery attempt for a claimed record and persist the result."""
    try:
        response = await gateway.send(SendSmsRequest(to=sms.to_e164, text=sms.text))
    except Exception as e:
        logger.exception(
            "Gateway raised while sending SMS", extra=build_log_context(sms_id=sms.id)
        )
        response = SendSmsResponse(success=False, error=str(e) or type(e).__name__)

    now = clock.now()
    sms.attempt_count = (sms.attempt_count or 0) + 1
    attempt = sms.attempt_count

    if response.success:
        sms.status = SmsStatus.SENT.value
        sms.provider_message_id = response.message_id
        sms.sent_at = now
        sms.next_attempt_at = None
        sms.last_error_message = None
        db.commit()
        logger.info("SMS sent", extra=build_log_context(sms_id=sms.id, parcel_id=sms.parcel_id))
        return SendOutcome(status=SmsStatus.SENT, attempt=attempt)

    return _handle_failure(db, sms, response, now, attempt)


def _handle_failure(
    db: Session, sms: OutgoingSms, response: SendSmsResponse, now: datetime, attempt: int
) -> SendOutcome:
    error = _format_error(response)
    sms.last_error_message = error

    if response.http_status == INSUFFICIENT_BALANCE_HTTP_STATUS:
        sms.status = SmsStatus.FAILED.value
        sms.next_attempt_at = None
        db.commit()
        logger.error(
            "SMS failed: insufficient gateway balance",
            extra=build_log_context(sms_id=sms.id),
        )
        return SendOutcome(
            status=SmsStatus.FAILED, attempt=attempt, balance_failure=True, error=error
        )

    retriable = response.http_status in RETRIABLE_HTTP_STATUSES
    if retriable and attempt < MAX_ATTEMPTS:
        backoff = FIRST_RETRY_BACKOFF if attempt == 1 else LATER_RETRY_BACKOFF
        sms.status = SmsStatus.RETRYING.value
        sms.next_attempt_at = now + backoff
        db.commit()
        logger.info(
            "SMS retry in %d min (attempt %d/%d)",
            int(backoff.total_seconds() // 60),
            attempt,
            MAX_ATTEMPTS,
            extra=build_log_context(sms_id=sms.id),
        )
        return SendOutcome(
            status=SmsStatus.RETRYING,
            attempt=attempt,
            next_attempt_at=sms.next_attempt_at,
            error=error,
        )

    sms.status = SmsStatus.FAILED.value
    sms.next_attempt_at = None
    db.commit()
    logger.warning(
        "SMS failed permanently after %d attempt(s)",
        attempt,
        extra=build_log_context(sms_id=sms.id),
    )
    return SendOutcome(status=SmsStatus.FAILED, attempt=attempt, error=error)


@contextmanager
def sms_queue_lock(db: Session) -> Iterator[bool]:
    """
    Session-level PostgreSQL advisory lock around a queue tick.

    Other dialects have no advisory locks; there the conditional claim alone
    prevents double sends.
    """
    if db.get_bind().dialect.name != "postgresql":
        yield True
        return

    key = zlib.crc32(SMS_QUEUE_LOCK_KEY.encode("utf-8"))
    acquired = bool(db.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": key}).scalar())
    if not acquired:
        logger.info("SMS queue lock held by another process, skipping tick")
    try:
        yield acquired
    finally:
        if acquired:
            db.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})
            db.commit()


async def process_send_queue(
    db: Session, gateway: SmsGateway, clock: Clock, batch_size: int = 5
) -> int:
    """Claim and send due messages. One failing message never stops the batch."""
    processed = 0
    with sms_queue_lock(db) as acquired:
        if not acquired:
            return 0
        for sms in claim_due_sms(db, clock, limit=batch_size):
            try:
                await send_sms_record(db, sms, gateway, clock)
                processed += 1
            except Exception:
                db.rollback()
                logger.exception(
                    "Error while processing SMS", extra=build_log_context(sms_id=sms.id)
                )
    return processed


# =============================================================================
# Provider callbacks
# =============================================================================


def update_provider_status(
    db: Session, api_message_id: str, status: ProviderStatus | str, clock: Clock
) -> bool:
    """
    Overwrite provider_status for the message. Leaves the pipeline status alone.

    Returns False when no record carries the message id.
    """
    value = status.value if isinstance(status, ProviderStatus) else status
    updated = (
        db.query(OutgoingSms)
        .filter(OutgoingSms.provider_message_id == api_message_id)
        .update(
            {
                OutgoingSms.provider_status: value,
                OutgoingSms.provider_status_updated_at: clock.now(),
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return updated > 0


# =============================================================================
# Operator actions
# =============================================================================


def _check_cooldown(db: Session, parcel_id: UUID, now: datetime, exclude_id=None) -> None:
    query = db.query(OutgoingSms.id).filter(
        OutgoingSms.parcel_id == parcel_id,
        OutgoingSms.created_at > now - RESEND_COOLDOWN,
    )
    if exclude_id is not None:
        query = query.filter(OutgoingSms.id != exclude_id)
    if query.first() is not None:
        raise SmsCooldownError("Please wait at least 5 minutes before sending another SMS")


def resend_sms_for_parcel(db: Session, parcel_id: UUID, clock: Clock) -> UUID:
    """Queue a fresh pickup reminder for a parcel, bypassing deduplication."""
    parcel = (
        db.query(FoodParcel)
        .filter(FoodParcel.id == parcel_id, FoodParcel.deleted_at.is_(None))
        .first()
    )
    if parcel is None:
        raise SmsNotFoundError("Parcel not found")

    now = clock.now()
    _check_cooldown(db, parcel_id, now)

    household = parcel.household
    text_body = format_pickup_sms(
        SmsTemplateData(
            pickup_date=parcel.pickup_date_time_earliest,
            public_url=public_parcel_url(parcel.id),
        ),
        household.locale,
    )
    sms_id = create_sms_record(
        db,
        intent=SmsIntent.PICKUP_REMINDER,
        parcel_id=parcel.id,
        household_id=household.id,
        to_e164=normalize_phone_to_e164(household.phone_number),
        text=text_body,
        clock=clock,
        idempotency_key=build_manual_idempotency_key(SmsIntent.PICKUP_REMINDER, parcel.id),
    )
    db.commit()
    return sms_id


def is_retryable_failure(sms: OutgoingSms, now: datetime) -> bool:
    """Failed in the pipeline, failed at the provider, or sent a day ago with no receipt."""
    if sms.status == SmsStatus.FAILED.value:
        return True
    if sms.status != SmsStatus.SENT.value:
        return False
    if sms.provider_status in PROVIDER_FAILURE_STATUSES:
        return True
    return (
        sms.provider_status is None
        and sms.sent_at is not None
        and sms.sent_at < now - STALE_SENT_AFTER
    )


def retry_failed_sms(db: Session, sms_id: UUID, clock: Clock, actor: str) -> UUID:
    """
    Re-queue a failed message to the household's current phone number.

    The failed record is dismissed in the same transaction so a double click
    cannot produce two retries.
    """
    sms = _get_sms(db, sms_id)
    now = clock.now()

    if not is_retryable_failure(sms, now):
        raise SmsActionError("SMS is not in a failed state")
    if sms.dismissed_at is not None:
        raise SmsActionError("SMS has been dismissed")
    if sms.parcel_id is None:
        raise SmsActionError("SMS has no associated parcel")
    if sms.intent not in RETRYABLE_SMS_INTENTS:
        raise SmsActionError("SMS intent is not retryable")

    # Cancellation messages point at soft-deleted parcels, so no deleted filter here
    parcel = db.query(FoodParcel).filter(FoodParcel.id == sms.parcel_id).first()
    if parcel is None:
        raise SmsActionError("Parcel not found", code="PARCEL_NOT_FOUND")
    if parcel.pickup_date_time_earliest < now + RETRY_MIN_LEAD_TIME:
        raise SmsActionError("Pickup starts in less than 1 hour", code="TOO_LATE")

    _check_cooldown(db, sms.parcel_id, now, exclude_id=sms.id)

    household = db.query(Household).filter(Household.id == parcel.household_id).first()
    if household is None:
        raise SmsNotFoundError("Household not found")

    new_id = create_sms_record(
        db,
        intent=sms.intent,
        parcel_id=sms.parcel_id,
        household_id=household.id,
        to_e164=normalize_phone_to_e164(household.phone_number),
        text=sms.text,
        clock=clock,
        idempotency_key=build_manual_idempotency_key(sms.intent, sms.parcel_id, kind="retry"),
    )
    sms.dismissed_at = now
    sms.dismissed_by_user_id = actor
    db.commit()
    logger.info(
        "SMS retry queued",
        extra={**build_log_context(sms_id=new_id, parcel_id=sms.parcel_id), "original": str(sms_id)},
    )
    return new_id


def dismiss_sms(db: Session, sms_id: UUID, actor: str, clock: Clock) -> OutgoingSms:
    sms = _get_sms(db, sms_id)
    if sms.status not in (SmsStatus.SENT.value, SmsStatus.FAILED.value):
        raise SmsActionError("Only sent or failed SMS can be dismissed")
    if sms.dismissed_at is None:
        sms.dismissed_at = clock.now()
        sms.dismissed_by_user_id = actor
        db.commit()
    return sms


def restore_sms(db: Session, sms_id: UUID) -> OutgoingSms:
    sms = _get_sms(db, sms_id)
    sms.dismissed_at = None
    sms.dismissed_by_user_id = None
    db.commit()
    return sms


# =============================================================================
# Read paths for operators
# =============================================================================


def _failure_filter():
    return or_(
        OutgoingSms.status == SmsStatus.FAILED.value,
        and_(
            OutgoingSms.status == SmsStatus.SENT.value,
            OutgoingSms.provider_status.in_(PROVIDER_FAILURE_STATUSES),
        ),
    )


def list_failed_sms(
    db: Session, clock: Clock, dismissed: bool = False, limit: int = FAILURE_LIST_LIMIT
) -> list[dict]:
    """Failures for upcoming, non-deleted parcels, with phone numbers redacted."""
    now = clock.now()
    dismissed_filter = (
        OutgoingSms.dismissed_at.isnot(None) if dismissed else OutgoingSms.dismissed_at.is_(None)
    )
    rows = (
        db.query(OutgoingSms, FoodParcel, Household)
        .join(FoodParcel, FoodParcel.id == OutgoingSms.parcel_id)
        .join(Household, Household.id == OutgoingSms.household_id)
        .filter(
            _failure_filter(),
            dismissed_filter,
            FoodParcel.deleted_at.is_(None),
            FoodParcel.pickup_date_time_earliest >= now,
        )
        .order_by(FoodParcel.pickup_date_time_earliest)
        .limit(limit)
        .all()
    )
    return [
        {
            "id": str(sms.id),
            "intent": sms.intent,
            "status": sms.status,
            "provider_status": sms.provider_status,
            "parcel_id": str(parcel.id),
            "household_id": str(household.id),
            "household_name": f"{household.first_name} {household.last_name}",
            "pickup_earliest": parcel.pickup_date_time_earliest.isoformat(),
            "error_message": redact_phone_numbers(sms.last_error_message),
            "attempt_count": sms.attempt_count,
            "created_at": sms.created_at.isoformat() if sms.created_at else None,
            "dismissed_at": sms.dismissed_at.isoformat() if sms.dismissed_at else None,
        }
        for sms, parcel, household in rows
    ]


def count_active_failures(db: Session, clock: Clock) -> int:
    return (
        db.query(func.count(OutgoingSms.id))
        .join(FoodParcel, FoodParcel.id == OutgoingSms.parcel_id)
        .filter(
            _failure_filter(),
            OutgoingSms.dismissed_at.is_(None),
            FoodParcel.deleted_at.is_(None),
            FoodParcel.pickup_date_time_earliest >= clock.now(),
        )
        .scalar()
        or 0
    )


async def get_sms_balance_status(db: Session, gateway: SmsGateway, clock: Clock) -> dict:
    """
    Derived insufficient-balance signal for the admin banner.

    Combines recent failures whose error text points at balance exhaustion
    with a live balance check. Nothing here is stored.
    """
    since = clock.now() - BALANCE_FAILURE_WINDOW
    recent_errors = [
        row.last_error_message
        for row in db.query(OutgoingSms.last_error_message)
        .filter(
            OutgoingSms.status == SmsStatus.FAILED.value,
            OutgoingSms.created_at >= since,
            OutgoingSms.last_error_message.isnot(None),
        )
        .all()
    ]
    failure_count = sum(1 for message in recent_errors if is_balance_error(message))

    balance = await gateway.check_balance()
    credits = balance.credits if balance.success else None
    out_of_credits = credits is not None and credits <= 0

    return {
        "has_balance_failures": failure_count > 0 or out_of_credits,
        "failure_count": failure_count,
        "credits": credits,
        "balance_check_error": None if balance.success else redact_phone_numbers(balance.error),
    }


def sms_health_check(db: Session, clock: Clock) -> dict:
    """Queue depth and age of the oldest overdue message."""
    now = clock.now()
    try:
        pending = (
            db.query(func.count(OutgoingSms.id))
            .filter(OutgoingSms.status.in_(CLAIMABLE_SMS_STATUSES))
            .scalar()
            or 0
        )
        oldest_due = (
            db.query(func.min(OutgoingSms.next_attempt_at))
            .filter(
                OutgoingSms.status.in_(CLAIMABLE_SMS_STATUSES),
                OutgoingSms.next_attempt_at <= now,
            )
            .scalar()
        )
        failed = (
            db.query(func.count(OutgoingSms.id))
            .filter(OutgoingSms.status == SmsStatus.FAILED.value)
            .scalar()
            or 0
        )
    except Exception as e:
        logger.exception("SMS health check failed")
        return {"status": "unhealthy", "details": {"error": type(e).__name__}}

    oldest_due_minutes = None
    if oldest_due is not None:
        oldest_due_minutes = int((now - oldest_due).total_seconds() // 60)
    return {
        "status": "healthy",
        "details": {
            "pending": pending,
            "failed": failed,
            "oldest_due_minutes": oldest_due_minutes,
            "timestamp": now.isoformat(),
        },
    }
