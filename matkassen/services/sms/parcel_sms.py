"""Parcel-driven SMS: reminders on create, update and cancellation notices.

All queueing here writes into the caller's transaction so a message never
references a parcel that failed to commit.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from matkassen.core.structured_logging import build_log_context
from matkassen.db.enums import SmsIntent, SmsStatus
from matkassen.db.models import FoodParcel, Household, OutgoingSms
from matkassen.services import schedule_service
from matkassen.services.sms.gateway import normalize_phone_to_e164
from matkassen.services.sms.sms_service import (
    build_idempotency_key,
    build_manual_idempotency_key,
    cancel_unsent_sms_for_parcel,
    create_sms_record,
)
from matkassen.services.sms.templates import (
    SmsTemplateData,
    format_cancellation_sms,
    format_pickup_sms,
    format_update_sms,
    public_parcel_url,
)
from matkassen.utils.clock import Clock
from matkassen.utils.location_availability import ParcelTimeInfo, is_parcel_outside_opening_hours

logger = logging.getLogger(__name__)

REMINDER_LEAD_TIME = timedelta(hours=48)
GRACE_PERIOD = timedelta(minutes=5)
REMINDER_WINDOW = (timedelta(hours=47), timedelta(hours=49))


def calculate_sms_schedule_time(pickup_time: datetime, clock: Clock) -> datetime:
    """48 hours before pickup, or now + 5 minutes when pickup is closer than that."""
    now = clock.now()
    if pickup_time - now > REMINDER_LEAD_TIME:
        return pickup_time - REMINDER_LEAD_TIME
    return now + GRACE_PERIOD


def _template_data(parcel: FoodParcel) -> SmsTemplateData:
    return SmsTemplateData(
        pickup_date=parcel.pickup_date_time_earliest,
        public_url=public_parcel_url(parcel.id),
    )


def _phone(household: Household) -> str | None:
    if not household.phone_number or household.is_anonymized:
        return None
    return normalize_phone_to_e164(household.phone_number)


def queue_sms_for_parcels(db: Session, parcels: Iterable[FoodParcel], clock: Clock) -> list[UUID]:
    """Queue a pickup reminder per parcel. Households without a phone are skipped."""
    queued: list[UUID] = []
    for parcel in parcels:
        household = parcel.household
        to_e164 = _phone(household)
        if to_e164 is None:
            logger.info(
                "No phone number, reminder skipped",
                extra=build_log_context(parcel_id=parcel.id, household_id=household.id),
            )
            continue
        queued.append(
            create_sms_record(
                db,
                intent=SmsIntent.PICKUP_REMINDER,
                parcel_id=parcel.id,
                household_id=household.id,
                to_e164=to_e164,
                text=format_pickup_sms(_template_data(parcel), household.locale),
                clock=clock,
                next_attempt_at=calculate_sms_schedule_time(
                    parcel.pickup_date_time_earliest, clock
                ),
            )
        )
    return queued


def _reminder_already_sent(db: Session, parcel_id: UUID) -> bool:
    return (
        db.query(OutgoingSms.id)
        .filter(
            OutgoingSms.parcel_id == parcel_id,
            OutgoingSms.intent == SmsIntent.PICKUP_REMINDER.value,
            OutgoingSms.status == SmsStatus.SENT.value,
        )
        .first()
        is not None
    )


def queue_sms_for_updated_parcel(db: Session, parcel: FoodParcel, clock: Clock) -> UUID | None:
    """
    React to a rescheduled parcel.

    Undelivered reminders, failed ones included, are cancelled and replaced
    with one for the new time. If the household already received the old
    reminder an update message is queued instead.
    """
    already_sent = _reminder_already_sent(db, parcel.id)
    cancel_unsent_sms_for_parcel(
        db, parcel.id, intents=(SmsIntent.PICKUP_REMINDER.value, SmsIntent.PICKUP_UPDATED.value)
    )
    # Flush the cancellation so the stable reminder key is free again
    db.flush()

    household = parcel.household
    to_e164 = _phone(household)
    if to_e164 is None:
        return None

    if not already_sent:
        return create_sms_record(
            db,
            intent=SmsIntent.PICKUP_REMINDER,
            parcel_id=parcel.id,
            household_id=household.id,
            to_e164=to_e164,
            text=format_pickup_sms(_template_data(parcel), household.locale),
            clock=clock,
            next_attempt_at=calculate_sms_schedule_time(parcel.pickup_date_time_earliest, clock),
            idempotency_key=build_idempotency_key(SmsIntent.PICKUP_REMINDER, parcel.id),
        )

    return create_sms_record(
        db,
        intent=SmsIntent.PICKUP_UPDATED,
        parcel_id=parcel.id,
        household_id=household.id,
        to_e164=to_e164,
        text=format_update_sms(_template_data(parcel), household.locale),
        clock=clock,
        idempotency_key=build_manual_idempotency_key(
            SmsIntent.PICKUP_UPDATED, parcel.id, kind="update"
        ),
    )


def queue_cancellation_sms(db: Session, parcel: FoodParcel, clock: Clock) -> UUID | None:
    """Cancel undelivered messages; notify only households that were already told."""
    already_sent = _reminder_already_sent(db, parcel.id)
    cancel_unsent_sms_for_parcel(db, parcel.id)
    if not already_sent:
        return None

    household = parcel.household
    to_e164 = _phone(household)
    if to_e164 is None:
        return None
    return create_sms_record(
        db,
        intent=SmsIntent.PICKUP_CANCELLED,
        parcel_id=parcel.id,
        household_id=household.id,
        to_e164=to_e164,
        text=format_cancellation_sms(_template_data(parcel), household.locale),
        clock=clock,
    )


def enqueue_reminder_sms(db: Session, clock: Clock) -> int:
    """
    Backstop for parcels about 48h away that have no reminder yet.

    Parcels that no longer fit their location's opening hours are skipped;
    those need an operator to reschedule them first.
    """
    now = clock.now()
    window_start, window_end = now + REMINDER_WINDOW[0], now + REMINDER_WINDOW[1]

    has_reminder = (
        db.query(OutgoingSms.id)
        .filter(
            OutgoingSms.parcel_id == FoodParcel.id,
            OutgoingSms.intent == SmsIntent.PICKUP_REMINDER.value,
            OutgoingSms.status != SmsStatus.CANCELLED.value,
        )
        .exists()
    )
    parcels = (
        db.query(FoodParcel)
        .join(Household, Household.id == FoodParcel.household_id)
        .filter(
            FoodParcel.deleted_at.is_(None),
            FoodParcel.is_picked_up.is_(False),
            FoodParcel.pickup_date_time_earliest >= window_start,
            FoodParcel.pickup_date_time_earliest <= window_end,
            Household.anonymized_at.is_(None),
            ~has_reminder,
        )
        .all()
    )

    schedule_cache: dict = {}
    eligible: list[FoodParcel] = []
    for parcel in parcels:
        info = schedule_cache.get(parcel.pickup_location_id)
        if info is None:
            info = schedule_service.get_location_schedule_info(db, parcel.pickup_location_id)
            schedule_cache[parcel.pickup_location_id] = info
        time_info = ParcelTimeInfo(
            id=parcel.id,
            pickup_earliest_time=parcel.pickup_date_time_earliest,
            pickup_latest_time=parcel.pickup_date_time_latest,
        )
        if is_parcel_outside_opening_hours(time_info, info):
            logger.warning(
                "Parcel outside opening hours, reminder not queued",
                extra=build_log_context(parcel_id=parcel.id),
            )
            continue
        eligible.append(parcel)

    queued = queue_sms_for_parcels(db, eligible, clock)
    db.commit()
    if queued:
        logger.info("Queued %d reminder SMS", len(queued))
    return len(queued)
