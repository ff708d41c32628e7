"""Enums shared by models, services and routers."""

from enum import Enum


class SmsStatus(str, Enum):
    """Pipeline state of an outgoing SMS."""

    QUEUED = "queued"
    SENDING = "sending"
    SENT = "sent"
    RETRYING = "retrying"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Records the scheduler may claim
CLAIMABLE_SMS_STATUSES = (SmsStatus.QUEUED.value, SmsStatus.RETRYING.value)
# Records an operator may still cancel
CANCELLABLE_SMS_STATUSES = (
    SmsStatus.QUEUED.value,
    SmsStatus.SENDING.value,
    SmsStatus.RETRYING.value,
)
# Undelivered records a parcel change replaces or withdraws
SUPERSEDABLE_SMS_STATUSES = CANCELLABLE_SMS_STATUSES + (SmsStatus.FAILED.value,)


class SmsIntent(str, Enum):
    """Why a message is being sent."""

    PICKUP_REMINDER = "pickup_reminder"
    PICKUP_UPDATED = "pickup_updated"
    PICKUP_CANCELLED = "pickup_cancelled"
    CONSENT_ENROLMENT = "consent_enrolment"


RETRYABLE_SMS_INTENTS = (
    SmsIntent.PICKUP_REMINDER.value,
    SmsIntent.PICKUP_UPDATED.value,
    SmsIntent.PICKUP_CANCELLED.value,
)


class ProviderStatus(str, Enum):
    """Delivery state reported by the gateway callback."""

    DELIVERED = "delivered"
    FAILED = "failed"
    NOT_DELIVERED = "not delivered"


PROVIDER_FAILURE_STATUSES = (ProviderStatus.FAILED.value, ProviderStatus.NOT_DELIVERED.value)


class Weekday(str, Enum):
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"

    @classmethod
    def from_date(cls, value) -> "Weekday":
        return WEEKDAYS[value.weekday()]


WEEKDAYS = list(Weekday)


class ValidationErrorCode(str, Enum):
    """Closed set of parcel assignment violation codes."""

    PARCEL_NOT_FOUND = "PARCEL_NOT_FOUND"
    LOCATION_NOT_FOUND = "LOCATION_NOT_FOUND"
    MAX_DAILY_CAPACITY_REACHED = "MAX_DAILY_CAPACITY_REACHED"
    MAX_SLOT_CAPACITY_REACHED = "MAX_SLOT_CAPACITY_REACHED"
    TIME_SLOT_CONFLICT = "TIME_SLOT_CONFLICT"
    OUTSIDE_OPERATING_HOURS = "OUTSIDE_OPERATING_HOURS"
    PAST_TIME_SLOT = "PAST_TIME_SLOT"
    HOUSEHOLD_DOUBLE_BOOKING = "HOUSEHOLD_DOUBLE_BOOKING"
    INVALID_TIME_SLOT = "INVALID_TIME_SLOT"
    DOUBLE_BOOKING = "DOUBLE_BOOKING"
    CAPACITY_REACHED = "CAPACITY_REACHED"
    SLOT_CAPACITY_REACHED = "SLOT_CAPACITY_REACHED"
    PAST_PICKUP_TIME = "PAST_PICKUP_TIME"


class JobType(str, Enum):
    """Periodic worker jobs."""

    SMS_SEND = "sms_send"
    SMS_ENQUEUE_REMINDERS = "sms_enqueue_reminders"
    ANONYMIZATION_SWEEP = "anonymization_sweep"
