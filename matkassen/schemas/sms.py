"""Pydantic schemas for outgoing SMS."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class SmsRead(BaseModel):
    """Operator view of an SMS. The message body and phone number are left out."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    intent: str
    parcel_id: UUID | None = None
    household_id: UUID
    status: str
    attempt_count: int
    next_attempt_at: datetime | None = None
    provider_status: str | None = None
    provider_status_updated_at: datetime | None = None
    sent_at: datetime | None = None
    dismissed_at: datetime | None = None
    created_at: datetime


class SmsQueuedResponse(BaseModel):
    id: UUID


class SmsBalanceStatus(BaseModel):
    has_balance_failures: bool
    failure_count: int
    credits: float | None = None
    balance_check_error: str | None = None
