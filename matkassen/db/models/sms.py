"""Outgoing SMS queue model."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, Integer, String, Text, Uuid, func
from sqlalchemy import text as sql_text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from matkassen.db.base import Base
from matkassen.db.enums import SmsStatus

if TYPE_CHECKING:
    from matkassen.db.models import FoodParcel, Household

SMS_IDEMPOTENCY_INDEX = "idx_outgoing_sms_idempotency_unique"


class OutgoingSms(Base):
    """
    One queued or sent message.

    `status` is owned by the delivery pipeline; `provider_status` is written
    only by gateway callbacks. At most one non-cancelled row per idempotency key.
    """

    __tablename__ = "outgoing_sms"
    __table_args__ = (
        Index(
            SMS_IDEMPOTENCY_INDEX,
            "idempotency_key",
            unique=True,
            postgresql_where=sql_text("status <> 'cancelled'"),
            sqlite_where=sql_text("status <> 'cancelled'"),
        ),
        Index("idx_outgoing_sms_due", "status", "next_attempt_at"),
        Index("idx_outgoing_sms_parcel", "parcel_id", "created_at"),
        Index("idx_outgoing_sms_provider_message", "provider_message_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    intent: Mapped[str] = mapped_column(String(30), nullable=False)
    parcel_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("food_parcels.id", ondelete="CASCADE"), nullable=True
    )
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    to_e164: Mapped[str] = mapped_column(String(20), nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SmsStatus.QUEUED.value,
        server_default=sql_text(f"'{SmsStatus.QUEUED.value}'"),
    )
    attempt_count: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=sql_text("0")
    )
    next_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    provider_message_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    provider_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    provider_status_updated_at: Mapped[datetime | None] = mapped_column(nullable=True)

    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False)

    dismissed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    dismissed_by_user_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)

    parcel: Mapped[FoodParcel | None] = relationship()
    household: Mapped[Household] = relationship(back_populates="sms_messages")
