"""Household and comment models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import ForeignKey, Index, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from matkassen.db.base import Base

if TYPE_CHECKING:
    from matkassen.db.models import FoodParcel, OutgoingSms


class Household(Base):
    """
    A registered household.

    Parcel history is kept after anonymization for statistics; names,
    phone, comments and SMS history are not.
    """

    __tablename__ = "households"
    __table_args__ = (Index("idx_households_phone", "phone_number"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    locale: Mapped[str] = mapped_column(String(5), nullable=False, default="sv")
    postal_code: Mapped[str | None] = mapped_column(String(5), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    anonymized_at: Mapped[datetime | None] = mapped_column(nullable=True)
    anonymized_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    noshow_followup_dismissed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    noshow_followup_dismissed_by: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )

    parcels: Mapped[list[FoodParcel]] = relationship(
        back_populates="household", cascade="all, delete-orphan", passive_deletes=True
    )
    comments: Mapped[list[HouseholdComment]] = relationship(
        back_populates="household", cascade="all, delete-orphan", passive_deletes=True
    )
    sms_messages: Mapped[list[OutgoingSms]] = relationship(
        back_populates="household", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_anonymized(self) -> bool:
        return self.anonymized_at is not None


class HouseholdComment(Base):
    __tablename__ = "household_comments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False, index=True
    )
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    author: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    household: Mapped[Household] = relationship(back_populates="comments")
