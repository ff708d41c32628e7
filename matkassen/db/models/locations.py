"""Pickup locations, their weekly schedules and special-day overrides."""

from __future__ import annotations

import uuid
from datetime import date, time

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from matkassen.db.base import Base

DEFAULT_MAX_PARCELS_PER_SLOT = 4
DEFAULT_SLOT_DURATION_MINUTES = 15


class PickupLocation(Base):
    __tablename__ = "pickup_locations"
    __table_args__ = (
        CheckConstraint(
            "default_slot_duration_minutes > 0 AND default_slot_duration_minutes <= 240",
            name="pickup_locations_slot_duration_check",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    street_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    postal_code: Mapped[str | None] = mapped_column(String(5), nullable=True)

    # NULL means unlimited for both limits; new locations get
    # DEFAULT_MAX_PARCELS_PER_SLOT from schedule_service.create_location
    max_parcels_per_day: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_parcels_per_slot: Mapped[int | None] = mapped_column(Integer, nullable=True)
    default_slot_duration_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=DEFAULT_SLOT_DURATION_MINUTES,
        server_default=text(str(DEFAULT_SLOT_DURATION_MINUTES)),
    )

    schedules: Mapped[list[PickupLocationSchedule]] = relationship(
        back_populates="location",
        cascade="all, delete-orphan",
        order_by="PickupLocationSchedule.start_date",
    )
    special_days: Mapped[list[PickupLocationSpecialDay]] = relationship(
        back_populates="location", cascade="all, delete-orphan"
    )


class PickupLocationSchedule(Base):
    """A date range during which one weekly opening-hours pattern applies."""

    __tablename__ = "pickup_location_schedules"
    __table_args__ = (
        CheckConstraint("start_date <= end_date", name="schedule_date_range_check"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pickup_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("pickup_locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    location: Mapped[PickupLocation] = relationship(back_populates="schedules")
    days: Mapped[list[PickupLocationScheduleDay]] = relationship(
        back_populates="schedule", cascade="all, delete-orphan"
    )


class PickupLocationScheduleDay(Base):
    __tablename__ = "pickup_location_schedule_days"
    __table_args__ = (
        UniqueConstraint("schedule_id", "weekday", name="uq_schedule_day_weekday"),
        CheckConstraint(
            "NOT is_open OR (opening_time IS NOT NULL AND closing_time IS NOT NULL "
            "AND opening_time < closing_time)",
            name="opening_hours_check",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    schedule_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("pickup_location_schedules.id", ondelete="CASCADE"),
        nullable=False,
    )
    weekday: Mapped[str] = mapped_column(String(10), nullable=False)
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    opening_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    closing_time: Mapped[time | None] = mapped_column(Time, nullable=True)

    schedule: Mapped[PickupLocationSchedule] = relationship(back_populates="days")


class PickupLocationSpecialDay(Base):
    """One-off override for a single date (holiday closure, extended hours)."""

    __tablename__ = "pickup_location_special_days"
    __table_args__ = (
        UniqueConstraint("pickup_location_id", "date", name="uq_special_day_location_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    pickup_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("pickup_locations.id", ondelete="CASCADE"),
        nullable=False,
    )
    day: Mapped[date] = mapped_column("date", Date, nullable=False)
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    opening_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    closing_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    location: Mapped[PickupLocation] = relationship(back_populates="special_days")
