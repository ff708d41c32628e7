"""Schedule service - opening-hours lookup and schedule overlap protection."""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy.orm import Session, selectinload

from matkassen.db.enums import WEEKDAYS
from matkassen.db.models import (
    PickupLocation,
    PickupLocationSchedule,
    PickupLocationScheduleDay,
    PickupLocationSpecialDay,
)
from matkassen.db.models.locations import (
    DEFAULT_MAX_PARCELS_PER_SLOT,
    DEFAULT_SLOT_DURATION_MINUTES,
)
from matkassen.utils.schedule_validation import (
    DateRange,
    DaySchedule,
    LocationScheduleInfo,
    find_overlapping_schedule,
    location_schedule_from_model,
    special_day_from_model,
)


class ScheduleOverlapError(ValueError):
    """A schedule's date range clashes with another schedule at the same location."""

    def __init__(self, message: str, conflicting_schedule_id: UUID | None = None):
        super().__init__(message)
        self.conflicting_schedule_id = conflicting_schedule_id


def get_location_schedule_info(db: Session, location_id: UUID) -> LocationScheduleInfo:
    """Load every schedule and special day for a location as plain values."""
    schedules = (
        db.query(PickupLocationSchedule)
        .options(selectinload(PickupLocationSchedule.days))
        .filter(PickupLocationSchedule.pickup_location_id == location_id)
        .order_by(PickupLocationSchedule.start_date)
        .all()
    )
    special_days = (
        db.query(PickupLocationSpecialDay)
        .filter(PickupLocationSpecialDay.pickup_location_id == location_id)
        .all()
    )
    return LocationScheduleInfo(
        schedules=[location_schedule_from_model(s) for s in schedules],
        special_days=[special_day_from_model(s) for s in special_days],
    )


def validate_schedule_overlap(
    db: Session,
    location_id: UUID,
    start_date: date,
    end_date: date,
    exclude_schedule_id: UUID | None = None,
) -> None:
    """
    Raise ScheduleOverlapError if [start_date, end_date] overlaps another schedule.

    Passing the schedule's own id on update keeps it from clashing with itself.
    """
    if start_date > end_date:
        raise ValueError("Schedule start date must be on or before its end date")

    existing = (
        db.query(PickupLocationSchedule)
        .filter(PickupLocationSchedule.pickup_location_id == location_id)
        .order_by(PickupLocationSchedule.start_date)
        .all()
    )
    by_id = {s.id: s for s in existing}
    overlap = find_overlapping_schedule(
        DateRange(start_date=start_date, end_date=end_date, id=exclude_schedule_id),
        [DateRange(start_date=s.start_date, end_date=s.end_date, id=s.id) for s in existing],
    )
    if overlap is None:
        return

    clash = by_id[overlap.id]
    raise ScheduleOverlapError(
        f'Schedule overlaps with existing schedule "{clash.name or "Unknown"}" '
        f"({clash.start_date.isoformat()} - {clash.end_date.isoformat()})",
        conflicting_schedule_id=clash.id,
    )


def create_location(
    db: Session,
    name: str,
    street_address: str | None = None,
    postal_code: str | None = None,
    max_parcels_per_day: int | None = None,
    max_parcels_per_slot: int | None = DEFAULT_MAX_PARCELS_PER_SLOT,
    slot_duration_minutes: int = DEFAULT_SLOT_DURATION_MINUTES,
) -> PickupLocation:
    """Create a pickup location. Pass None for a limit to make it unlimited."""
    location = PickupLocation(
        name=name,
        street_address=street_address,
        postal_code=postal_code,
        max_parcels_per_day=max_parcels_per_day,
        max_parcels_per_slot=max_parcels_per_slot,
        default_slot_duration_minutes=slot_duration_minutes,
    )
    db.add(location)
    db.commit()
    db.refresh(location)
    return location


def create_schedule(
    db: Session,
    location: PickupLocation,
    name: str,
    start_date: date,
    end_date: date,
    days: list[DaySchedule],
) -> PickupLocationSchedule:
    """Create a schedule with one row per weekday; missing weekdays are closed."""
    validate_schedule_overlap(db, location.id, start_date, end_date)

    by_weekday = {d.weekday: d for d in days}
    schedule = PickupLocationSchedule(
        pickup_location_id=location.id,
        name=name,
        start_date=start_date,
        end_date=end_date,
    )
    for weekday in WEEKDAYS:
        config = by_weekday.get(weekday.value)
        is_open = bool(config and config.is_open)
        schedule.days.append(
            PickupLocationScheduleDay(
                weekday=weekday.value,
                is_open=is_open,
                opening_time=config.opening_time if is_open else None,
                closing_time=config.closing_time if is_open else None,
            )
        )
    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    return schedule


def update_schedule_dates(
    db: Session, schedule: PickupLocationSchedule, start_date: date, end_date: date
) -> PickupLocationSchedule:
    validate_schedule_overlap(
        db, schedule.pickup_location_id, start_date, end_date, exclude_schedule_id=schedule.id
    )
    schedule.start_date = start_date
    schedule.end_date = end_date
    db.commit()
    db.refresh(schedule)
    return schedule
