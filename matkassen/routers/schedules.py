"""Schedules router - location opening hours and slot grids."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from matkassen.core.deps import get_db, require_admin
from matkassen.db.models import PickupLocation, PickupLocationSchedule
from matkassen.schemas.schedule import (
    LocationRead,
    LocationWrite,
    ScheduleRead,
    ScheduleWrite,
    TimeSlotsRead,
)
from matkassen.services import schedule_service
from matkassen.services.schedule_service import ScheduleOverlapError
from matkassen.utils.schedule_validation import (
    DaySchedule,
    find_time_gaps,
    generate_day_specific_time_slots,
)

router = APIRouter(dependencies=[Depends(require_admin)])


def _get_location(db: Session, location_id: UUID) -> PickupLocation:
    location = db.query(PickupLocation).filter(PickupLocation.id == location_id).first()
    if not location:
        raise HTTPException(status_code=404, detail="Pickup location not found")
    return location


def _overlap_conflict(exc: ScheduleOverlapError) -> HTTPException:
    return HTTPException(
        status_code=409,
        detail={
            "message": str(exc),
            "conflicting_schedule_id": str(exc.conflicting_schedule_id)
            if exc.conflicting_schedule_id
            else None,
        },
    )


@router.post("/locations", response_model=LocationRead, status_code=201)
def create_location(data: LocationWrite, db: Session = Depends(get_db)):
    """Create a location; slot capacity defaults to 4 unless sent as null."""
    return schedule_service.create_location(
        db,
        name=data.name,
        street_address=data.street_address,
        postal_code=data.postal_code,
        max_parcels_per_day=data.max_parcels_per_day,
        max_parcels_per_slot=data.max_parcels_per_slot,
        slot_duration_minutes=data.slot_duration_minutes,
    )


@router.get("/locations/{location_id}/schedules", response_model=list[ScheduleRead])
def list_schedules(location_id: UUID, db: Session = Depends(get_db)):
    location = _get_location(db, location_id)
    return sorted(location.schedules, key=lambda s: s.start_date)


@router.post("/locations/{location_id}/schedules", response_model=ScheduleRead, status_code=201)
def create_schedule(location_id: UUID, data: ScheduleWrite, db: Session = Depends(get_db)):
    location = _get_location(db, location_id)
    days = [
        DaySchedule(
            weekday=d.weekday.value,
            is_open=d.is_open,
            opening_time=d.opening_time,
            closing_time=d.closing_time,
        )
        for d in data.days
    ]
    try:
        return schedule_service.create_schedule(
            db, location, data.name, data.start_date, data.end_date, days
        )
    except ScheduleOverlapError as e:
        raise _overlap_conflict(e) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.patch("/schedules/{schedule_id}/dates", response_model=ScheduleRead)
def update_schedule_dates(
    schedule_id: UUID,
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: Session = Depends(get_db),
):
    schedule = (
        db.query(PickupLocationSchedule).filter(PickupLocationSchedule.id == schedule_id).first()
    )
    if not schedule:
        raise HTTPException(status_code=404, detail="Schedule not found")
    try:
        return schedule_service.update_schedule_dates(db, schedule, start_date, end_date)
    except ScheduleOverlapError as e:
        raise _overlap_conflict(e) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.get("/locations/{location_id}/slots", response_model=TimeSlotsRead)
def list_time_slots(
    location_id: UUID,
    day: date = Query(..., alias="date"),
    db: Session = Depends(get_db),
):
    """Slot starts for a date plus any gaps in the grid."""
    location = _get_location(db, location_id)
    info = schedule_service.get_location_schedule_info(db, location.id)
    slot_minutes = location.default_slot_duration_minutes
    slots = generate_day_specific_time_slots(day, slot_minutes, info)
    gaps = [
        {
            "start_time": gap.start_time,
            "end_time": gap.end_time,
            "duration_minutes": gap.duration_minutes,
        }
        for gap in find_time_gaps(slots, slot_minutes)
    ]
    return {"day": day, "slots": slots, "gaps": gaps}
