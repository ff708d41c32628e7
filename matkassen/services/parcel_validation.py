"""Parcel assignment validation.

Decides whether a pickup assignment is allowed: location exists, window is
sane and not in the past (new parcels only), inside opening hours, under the
daily and per-slot capacity, and not a second parcel for the household that
day. Violations come back as ValidationError values; nothing here raises for
an expected rule failure.

The checks read through a narrow ParcelRepository so the rule engine does not
depend on query construction. Callers must run validation inside the same
transaction as the write it guards (see parcel_service).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Any, Collection, Iterable, Protocol
from uuid import UUID

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from matkassen.db.enums import ValidationErrorCode
from matkassen.db.models import FoodParcel, PickupLocation
from matkassen.services import schedule_service
from matkassen.utils.clock import Clock, format_hhmm, local_date, local_day_bounds
from matkassen.utils.location_availability import check_window_within_opening_hours
from matkassen.utils.schedule_validation import LocationScheduleInfo

logger = logging.getLogger(__name__)


# =============================================================================
# Types
# =============================================================================


@dataclass(frozen=True)
class ValidationError:
    field: str
    code: ValidationErrorCode
    message: str
    details: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


@dataclass
class ValidationResult:
    errors: list[ValidationError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def raise_for_errors(self) -> None:
        if self.errors:
            raise ParcelValidationError(self.errors)


class ParcelValidationError(Exception):
    """Exception-style wrapper around a non-empty list of validation errors."""

    def __init__(self, errors: list[ValidationError]):
        self.errors = list(errors)
        summary = "; ".join(f"{e.code.value}: {e.message}" for e in self.errors)
        super().__init__(summary or "Parcel validation failed")


@dataclass(frozen=True)
class ParcelCandidate:
    """A proposed parcel. parcel_id is set when an existing parcel is edited."""

    household_id: UUID
    location_id: UUID
    pickup_earliest_time: datetime
    pickup_latest_time: datetime
    parcel_id: UUID | None = None
    key: str | None = None

    @property
    def is_new(self) -> bool:
        return self.parcel_id is None

    @property
    def local_date(self) -> date:
        return local_date(self.pickup_earliest_time)


@dataclass(frozen=True)
class LocationLimits:
    id: UUID
    name: str
    max_parcels_per_day: int | None
    max_parcels_per_slot: int | None
    slot_duration_minutes: int


class ParcelRepository(Protocol):
    """Reads the validator needs. All counts ignore soft-deleted parcels."""

    def get_location(self, location_id: UUID, lock: bool = False) -> LocationLimits | None: ...

    def get_schedule_info(self, location_id: UUID) -> LocationScheduleInfo: ...

    def parcel_exists(self, parcel_id: UUID) -> bool: ...

    def count_parcels_on_date(
        self, location_id: UUID, day: date, exclude_ids: Collection[UUID] = ()
    ) -> int: ...

    def count_parcels_in_window(
        self,
        location_id: UUID,
        start: datetime,
        end: datetime,
        exclude_ids: Collection[UUID] = (),
        slot_minutes: int = 0,
    ) -> int: ...

    def find_household_parcels_on_date(
        self, household_id: UUID, day: date, exclude_ids: Collection[UUID] = ()
    ) -> list[UUID]: ...


class SqlAlchemyParcelRepository:
    """ParcelRepository over a SQLAlchemy session (the caller's transaction)."""

    def __init__(self, db: Session):
        self.db = db

    def get_location(self, location_id: UUID, lock: bool = False) -> LocationLimits | None:
        query = self.db.query(PickupLocation).filter(PickupLocation.id == location_id)
        if lock:
            # Serializes concurrent assignments to the same location
            query = query.with_for_update()
        location = query.first()
        if location is None:
            return None
        return LocationLimits(
            id=location.id,
            name=location.name,
            max_parcels_per_day=location.max_parcels_per_day,
            max_parcels_per_slot=location.max_parcels_per_slot,
            slot_duration_minutes=location.default_slot_duration_minutes,
        )

    def get_schedule_info(self, location_id: UUID) -> LocationScheduleInfo:
        return schedule_service.get_location_schedule_info(self.db, location_id)

    def parcel_exists(self, parcel_id: UUID) -> bool:
        return (
            self.db.query(FoodParcel.id)
            .filter(FoodParcel.id == parcel_id, FoodParcel.deleted_at.is_(None))
            .first()
            is not None
        )

    def _active(self, query, exclude_ids: Collection[UUID]):
        query = query.filter(FoodParcel.deleted_at.is_(None))
        if exclude_ids:
            query = query.filter(FoodParcel.id.notin_(list(exclude_ids)))
        return query

    def count_parcels_on_date(
        self, location_id: UUID, day: date, exclude_ids: Collection[UUID] = ()
    ) -> int:
        start, end = local_day_bounds(day)
        query = self.db.query(func.count(FoodParcel.id)).filter(
            FoodParcel.pickup_location_id == location_id,
            FoodParcel.pickup_date_time_earliest >= start,
            FoodParcel.pickup_date_time_earliest < end,
        )
        return self._active(query, exclude_ids).scalar() or 0

    def count_parcels_in_window(
        self,
        location_id: UUID,
        start: datetime,
        end: datetime,
        exclude_ids: Collection[UUID] = (),
        slot_minutes: int = 0,
    ) -> int:
        """Parcels overlapping [start, end). Zero-length rows occupy slot_minutes from their start."""
        earliest = FoodParcel.pickup_date_time_earliest
        latest = FoodParcel.pickup_date_time_latest
        query = self.db.query(func.count(FoodParcel.id)).filter(
            FoodParcel.pickup_location_id == location_id,
            earliest < end,
            or_(
                latest > start,
                and_(latest <= earliest, earliest > start - timedelta(minutes=slot_minutes)),
            ),
        )
        return self._active(query, exclude_ids).scalar() or 0

    def find_household_parcels_on_date(
        self, household_id: UUID, day: date, exclude_ids: Collection[UUID] = ()
    ) -> list[UUID]:
        start, end = local_day_bounds(day)
        query = self.db.query(FoodParcel.id).filter(
            FoodParcel.household_id == household_id,
            FoodParcel.pickup_date_time_earliest >= start,
            FoodParcel.pickup_date_time_earliest < end,
        )
        rows = self._active(query, exclude_ids).order_by(FoodParcel.pickup_date_time_earliest)
        return [row.id for row in rows.all()]


# =============================================================================
# Validation
# =============================================================================


def _slot_window(candidate: ParcelCandidate, location: LocationLimits) -> tuple[datetime, datetime]:
    start, end = candidate.pickup_earliest_time, candidate.pickup_latest_time
    if end <= start:
        end = start + timedelta(minutes=location.slot_duration_minutes)
    return start, end


def _windows_overlap(
    first: tuple[datetime, datetime], second: tuple[datetime, datetime]
) -> bool:
    return first[0] < second[1] and first[1] > second[0]


def _check_candidate(
    repo: ParcelRepository,
    candidate: ParcelCandidate,
    now: datetime,
    *,
    exclude_ids: Collection[UUID],
    pending: Iterable[ParcelCandidate] = (),
    lock: bool = False,
    schedule_cache: dict[UUID, LocationScheduleInfo] | None = None,
) -> list[ValidationError]:
    """Run every rule for one candidate.

    `pending` holds earlier candidates of the same batch that are not in the
    store yet; they count against capacity and double booking like stored rows.
    """
    errors: list[ValidationError] = []
    pending = list(pending)
    day = candidate.local_date
    day_iso = day.isoformat()
    time_slot = format_hhmm(candidate.pickup_earliest_time)

    if candidate.parcel_id is not None and not repo.parcel_exists(candidate.parcel_id):
        return [
            ValidationError(
                field="parcel_id",
                code=ValidationErrorCode.PARCEL_NOT_FOUND,
                message="Food parcel not found",
                details={"parcel_id": str(candidate.parcel_id)},
            )
        ]

    location = repo.get_location(candidate.location_id, lock=lock)
    if location is None:
        return [
            ValidationError(
                field="location_id",
                code=ValidationErrorCode.LOCATION_NOT_FOUND,
                message="Pickup location not found",
                details={"location_id": str(candidate.location_id)},
            )
        ]

    if candidate.pickup_earliest_time > candidate.pickup_latest_time:
        return [
            ValidationError(
                field="time_slot",
                code=ValidationErrorCode.INVALID_TIME_SLOT,
                message="Pickup window ends before it starts",
                details={
                    "earliest": candidate.pickup_earliest_time.isoformat(),
                    "latest": candidate.pickup_latest_time.isoformat(),
                },
            )
        ]

    # Edits keep their original time even once it has passed
    if candidate.is_new and candidate.pickup_earliest_time < now:
        errors.append(
            ValidationError(
                field="time_slot",
                code=ValidationErrorCode.PAST_TIME_SLOT,
                message="Cannot schedule pickup in the past",
                details={
                    "requested_time": candidate.pickup_earliest_time.isoformat(),
                    "current_time": now.isoformat(),
                },
            )
        )

    if schedule_cache is not None and location.id in schedule_cache:
        schedule_info = schedule_cache[location.id]
    else:
        schedule_info = repo.get_schedule_info(location.id)
        if schedule_cache is not None:
            schedule_cache[location.id] = schedule_info
    hours = check_window_within_opening_hours(
        candidate.pickup_earliest_time, candidate.pickup_latest_time, schedule_info
    )
    if not hours.is_available:
        errors.append(
            ValidationError(
                field="time_slot",
                code=ValidationErrorCode.OUTSIDE_OPERATING_HOURS,
                message=hours.message or "The selected time is outside operating hours",
                details={
                    "date": day_iso,
                    "time_slot": time_slot,
                    "location_id": str(location.id),
                    "reason": hours.message,
                },
            )
        )

    same_location = [p for p in pending if p.location_id == location.id]

    if location.max_parcels_per_day is not None:
        current = repo.count_parcels_on_date(location.id, day, exclude_ids) + sum(
            1 for p in same_location if p.local_date == day
        )
        if current >= location.max_parcels_per_day:
            errors.append(
                ValidationError(
                    field="capacity",
                    code=ValidationErrorCode.MAX_DAILY_CAPACITY_REACHED,
                    message=(
                        f"Maximum daily capacity ({location.max_parcels_per_day}) "
                        "reached for this date"
                    ),
                    details={
                        "current": current,
                        "maximum": location.max_parcels_per_day,
                        "date": day_iso,
                        "location_id": str(location.id),
                    },
                )
            )

    if location.max_parcels_per_slot is not None:
        window = _slot_window(candidate, location)
        current = repo.count_parcels_in_window(
            location.id,
            window[0],
            window[1],
            exclude_ids,
            slot_minutes=location.slot_duration_minutes,
        ) + sum(1 for p in same_location if _windows_overlap(_slot_window(p, location), window))
        if current >= location.max_parcels_per_slot:
            errors.append(
                ValidationError(
                    field="time_slot",
                    code=ValidationErrorCode.MAX_SLOT_CAPACITY_REACHED,
                    message=(
                        f"Maximum capacity ({location.max_parcels_per_slot}) "
                        "reached for this time slot"
                    ),
                    details={
                        "current": current,
                        "maximum": location.max_parcels_per_slot,
                        "date": day_iso,
                        "location_id": str(location.id),
                        "time_slot": time_slot,
                    },
                )
            )

    conflicts = repo.find_household_parcels_on_date(candidate.household_id, day, exclude_ids)
    pending_conflict = next(
        (
            p
            for p in pending
            if p.household_id == candidate.household_id and p.local_date == day
        ),
        None,
    )
    if conflicts or pending_conflict is not None:
        conflicting_id = conflicts[0] if conflicts else pending_conflict.parcel_id
        errors.append(
            ValidationError(
                field="time_slot",
                code=ValidationErrorCode.HOUSEHOLD_DOUBLE_BOOKING,
                message="Household already has a parcel scheduled for this date",
                details={
                    "conflicting_parcel_id": str(conflicting_id) if conflicting_id else None,
                    "household_id": str(candidate.household_id),
                    "time_slot": time_slot,
                    "date": day_iso,
                },
            )
        )

    return errors


def validate_parcel_assignment(
    repo: ParcelRepository,
    candidate: ParcelCandidate,
    clock: Clock,
    *,
    lock: bool = False,
) -> ValidationResult:
    """Validate one parcel create or edit. The parcel never conflicts with itself."""
    exclude = {candidate.parcel_id} if candidate.parcel_id else set()
    errors = _check_candidate(repo, candidate, clock.now(), exclude_ids=exclude, lock=lock)
    if errors:
        logger.info(
            "Parcel assignment rejected",
            extra={
                "household_id": str(candidate.household_id),
                "codes": [e.code.value for e in errors],
            },
        )
    return ValidationResult(errors=errors)


def validate_bulk_parcel_assignments(
    repo: ParcelRepository,
    candidates: list[ParcelCandidate],
    clock: Clock,
    *,
    lock: bool = False,
) -> ValidationResult:
    """
    Validate a whole batch, accumulating every violation.

    Batch members count against each other (two new parcels for the same
    household and day conflict). Error fields are prefixed with
    "parcel_<key>_" so callers can point at the offending entry. Any error
    means the caller must reject the whole batch.
    """
    now = clock.now()
    batch_ids = {c.parcel_id for c in candidates if c.parcel_id is not None}
    schedule_cache: dict[UUID, LocationScheduleInfo] = {}
    locked: set[UUID] = set()
    accepted: list[ParcelCandidate] = []
    errors: list[ValidationError] = []

    for index, candidate in enumerate(candidates):
        key = candidate.key or (str(candidate.parcel_id) if candidate.parcel_id else str(index))
        candidate_errors = _check_candidate(
            repo,
            candidate,
            now,
            exclude_ids=batch_ids,
            pending=accepted,
            lock=lock and candidate.location_id not in locked,
            schedule_cache=schedule_cache,
        )
        locked.add(candidate.location_id)
        if candidate_errors:
            errors.extend(replace(e, field=f"parcel_{key}_{e.field}") for e in candidate_errors)
        else:
            accepted.append(candidate)

    return ValidationResult(errors=errors)


# =============================================================================
# Presentation
# =============================================================================


def format_validation_error(error: ValidationError, location_name: str | None = None) -> str:
    """User-facing message for an error. Unknown codes fall back to error.message."""
    details = error.details or {}
    code = error.code

    if code == ValidationErrorCode.MAX_DAILY_CAPACITY_REACHED:
        return (
            f"{location_name or 'This location'} has reached its maximum capacity of "
            f"{details.get('maximum')} parcels for {details.get('date')}"
        )
    if code == ValidationErrorCode.MAX_SLOT_CAPACITY_REACHED:
        return "This time slot is fully booked. Please select a different time."
    if code == ValidationErrorCode.HOUSEHOLD_DOUBLE_BOOKING:
        return f"This household already has a parcel scheduled for {details.get('date')}"
    if code == ValidationErrorCode.OUTSIDE_OPERATING_HOURS:
        return details.get("reason") or "The selected time is outside operating hours"
    if code == ValidationErrorCode.PAST_TIME_SLOT:
        return "Cannot schedule pickup in the past"
    return error.message
