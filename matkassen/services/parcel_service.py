"""Parcel service - validated parcel writes with their SMS side effects.

Every write validates inside the same transaction that persists it, after
locking the affected location rows, so two concurrent requests cannot both
pass a capacity check against a stale count. Any failure rolls the whole
batch back.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from matkassen.core.structured_logging import build_log_context
from matkassen.db.models import FoodParcel, Household
from matkassen.services.parcel_validation import (
    ParcelCandidate,
    ParcelValidationError,
    SqlAlchemyParcelRepository,
    validate_bulk_parcel_assignments,
    validate_parcel_assignment,
)
from matkassen.services.sms import parcel_sms
from matkassen.utils.clock import Clock, local_date

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class ParcelStateError(ValueError):
    """The parcel is in a state that does not allow the requested change."""


@dataclass(frozen=True)
class ParcelInput:
    location_id: UUID
    pickup_earliest_time: datetime
    pickup_latest_time: datetime


def _get_household(db: Session, household_id: UUID) -> Household:
    household = db.query(Household).filter(Household.id == household_id).first()
    if household is None:
        raise NotFoundError("Household not found")
    if household.is_anonymized:
        raise ParcelStateError("Household has been anonymized")
    return household


def get_parcel(db: Session, parcel_id: UUID) -> FoodParcel:
    parcel = (
        db.query(FoodParcel)
        .filter(FoodParcel.id == parcel_id, FoodParcel.deleted_at.is_(None))
        .first()
    )
    if parcel is None:
        raise NotFoundError("Food parcel not found")
    return parcel


def create_parcels(
    db: Session, household_id: UUID, parcels: list[ParcelInput], clock: Clock
) -> list[FoodParcel]:
    """Create a batch of parcels for one household, all or nothing."""
    try:
        _get_household(db, household_id)
        candidates = [
            ParcelCandidate(
                household_id=household_id,
                location_id=p.location_id,
                pickup_earliest_time=p.pickup_earliest_time,
                pickup_latest_time=p.pickup_latest_time,
                key=str(index),
            )
            for index, p in enumerate(parcels)
        ]
        repo = SqlAlchemyParcelRepository(db)
        validate_bulk_parcel_assignments(repo, candidates, clock, lock=True).raise_for_errors()

        created = [
            FoodParcel(
                household_id=household_id,
                pickup_location_id=c.location_id,
                pickup_date_time_earliest=c.pickup_earliest_time,
                pickup_date_time_latest=c.pickup_latest_time,
            )
            for c in candidates
        ]
        db.add_all(created)
        db.flush()
        parcel_sms.queue_sms_for_parcels(db, created, clock)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Created %d parcel(s)",
        len(created),
        extra=build_log_context(household_id=household_id),
    )
    return created


def update_parcel(
    db: Session, parcel_id: UUID, changes: ParcelInput, clock: Clock
) -> FoodParcel:
    """Reschedule or move a parcel; its reminder follows the new time."""
    try:
        parcel = get_parcel(db, parcel_id)
        if parcel.is_picked_up:
            raise ParcelStateError("Picked-up parcels cannot be changed")

        candidate = ParcelCandidate(
            household_id=parcel.household_id,
            location_id=changes.location_id,
            pickup_earliest_time=changes.pickup_earliest_time,
            pickup_latest_time=changes.pickup_latest_time,
            parcel_id=parcel.id,
        )
        repo = SqlAlchemyParcelRepository(db)
        validate_parcel_assignment(repo, candidate, clock, lock=True).raise_for_errors()

        time_changed = (
            parcel.pickup_date_time_earliest != changes.pickup_earliest_time
            or parcel.pickup_location_id != changes.location_id
        )
        parcel.pickup_location_id = changes.location_id
        parcel.pickup_date_time_earliest = changes.pickup_earliest_time
        parcel.pickup_date_time_latest = changes.pickup_latest_time
        db.flush()
        if time_changed:
            parcel_sms.queue_sms_for_updated_parcel(db, parcel, clock)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return parcel


def replace_household_parcels(
    db: Session,
    household_id: UUID,
    parcels: list[ParcelInput],
    clock: Clock,
    actor: str,
) -> list[FoodParcel]:
    """
    Make the household's upcoming parcels match `parcels` exactly.

    Upcoming parcels whose local date is kept are moved in place, the rest
    are soft-deleted, and new dates become new parcels. Validation covers
    the final set; one bad entry leaves every parcel untouched.
    """
    try:
        _get_household(db, household_id)
        now = clock.now()
        existing = (
            db.query(FoodParcel)
            .filter(
                FoodParcel.household_id == household_id,
                FoodParcel.deleted_at.is_(None),
                FoodParcel.is_picked_up.is_(False),
                FoodParcel.pickup_date_time_earliest >= now,
            )
            .order_by(FoodParcel.pickup_date_time_earliest)
            .all()
        )
        existing_by_date = {local_date(p.pickup_date_time_earliest): p for p in existing}

        candidates: list[ParcelCandidate] = []
        kept: dict[UUID, FoodParcel] = {}
        for index, p in enumerate(parcels):
            match = existing_by_date.pop(local_date(p.pickup_earliest_time), None)
            if match is not None:
                kept[match.id] = match
            candidates.append(
                ParcelCandidate(
                    household_id=household_id,
                    location_id=p.location_id,
                    pickup_earliest_time=p.pickup_earliest_time,
                    pickup_latest_time=p.pickup_latest_time,
                    parcel_id=match.id if match is not None else None,
                    key=str(index),
                )
            )

        # Parcels about to be removed must not count against the new set
        for removed in existing_by_date.values():
            removed.deleted_at = now
            removed.deleted_by = actor
        db.flush()

        repo = SqlAlchemyParcelRepository(db)
        validate_bulk_parcel_assignments(repo, candidates, clock, lock=True).raise_for_errors()

        result: list[FoodParcel] = []
        created: list[FoodParcel] = []
        for candidate in candidates:
            if candidate.parcel_id is not None:
                parcel = kept[candidate.parcel_id]
                moved = (
                    parcel.pickup_date_time_earliest != candidate.pickup_earliest_time
                    or parcel.pickup_location_id != candidate.location_id
                )
                parcel.pickup_location_id = candidate.location_id
                parcel.pickup_date_time_earliest = candidate.pickup_earliest_time
                parcel.pickup_date_time_latest = candidate.pickup_latest_time
                if moved:
                    db.flush()
                    parcel_sms.queue_sms_for_updated_parcel(db, parcel, clock)
                result.append(parcel)
            else:
                parcel = FoodParcel(
                    household_id=household_id,
                    pickup_location_id=candidate.location_id,
                    pickup_date_time_earliest=candidate.pickup_earliest_time,
                    pickup_date_time_latest=candidate.pickup_latest_time,
                )
                db.add(parcel)
                created.append(parcel)
                result.append(parcel)
        db.flush()

        for removed in existing_by_date.values():
            parcel_sms.queue_cancellation_sms(db, removed, clock)
        parcel_sms.queue_sms_for_parcels(db, created, clock)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Replaced parcels: %d kept, %d created, %d removed",
        len(kept),
        len(created),
        len(existing_by_date),
        extra=build_log_context(household_id=household_id),
    )
    return result


def soft_delete_parcel(db: Session, parcel_id: UUID, actor: str, clock: Clock) -> FoodParcel:
    """Cancel a parcel. Unsent SMS are cancelled; a sent reminder gets a cancellation notice."""
    try:
        parcel = get_parcel(db, parcel_id)
        if parcel.is_picked_up:
            raise ParcelStateError("Picked-up parcels cannot be cancelled")
        parcel.deleted_at = clock.now()
        parcel.deleted_by = actor
        db.flush()
        parcel_sms.queue_cancellation_sms(db, parcel, clock)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info("Parcel cancelled", extra=build_log_context(parcel_id=parcel_id))
    return parcel


def mark_picked_up(db: Session, parcel_id: UUID, actor: str, clock: Clock) -> FoodParcel:
    parcel = get_parcel(db, parcel_id)
    if parcel.is_picked_up:
        return parcel
    if parcel.no_show_at is not None:
        raise ParcelStateError("Parcel is already marked as a no-show")
    parcel.is_picked_up = True
    parcel.picked_up_at = clock.now()
    parcel.picked_up_by = actor
    db.commit()
    return parcel


def mark_no_show(db: Session, parcel_id: UUID, actor: str, clock: Clock) -> FoodParcel:
    """Record that the household never collected the parcel.

    Only past-or-today parcels qualify; a future pickup cannot be missed yet.
    """
    parcel = get_parcel(db, parcel_id)
    if parcel.no_show_at is not None:
        return parcel
    if parcel.is_picked_up:
        raise ParcelStateError("Parcel has already been picked up")
    now = clock.now()
    if local_date(parcel.pickup_date_time_earliest) > local_date(now):
        raise ParcelStateError("Cannot mark a future parcel as a no-show")
    parcel.no_show_at = now
    parcel.no_show_by = actor
    db.commit()
    logger.info("Parcel marked as no-show", extra=build_log_context(parcel_id=parcel_id))
    return parcel
