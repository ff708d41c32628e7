"""Household removal and GDPR anonymization.

Removal is blocked while the household has a non-deleted parcel today or
later. A household that never had a parcel is hard-deleted; otherwise its
personal data is replaced with placeholders and its comments and SMS
history are deleted, while parcel rows stay for statistics.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from matkassen.db.models import FoodParcel, Household, HouseholdComment, OutgoingSms
from matkassen.utils.clock import Clock, local_date, start_of_local_day

logger = logging.getLogger(__name__)

ANONYMIZED_FIRST_NAME = "Anonymized"
ANONYMIZED_LAST_NAME = "User"
PLACEHOLDER_PHONE_PREFIX = "000000"
SYSTEM_ACTOR = "system"


class HouseholdNotFoundError(ValueError):
    pass


class HouseholdRemovalBlockedError(ValueError):
    def __init__(self, upcoming_parcel_count: int):
        super().__init__(
            f"Cannot remove household: {upcoming_parcel_count} upcoming parcel(s) scheduled"
        )
        self.upcoming_parcel_count = upcoming_parcel_count


@dataclass(frozen=True)
class RemovalCheck:
    allowed: bool
    reason: str | None = None
    upcoming_parcel_count: int = 0


@dataclass(frozen=True)
class RemovalResult:
    method: str  # "deleted" or "anonymized"
    household_id: UUID


@dataclass
class SweepResult:
    """
    Outcome of one inactivity sweep.

    Households with parcel history are counted in `anonymized`; households
    that never had a parcel are hard-deleted and counted in `deleted`, so
    `anonymized + deleted` is the number of households removed. A household
    without parcels only qualifies once its registration is older than the
    cutoff, so a fresh sign-up is never swept before its first pickup.
    `errors` holds one "<household id>: <message>" entry per failure.
    """

    anonymized: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"anonymized": self.anonymized, "deleted": self.deleted, "errors": self.errors}


def can_remove_household(db: Session, household_id: UUID, clock: Clock) -> RemovalCheck:
    """
    Upcoming means any pickup on or after the start of today (local), so a
    parcel earlier today still blocks even when its window has passed.
    """
    start_of_today = start_of_local_day(local_date(clock.now()))
    upcoming = (
        db.query(func.count(FoodParcel.id))
        .filter(
            FoodParcel.household_id == household_id,
            FoodParcel.deleted_at.is_(None),
            FoodParcel.pickup_date_time_earliest >= start_of_today,
        )
        .scalar()
        or 0
    )
    if upcoming:
        return RemovalCheck(False, "upcoming_parcels", upcoming)
    return RemovalCheck(True)


def next_placeholder_sequence(db: Session) -> int:
    phones = (
        db.query(Household.phone_number)
        .filter(Household.phone_number.like(f"{PLACEHOLDER_PHONE_PREFIX}%"))
        .all()
    )
    highest = 0
    for (phone,) in phones:
        suffix = phone[len(PLACEHOLDER_PHONE_PREFIX):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return highest + 1


def anonymize_household(
    db: Session, household: Household, actor: str, clock: Clock
) -> RemovalResult:
    """Replace PII with placeholders and purge comments and SMS. Already anonymized is a no-op."""
    if household.anonymized_at is not None:
        return RemovalResult("anonymized", household.id)

    sequence = next_placeholder_sequence(db)
    household.first_name = ANONYMIZED_FIRST_NAME
    household.last_name = ANONYMIZED_LAST_NAME
    household.phone_number = f"{PLACEHOLDER_PHONE_PREFIX}{sequence:04d}"
    household.anonymized_at = clock.now()
    household.anonymized_by = actor

    db.query(HouseholdComment).filter(HouseholdComment.household_id == household.id).delete(
        synchronize_session=False
    )
    db.query(OutgoingSms).filter(OutgoingSms.household_id == household.id).delete(
        synchronize_session=False
    )
    db.commit()
    db.expire(household)
    logger.info("Household %s anonymized by %s", household.id, actor)
    return RemovalResult("anonymized", household.id)


def remove_household(db: Session, household_id: UUID, actor: str, clock: Clock) -> RemovalResult:
    household = db.query(Household).filter(Household.id == household_id).first()
    if household is None:
        raise HouseholdNotFoundError("Household not found")

    check = can_remove_household(db, household_id, clock)
    if not check.allowed:
        raise HouseholdRemovalBlockedError(check.upcoming_parcel_count)

    has_parcels = (
        db.query(FoodParcel.id).filter(FoodParcel.household_id == household_id).first()
        is not None
    )
    if not has_parcels:
        db.delete(household)
        db.commit()
        logger.info("Household %s hard deleted (no service history)", household_id)
        return RemovalResult("deleted", household_id)

    return anonymize_household(db, household, actor, clock)


def find_households_for_anonymization(
    db: Session, cutoff: datetime, clock: Clock
) -> list[UUID]:
    """
    Non-anonymized households whose latest parcel is before `cutoff`.

    Households without any parcel qualify once they were registered before
    the cutoff. Households blocked by upcoming parcels are left out.
    """
    last_parcel = func.max(FoodParcel.pickup_date_time_earliest)
    rows = (
        db.query(Household.id, Household.created_at, last_parcel.label("last_parcel_at"))
        .outerjoin(FoodParcel, FoodParcel.household_id == Household.id)
        .filter(Household.anonymized_at.is_(None))
        .group_by(Household.id, Household.created_at)
        .all()
    )
    eligible: list[UUID] = []
    for row in rows:
        reference = row.last_parcel_at if row.last_parcel_at is not None else row.created_at
        if reference is None or reference >= cutoff:
            continue
        if can_remove_household(db, row.id, clock).allowed:
            eligible.append(row.id)
    return eligible


def run_anonymization_sweep(db: Session, inactive_ms: float, clock: Clock) -> SweepResult:
    """Remove every inactive household; one failure never stops the rest."""
    cutoff = clock.now() - timedelta(milliseconds=inactive_ms)
    household_ids = find_households_for_anonymization(db, cutoff, clock)

    result = SweepResult()
    for household_id in household_ids:
        try:
            removal = remove_household(db, household_id, SYSTEM_ACTOR, clock)
        except Exception as e:
            db.rollback()
            logger.exception("Failed to anonymize household %s", household_id)
            result.errors.append(f"{household_id}: {e}")
            continue
        if removal.method == "deleted":
            result.deleted += 1
        else:
            result.anonymized += 1

    logger.info(
        "Anonymization sweep processed %d household(s): %d anonymized, %d deleted, %d error(s)",
        len(household_ids),
        result.anonymized,
        result.deleted,
        len(result.errors),
    )
    return result
