"""No-show follow-up detection.

A household needs follow-up when its total no-shows or its current streak
of no-shows reaches the configured threshold, unless an operator dismissed
it after its latest no-show.

The streak walks the household's resolved parcels (picked up or no-show,
not deleted) from the most recent pickup backwards and stops at the first
pickup. Parcels still pending are ignored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from itertools import groupby
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from matkassen.db.models import FoodParcel, Household
from matkassen.services.settings_service import NoShowConfig
from matkassen.utils.clock import Clock

logger = logging.getLogger(__name__)

FOLLOWUP_LIST_LIMIT = 100


@dataclass(frozen=True)
class NoShowStats:
    household_id: UUID
    first_name: str
    last_name: str
    total_no_shows: int
    consecutive_no_shows: int
    last_no_show_at: datetime | None
    dismissed_at: datetime | None = None

    def exceeds(self, config: NoShowConfig) -> bool:
        return (
            self.total_no_shows >= config.total_threshold
            or self.consecutive_no_shows >= config.consecutive_threshold
        )

    @property
    def is_dismissed(self) -> bool:
        """Dismissed and no new no-show since."""
        if self.dismissed_at is None:
            return False
        return self.last_no_show_at is None or self.last_no_show_at <= self.dismissed_at

    def to_dict(self) -> dict:
        return {
            "household_id": str(self.household_id),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "total_no_shows": self.total_no_shows,
            "consecutive_no_shows": self.consecutive_no_shows,
            "last_no_show_at": self.last_no_show_at.isoformat() if self.last_no_show_at else None,
        }


class HouseholdNotFoundError(ValueError):
    pass


def count_consecutive_no_shows(no_show_flags: list[bool]) -> int:
    """Leading no-shows in a most-recent-first list of resolved parcels."""
    streak = 0
    for is_no_show in no_show_flags:
        if not is_no_show:
            break
        streak += 1
    return streak


def _resolved_parcels_query(db: Session):
    return (
        db.query(
            FoodParcel.household_id,
            FoodParcel.no_show_at,
            FoodParcel.pickup_date_time_earliest,
        )
        .filter(
            FoodParcel.deleted_at.is_(None),
            or_(FoodParcel.is_picked_up.is_(True), FoodParcel.no_show_at.isnot(None)),
        )
        .order_by(FoodParcel.household_id, FoodParcel.pickup_date_time_earliest.desc())
    )


def _stats_from_rows(household: Household, rows) -> NoShowStats:
    flags = [row.no_show_at is not None for row in rows]
    no_show_times = [row.no_show_at for row in rows if row.no_show_at is not None]
    return NoShowStats(
        household_id=household.id,
        first_name=household.first_name,
        last_name=household.last_name,
        total_no_shows=len(no_show_times),
        consecutive_no_shows=count_consecutive_no_shows(flags),
        last_no_show_at=max(no_show_times) if no_show_times else None,
        dismissed_at=household.noshow_followup_dismissed_at,
    )


def get_household_noshow_stats(db: Session, household_id: UUID) -> NoShowStats:
    household = db.query(Household).filter(Household.id == household_id).first()
    if household is None:
        raise HouseholdNotFoundError("Household not found")
    rows = _resolved_parcels_query(db).filter(FoodParcel.household_id == household_id).all()
    return _stats_from_rows(household, rows)


def get_households_needing_followup(
    db: Session, config: NoShowConfig, limit: int = FOLLOWUP_LIST_LIMIT
) -> tuple[list[NoShowStats], int]:
    """
    Households over either threshold and not dismissed since their last no-show.

    Returns up to `limit` rows, latest no-show first, plus the total count.
    """
    if not config.enabled:
        return [], 0

    candidate_ids = (
        db.query(FoodParcel.household_id)
        .join(Household, Household.id == FoodParcel.household_id)
        .filter(
            Household.anonymized_at.is_(None),
            FoodParcel.deleted_at.is_(None),
            FoodParcel.no_show_at.isnot(None),
        )
        .distinct()
    )
    households = {
        h.id: h for h in db.query(Household).filter(Household.id.in_(candidate_ids)).all()
    }
    if not households:
        return [], 0

    rows = (
        _resolved_parcels_query(db)
        .filter(FoodParcel.household_id.in_(list(households)))
        .all()
    )
    matches: list[NoShowStats] = []
    for household_id, group in groupby(rows, key=lambda row: row.household_id):
        stats = _stats_from_rows(households[household_id], list(group))
        if stats.exceeds(config) and not stats.is_dismissed:
            matches.append(stats)

    matches.sort(key=lambda s: s.last_no_show_at, reverse=True)
    return matches[:limit], len(matches)


def count_households_needing_followup(db: Session, config: NoShowConfig) -> int:
    _, total = get_households_needing_followup(db, config, limit=0)
    return total


def dismiss_noshow_followup(
    db: Session, household_id: UUID, actor: str, clock: Clock
) -> Household:
    """Hide the household until its next no-show."""
    household = db.query(Household).filter(Household.id == household_id).first()
    if household is None:
        raise HouseholdNotFoundError("Household not found")
    household.noshow_followup_dismissed_at = clock.now()
    household.noshow_followup_dismissed_by = actor
    db.commit()
    logger.info("No-show follow-up dismissed for household %s", household_id)
    return household
