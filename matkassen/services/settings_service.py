"""Global key-value settings and the no-show follow-up configuration."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.orm import Session

from matkassen.db.models import GlobalSetting

NOSHOW_FOLLOWUP_ENABLED_KEY = "noshow_followup_enabled"
NOSHOW_CONSECUTIVE_THRESHOLD_KEY = "noshow_consecutive_threshold"
NOSHOW_TOTAL_THRESHOLD_KEY = "noshow_total_threshold"

DEFAULT_CONSECUTIVE_THRESHOLD = 2
DEFAULT_TOTAL_THRESHOLD = 4
CONSECUTIVE_THRESHOLD_RANGE = (1, 10)
TOTAL_THRESHOLD_RANGE = (1, 50)


@dataclass(frozen=True)
class NoShowConfig:
    enabled: bool = True
    consecutive_threshold: int = DEFAULT_CONSECUTIVE_THRESHOLD
    total_threshold: int = DEFAULT_TOTAL_THRESHOLD


def get_setting(db: Session, key: str) -> str | None:
    row = db.query(GlobalSetting).filter(GlobalSetting.key == key).first()
    return row.value if row else None


def set_setting(db: Session, key: str, value: str | None, actor: str | None = None) -> None:
    """Upsert a setting in the caller's transaction."""
    row = db.query(GlobalSetting).filter(GlobalSetting.key == key).first()
    if row is None:
        db.add(GlobalSetting(key=key, value=value, updated_by=actor))
    else:
        row.value = value
        row.updated_by = actor


def parse_threshold(value: str | None, default: int, bounds: tuple[int, int]) -> int:
    """Stored threshold, or the default when missing, non-numeric or out of range."""
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    low, high = bounds
    if parsed < low or parsed > high:
        return default
    return parsed


def get_noshow_config(db: Session) -> NoShowConfig:
    enabled = get_setting(db, NOSHOW_FOLLOWUP_ENABLED_KEY)
    return NoShowConfig(
        enabled=enabled != "false",
        consecutive_threshold=parse_threshold(
            get_setting(db, NOSHOW_CONSECUTIVE_THRESHOLD_KEY),
            DEFAULT_CONSECUTIVE_THRESHOLD,
            CONSECUTIVE_THRESHOLD_RANGE,
        ),
        total_threshold=parse_threshold(
            get_setting(db, NOSHOW_TOTAL_THRESHOLD_KEY),
            DEFAULT_TOTAL_THRESHOLD,
            TOTAL_THRESHOLD_RANGE,
        ),
    )


def update_noshow_config(
    db: Session,
    *,
    enabled: bool | None = None,
    consecutive_threshold: int | None = None,
    total_threshold: int | None = None,
    actor: str | None = None,
) -> NoShowConfig:
    """Persist the given fields. Out-of-range thresholds are rejected."""
    if consecutive_threshold is not None:
        low, high = CONSECUTIVE_THRESHOLD_RANGE
        if not low <= consecutive_threshold <= high:
            raise ValueError(f"Consecutive threshold must be between {low} and {high}")
    if total_threshold is not None:
        low, high = TOTAL_THRESHOLD_RANGE
        if not low <= total_threshold <= high:
            raise ValueError(f"Total threshold must be between {low} and {high}")

    if enabled is not None:
        set_setting(db, NOSHOW_FOLLOWUP_ENABLED_KEY, "true" if enabled else "false", actor)
    if consecutive_threshold is not None:
        set_setting(db, NOSHOW_CONSECUTIVE_THRESHOLD_KEY, str(consecutive_threshold), actor)
    if total_threshold is not None:
        set_setting(db, NOSHOW_TOTAL_THRESHOLD_KEY, str(total_threshold), actor)
    db.commit()
    return get_noshow_config(db)
