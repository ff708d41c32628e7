"""Pydantic schemas for pickup schedules."""

from datetime import date, time
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from matkassen.db.enums import Weekday
from matkassen.db.models.locations import (
    DEFAULT_MAX_PARCELS_PER_SLOT,
    DEFAULT_SLOT_DURATION_MINUTES,
)


class LocationWrite(BaseModel):
    """New pickup location. An explicit null limit means unlimited."""

    name: str = Field(..., min_length=1, max_length=100)
    street_address: str | None = None
    postal_code: str | None = Field(None, pattern=r"^\d{5}$")
    max_parcels_per_day: int | None = Field(None, ge=1)
    max_parcels_per_slot: int | None = Field(DEFAULT_MAX_PARCELS_PER_SLOT, ge=1)
    slot_duration_minutes: int = Field(DEFAULT_SLOT_DURATION_MINUTES, ge=5, le=240)


class LocationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    street_address: str | None = None
    postal_code: str | None = None
    max_parcels_per_day: int | None = None
    max_parcels_per_slot: int | None = None
    default_slot_duration_minutes: int


class ScheduleDayWrite(BaseModel):
    weekday: Weekday
    is_open: bool = False
    opening_time: time | None = None
    closing_time: time | None = None

    @model_validator(mode="after")
    def check_hours(self):
        if self.is_open:
            if self.opening_time is None or self.closing_time is None:
                raise ValueError("Open days need opening and closing times")
            if self.opening_time >= self.closing_time:
                raise ValueError("Opening time must be before closing time")
        return self


class ScheduleWrite(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    days: list[ScheduleDayWrite] = Field(default_factory=list)


class ScheduleDayRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    weekday: str
    is_open: bool
    opening_time: time | None = None
    closing_time: time | None = None


class ScheduleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    start_date: date
    end_date: date
    days: list[ScheduleDayRead]


class TimeSlotsRead(BaseModel):
    day: date
    slots: list[str]
    gaps: list[dict]
