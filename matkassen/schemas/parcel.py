"""Pydantic schemas for food parcels."""

from datetime import datetime
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field


class ParcelWrite(BaseModel):
    """One pickup window at one location."""

    location_id: UUID
    pickup_earliest_time: AwareDatetime
    pickup_latest_time: AwareDatetime


class ParcelBatchWrite(BaseModel):
    parcels: list[ParcelWrite] = Field(..., max_length=60)


class ParcelRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    household_id: UUID
    pickup_location_id: UUID
    pickup_date_time_earliest: datetime
    pickup_date_time_latest: datetime
    is_picked_up: bool
    picked_up_at: datetime | None = None
    no_show_at: datetime | None = None
    deleted_at: datetime | None = None
