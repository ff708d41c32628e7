"""Pydantic schemas for no-show follow-up."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class NoShowConfigRead(BaseModel):
    enabled: bool
    consecutive_threshold: int
    total_threshold: int


class NoShowConfigUpdate(BaseModel):
    enabled: bool | None = None
    consecutive_threshold: int | None = Field(default=None, ge=1, le=10)
    total_threshold: int | None = Field(default=None, ge=1, le=50)


class NoShowFollowupItem(BaseModel):
    household_id: UUID
    first_name: str
    last_name: str
    total_no_shows: int
    consecutive_no_shows: int
    last_no_show_at: datetime | None = None


class NoShowFollowupList(BaseModel):
    items: list[NoShowFollowupItem]
    total_count: int
