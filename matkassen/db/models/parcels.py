"""Food parcel model."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Uuid,
    false,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from matkassen.db.base import Base

if TYPE_CHECKING:
    from matkassen.db.models import Household, PickupLocation


class FoodParcel(Base):
    """
    A scheduled pickup for one household at one location.

    Soft-deleted on cancellation (deleted_at). is_picked_up and no_show_at
    are each set once and never together.
    """

    __tablename__ = "food_parcels"
    __table_args__ = (
        CheckConstraint(
            "pickup_date_time_earliest <= pickup_date_time_latest",
            name="pickup_time_range_check",
        ),
        CheckConstraint(
            "NOT (is_picked_up AND no_show_at IS NOT NULL)",
            name="no_show_pickup_exclusivity_check",
        ),
        Index(
            "idx_food_parcels_location_time",
            "pickup_location_id",
            "pickup_date_time_earliest",
            postgresql_where=text("deleted_at IS NULL"),
        ),
        Index("idx_food_parcels_household_time", "household_id", "pickup_date_time_earliest"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    household_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("households.id", ondelete="CASCADE"), nullable=False
    )
    pickup_location_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("pickup_locations.id"), nullable=False
    )
    pickup_date_time_earliest: Mapped[datetime] = mapped_column(nullable=False)
    pickup_date_time_latest: Mapped[datetime] = mapped_column(nullable=False)

    is_picked_up: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    picked_up_at: Mapped[datetime | None] = mapped_column(nullable=True)
    picked_up_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    no_show_at: Mapped[datetime | None] = mapped_column(nullable=True)
    no_show_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    deleted_by: Mapped[str | None] = mapped_column(String(100), nullable=True)

    household: Mapped[Household] = relationship(back_populates="parcels")
    location: Mapped[PickupLocation] = relationship()

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
