"""SQLAlchemy ORM models."""

from matkassen.db.models.households import Household, HouseholdComment
from matkassen.db.models.locations import (
    PickupLocation,
    PickupLocationSchedule,
    PickupLocationScheduleDay,
    PickupLocationSpecialDay,
)
from matkassen.db.models.parcels import FoodParcel
from matkassen.db.models.settings import GlobalSetting
from matkassen.db.models.sms import OutgoingSms

__all__ = [
    "FoodParcel",
    "GlobalSetting",
    "Household",
    "HouseholdComment",
    "OutgoingSms",
    "PickupLocation",
    "PickupLocationSchedule",
    "PickupLocationScheduleDay",
    "PickupLocationSpecialDay",
]
