"""
Test configuration and fixtures.

Provides:
- In-memory SQLite schema; each test runs inside a rolled-back transaction
- A FixedClock pinned to Monday 2025-06-09 12:00 Europe/Stockholm
- Factories for locations (with a weekday schedule), households and parcels
- HTTPX AsyncClient with db, clock and SMS gateway overridden
"""
import os

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["ENV"] = "test"
os.environ["TIMEZONE"] = "Europe/Stockholm"
os.environ["BASE_URL"] = "https://matkassen.test"
os.environ["ADMIN_API_KEY"] = ""

from datetime import date, datetime, time, timedelta, timezone
from typing import AsyncGenerator, Generator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.orm import Session

from matkassen.core.deps import get_clock, get_db, get_sms_gateway
from matkassen.db.base import Base
from matkassen.db.enums import WEEKDAYS
from matkassen.db.models import (
    FoodParcel,
    Household,
    PickupLocation,
    PickupLocationSchedule,
    PickupLocationScheduleDay,
)
from matkassen.db.session import SessionLocal, engine
from matkassen.main import app
from matkassen.services.sms.mock_gateway import MockSmsGateway
from matkassen.utils.clock import FixedClock, local_datetime

# Monday, 12:00 local time (UTC+2 in summer)
NOW = datetime(2025, 6, 9, 10, 0, tzinfo=timezone.utc)
CALLBACK_SECRET = "s" * 40


def at_local(day: date, hour: int, minute: int = 0) -> datetime:
    """Aware UTC datetime for a Stockholm wall-clock time."""
    return local_datetime(day, time(hour, minute)).astimezone(timezone.utc)


# =============================================================================
# Database Fixtures (Savepoint pattern)
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def _schema() -> Generator[None, None, None]:
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Session bound to an outer transaction that is rolled back after the test.

    App code may commit() or rollback(); those only touch SAVEPOINTs.
    """
    connection = engine.connect()
    transaction = connection.begin()
    session = SessionLocal(bind=connection, join_transaction_mode="create_savepoint")

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def gateway() -> MockSmsGateway:
    return MockSmsGateway()


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_location(db: Session):
    """Location open Monday-Friday 09:00-17:00 for all of 2025."""

    def _make(
        name: str = "Centrum",
        max_parcels_per_day: int | None = None,
        max_parcels_per_slot: int | None = 4,
        opening: time = time(9, 0),
        closing: time = time(17, 0),
    ) -> PickupLocation:
        location = PickupLocation(
            name=name,
            max_parcels_per_day=max_parcels_per_day,
            max_parcels_per_slot=max_parcels_per_slot,
            default_slot_duration_minutes=15,
        )
        schedule = PickupLocationSchedule(
            name="2025",
            start_date=date(2025, 1, 1),
            end_date=date(2025, 12, 31),
        )
        for weekday in WEEKDAYS:
            is_open = weekday.value not in ("saturday", "sunday")
            schedule.days.append(
                PickupLocationScheduleDay(
                    weekday=weekday.value,
                    is_open=is_open,
                    opening_time=opening if is_open else None,
                    closing_time=closing if is_open else None,
                )
            )
        location.schedules.append(schedule)
        db.add(location)
        db.commit()
        return location

    return _make


@pytest.fixture
def make_household(db: Session):
    def _make(
        first_name: str = "Anna",
        last_name: str = "Svensson",
        phone_number: str = "0701234567",
        locale: str = "sv",
        created_at: datetime | None = None,
    ) -> Household:
        household = Household(
            first_name=first_name,
            last_name=last_name,
            phone_number=phone_number,
            locale=locale,
            created_at=created_at or NOW,
        )
        db.add(household)
        db.commit()
        return household

    return _make


@pytest.fixture
def make_parcel(db: Session):
    """Insert a parcel directly, bypassing validation."""

    def _make(
        household: Household,
        location: PickupLocation,
        earliest: datetime,
        minutes: int = 15,
        **fields,
    ) -> FoodParcel:
        parcel = FoodParcel(
            household_id=household.id,
            pickup_location_id=location.id,
            pickup_date_time_earliest=earliest,
            pickup_date_time_latest=earliest + timedelta(minutes=minutes),
            **fields,
        )
        db.add(parcel)
        db.commit()
        return parcel

    return _make


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture(scope="function")
async def client(
    db: Session, clock: FixedClock, gateway: MockSmsGateway
) -> AsyncGenerator[AsyncClient, None]:
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_sms_gateway] = lambda: gateway

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()
