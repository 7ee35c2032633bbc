"""
Test configuration: a fresh SQLite database per test, seeded with one garage.

The garage has a single open lane with three stations, a closed lane with one
station, two services and 30-minute capacity intervals from 08:00 to 12:00 on
BOOKING_DAY.
"""

import os
import sys
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Dict, List

import pytest

# Add repo root to sys.path so tests can import the top-level modules
REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

# config.py refuses to import without a database URL
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import models  # noqa: E402
from auth import issue_token  # noqa: E402
from database import configure_sqlite, get_session  # noqa: E402
from main import app  # noqa: E402

BOOKING_DAY = date(2026, 11, 2)
INTERVAL_MINUTES = 30


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return datetime.combine(BOOKING_DAY, time(hour, minute, second))


@dataclass
class Garage:
    lane: models.Lane
    closed_lane: models.Lane
    other_lane: models.Lane
    stations: List[models.Station]
    inactive_station: models.Station
    closed_station: models.Station
    other_lane_station: models.Station
    wash: models.SalesItem
    oil_change: models.SalesItem
    intervals: List[models.CapacityInterval]
    intervals_by_start: Dict[datetime, models.CapacityInterval] = field(default_factory=dict)


@pytest.fixture
async def engine(tmp_path):
    engine = configure_sqlite(
        create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'garage.db'}", poolclass=NullPool)
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def garage(session_factory) -> Garage:
    lane = models.Lane(name="Express Lane", open_time=time(8, 0), close_time=time(12, 0))
    closed_lane = models.Lane(
        name="Body Shop",
        closed_for_new_bookings_at=datetime(2020, 1, 1),
        closed_for_cancellations_at=datetime(2020, 1, 1),
    )
    other_lane = models.Lane(name="Tyre Lane")
    stations = [models.Station(name=f"Bay {n}", lane_id=lane.id) for n in (1, 2, 3)]
    inactive_station = models.Station(name="Bay 4", lane_id=lane.id, active=False)
    closed_station = models.Station(name="Panel Bay", lane_id=closed_lane.id)
    other_lane_station = models.Station(name="Tyre Bay", lane_id=other_lane.id)
    wash = models.SalesItem(name="Wash", service_time_seconds=600)
    oil_change = models.SalesItem(name="Oil change", service_time_seconds=1200)

    intervals = []
    start = at(8)
    while start < at(12):
        end = start + timedelta(minutes=INTERVAL_MINUTES)
        intervals.append(models.CapacityInterval(date=BOOKING_DAY, starts_at=start, ends_at=end))
        start = end

    async with session_factory() as session:
        session.add_all([lane, closed_lane, other_lane])
        session.add_all(stations + [inactive_station, closed_station, other_lane_station])
        session.add_all([wash, oil_change])
        session.add_all(intervals)
        await session.commit()

    return Garage(
        lane=lane,
        closed_lane=closed_lane,
        other_lane=other_lane,
        stations=stations,
        inactive_station=inactive_station,
        closed_station=closed_station,
        other_lane_station=other_lane_station,
        wash=wash,
        oil_change=oil_change,
        intervals=intervals,
        intervals_by_start={interval.starts_at: interval for interval in intervals},
    )


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
async def token(session_factory, user_id) -> str:
    async with session_factory() as session:
        return await issue_token(session, user_id)


@pytest.fixture
async def client(session_factory):
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
