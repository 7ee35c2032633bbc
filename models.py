import datetime as dt
import uuid
from datetime import datetime, time, timezone
from enum import Enum
from typing import Optional

from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint


def utcnow() -> datetime:
    """Naive UTC timestamp; every datetime column stores UTC without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# --- Read-only inputs (maintained by the admin screens) ---

class Lane(SQLModel, table=True):
    __tablename__ = "lanes"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    open_time: time = Field(default=time(8, 0))
    close_time: time = Field(default=time(17, 0))
    closed_for_new_bookings_at: Optional[datetime] = None
    closed_for_cancellations_at: Optional[datetime] = None


class Station(SQLModel, table=True):
    __tablename__ = "stations"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    lane_id: Optional[uuid.UUID] = Field(default=None, foreign_key="lanes.id", index=True)
    active: bool = True


class SalesItem(SQLModel, table=True):
    __tablename__ = "sales_items"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str
    service_time_seconds: int
    price_cents: int = 0
    active: bool = True


class Capability(SQLModel, table=True):
    __tablename__ = "capabilities"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str


class SalesItemCapability(SQLModel, table=True):
    __tablename__ = "sales_item_capabilities"

    sales_item_id: uuid.UUID = Field(foreign_key="sales_items.id", primary_key=True)
    capability_id: uuid.UUID = Field(foreign_key="capabilities.id", primary_key=True)


class LaneCapability(SQLModel, table=True):
    __tablename__ = "lane_capabilities"

    lane_id: uuid.UUID = Field(foreign_key="lanes.id", primary_key=True)
    capability_id: uuid.UUID = Field(foreign_key="capabilities.id", primary_key=True)


class CapacityInterval(SQLModel, table=True):
    """Pre-generated time slice; never written by the booking path."""

    __tablename__ = "capacity_intervals"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    date: dt.date = Field(index=True)
    starts_at: datetime = Field(index=True)
    ends_at: datetime = Field(index=True)


class WorkerContribution(SQLModel, table=True):
    __tablename__ = "worker_contributions"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    worker_id: uuid.UUID
    lane_id: uuid.UUID = Field(foreign_key="lanes.id", index=True)


class ContributionInterval(SQLModel, table=True):
    __tablename__ = "contribution_intervals"

    contribution_id: uuid.UUID = Field(foreign_key="worker_contributions.id", primary_key=True)
    interval_id: uuid.UUID = Field(foreign_key="capacity_intervals.id", primary_key=True)
    remaining_seconds: int = 0


# --- Identity ---

class AccessToken(SQLModel, table=True):
    __tablename__ = "access_tokens"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    # SHA-256 of the bearer token, never the token itself
    token_hash: str = Field(index=True, unique=True)
    user_id: uuid.UUID = Field(index=True)
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None


class UserRole(SQLModel, table=True):
    __tablename__ = "user_roles"

    user_id: uuid.UUID = Field(primary_key=True)
    role: str = Field(primary_key=True)


# --- Bookings and the capacity ledger ---

class Booking(SQLModel, table=True):
    __tablename__ = "bookings"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(index=True)
    # Lane of the first requested station
    lane_id: uuid.UUID = Field(foreign_key="lanes.id", index=True)
    address_id: Optional[uuid.UUID] = None
    delivery_window_starts_at: datetime = Field(index=True)
    delivery_window_ends_at: datetime
    service_time_seconds: int
    vehicle_make: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_year: Optional[int] = None
    vehicle_registration: Optional[str] = None
    status: str = Field(default=BookingStatus.CONFIRMED.value, index=True)
    admin_notes: Optional[str] = None
    customer_notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class BookingStation(SQLModel, table=True):
    __tablename__ = "booking_stations"
    __table_args__ = (
        UniqueConstraint("booking_id", "sequence_order", name="unique_booking_station_sequence"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    booking_id: uuid.UUID = Field(foreign_key="bookings.id", index=True)
    station_id: uuid.UUID = Field(foreign_key="stations.id")
    sequence_order: int  # 1-based, in request order
    estimated_start_time: datetime
    estimated_end_time: datetime
    created_at: datetime = Field(default_factory=utcnow)


class BookingInterval(SQLModel, table=True):
    __tablename__ = "booking_intervals"

    booking_id: uuid.UUID = Field(foreign_key="bookings.id", primary_key=True)
    interval_id: uuid.UUID = Field(foreign_key="capacity_intervals.id", primary_key=True)
    booked_seconds: int = 0


class BookingSalesItem(SQLModel, table=True):
    __tablename__ = "booking_sales_items"

    # Surrogate key: the same sales item may be requested twice
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    booking_id: uuid.UUID = Field(foreign_key="bookings.id", index=True)
    sales_item_id: uuid.UUID = Field(foreign_key="sales_items.id")


class LaneIntervalCapacity(SQLModel, table=True):
    __tablename__ = "lane_interval_capacity"

    interval_id: uuid.UUID = Field(foreign_key="capacity_intervals.id", primary_key=True)
    lane_id: uuid.UUID = Field(foreign_key="lanes.id", primary_key=True)
    total_booked_seconds: int = 0
