import datetime as dt
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


def _as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


# Pydantic Schemas for Request/Response
class BookingCreate(BaseModel):
    sales_item_ids: List[uuid.UUID] = []
    delivery_window_starts_at: datetime
    delivery_window_ends_at: datetime
    # Emptiness is checked by the booking service so the message stays user-facing
    station_ids: List[uuid.UUID] = []
    address_id: Optional[uuid.UUID] = None
    vehicle_make: Optional[str] = Field(default=None, max_length=100)
    vehicle_model: Optional[str] = Field(default=None, max_length=100)
    vehicle_year: Optional[int] = None
    vehicle_registration: Optional[str] = Field(default=None, max_length=20)
    customer_notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("delivery_window_starts_at", "delivery_window_ends_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return _as_naive_utc(value)


class BookingConfirmation(BaseModel):
    booking_id: str
    status: str


class BookingCancel(BaseModel):
    booking_id: uuid.UUID


class CancelResult(BaseModel):
    success: bool


class AvailabilityRequest(BaseModel):
    date: dt.date
    sales_item_ids: List[uuid.UUID] = []
    lane_ids: Optional[List[uuid.UUID]] = None


class AvailabilitySlot(BaseModel):
    interval_id: uuid.UUID
    starts_at: datetime
    ends_at: datetime
    lane_id: uuid.UUID
    lane_name: str
    available_seconds: int


class AvailabilityResponse(BaseModel):
    slots: List[AvailabilitySlot]
