"""
Booking commit and cancellation.

A commit validates the requested stations, prices the service time, finds the
capacity intervals the delivery window overlaps and then writes the booking,
its station schedule, its per-interval allocations, its purchased services and
the capacity ledger increments. Everything runs in the caller's session as one
transaction: any failure rolls the whole booking back.

Ledger increments run in a savepoint each. A failed increment is logged and
the booking still goes through, leaving that ledger row stale.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from allocation import IntervalShare, distribute_service_time, schedule_stations
from errors import (
    BookingError,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from ledger import increment_lane_capacity, release_lane_capacity
from models import (
    Booking,
    BookingInterval,
    BookingSalesItem,
    BookingStation,
    BookingStatus,
    CapacityInterval,
    Lane,
    LaneCapability,
    SalesItem,
    SalesItemCapability,
    Station,
    utcnow,
)
from schemas import BookingCreate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StationLane:
    station_id: uuid.UUID
    station_name: str
    active: bool
    lane_id: Optional[uuid.UUID]
    lane_name: Optional[str]
    lane_closed_for_new_bookings_at: Optional[datetime]


# --- Lookups ---

async def fetch_station_lanes(
    session: AsyncSession, station_ids: Sequence[uuid.UUID]
) -> List[StationLane]:
    """Resolve stations with their lane, in request order. Unknown ids are left out."""
    statement = (
        select(Station, Lane)
        .join(Lane, Station.lane_id == Lane.id, isouter=True)
        .where(col(Station.id).in_(list(set(station_ids))))
    )
    result = await session.execute(statement)

    resolved = {}
    for station, lane in result.all():
        resolved[station.id] = StationLane(
            station_id=station.id,
            station_name=station.name,
            active=bool(station.active),
            lane_id=lane.id if lane else None,
            lane_name=lane.name if lane else None,
            lane_closed_for_new_bookings_at=lane.closed_for_new_bookings_at if lane else None,
        )

    return [resolved[station_id] for station_id in station_ids if station_id in resolved]


async def fetch_service_times(
    session: AsyncSession, sales_item_ids: Sequence[uuid.UUID]
) -> Dict[uuid.UUID, int]:
    """Service seconds keyed by sales item id. Unknown ids are left out."""
    if not sales_item_ids:
        return {}
    statement = select(SalesItem.id, SalesItem.service_time_seconds).where(
        col(SalesItem.id).in_(list(set(sales_item_ids)))
    )
    result = await session.execute(statement)
    return {sales_item_id: seconds for sales_item_id, seconds in result.all()}


async def total_service_time(session: AsyncSession, sales_item_ids: Sequence[uuid.UUID]) -> int:
    """Sum over the distinct known ids; a repeated id counts once."""
    return sum((await fetch_service_times(session, sales_item_ids)).values())


async def fetch_required_capabilities(
    session: AsyncSession, sales_item_ids: Sequence[uuid.UUID]
) -> Set[uuid.UUID]:
    if not sales_item_ids:
        return set()
    statement = select(SalesItemCapability.capability_id).where(
        col(SalesItemCapability.sales_item_id).in_(list(set(sales_item_ids)))
    )
    result = await session.execute(statement)
    return set(result.scalars().all())


async def fetch_lane_capabilities(
    session: AsyncSession, lane_ids: Sequence[uuid.UUID]
) -> Dict[uuid.UUID, Set[uuid.UUID]]:
    statement = select(LaneCapability).where(col(LaneCapability.lane_id).in_(list(set(lane_ids))))
    result = await session.execute(statement)
    capabilities = defaultdict(set)
    for row in result.scalars().all():
        capabilities[row.lane_id].add(row.capability_id)
    return capabilities


async def find_overlapping_intervals(
    session: AsyncSession, window_start: datetime, window_end: datetime
) -> List[CapacityInterval]:
    statement = (
        select(CapacityInterval)
        .where(CapacityInterval.ends_at >= window_start, CapacityInterval.starts_at <= window_end)
        .order_by(CapacityInterval.starts_at)
    )
    result = await session.execute(statement)
    return list(result.scalars().all())


# --- Validation ---

def validate_stations(
    station_ids: Sequence[uuid.UUID], stations: Sequence[StationLane], now: datetime
) -> None:
    if len({station.station_id for station in stations}) != len(set(station_ids)):
        raise NotFoundError("One or more selected stations could not be found")

    for station in stations:
        if not station.active:
            raise ValidationError(f'Station "{station.station_name}" is not available for booking')
        if station.lane_id is None:
            raise ValidationError(f'Station "{station.station_name}" is not assigned to a lane')

    for station in stations:
        closed_at = station.lane_closed_for_new_bookings_at
        if closed_at is not None and closed_at < now:
            raise ConflictError(f'Lane "{station.lane_name}" is closed for new bookings')

    if len({station.lane_id for station in stations}) > 1:
        raise ValidationError("All stations in a booking must belong to the same lane")


def validate_capabilities(
    lane: StationLane, required: Set[uuid.UUID], available: Set[uuid.UUID]
) -> None:
    if not required <= available:
        raise ConflictError(f'Lane "{lane.lane_name}" does not have required capabilities')


# --- Writes ---

async def _flush(session: AsyncSession, failure_message: str) -> None:
    try:
        await session.flush()
    except SQLAlchemyError as e:
        logger.exception(failure_message)
        raise InternalError(failure_message) from e


async def _record_allocation(
    session: AsyncSession, booking: Booking, share: IntervalShare
) -> None:
    session.add(
        BookingInterval(
            booking_id=booking.id,
            interval_id=share.interval_id,
            booked_seconds=share.booked_seconds,
        )
    )
    await _flush(session, "Failed to create booking intervals")

    try:
        async with session.begin_nested():
            await increment_lane_capacity(
                session, booking.lane_id, share.interval_id, share.booked_seconds
            )
    except SQLAlchemyError:
        # Best effort: a stale ledger row is preferred over a failed booking
        logger.exception(
            "Error updating lane_interval_capacity for lane %s interval %s",
            booking.lane_id,
            share.interval_id,
        )


async def _link_sales_items(
    session: AsyncSession, booking: Booking, sales_item_ids: Sequence[uuid.UUID]
) -> None:
    for sales_item_id in sales_item_ids:
        session.add(BookingSalesItem(booking_id=booking.id, sales_item_id=sales_item_id))
    await _flush(session, "Failed to link services to booking")


async def _allocate(
    session: AsyncSession,
    user_id: uuid.UUID,
    request: BookingCreate,
    stations: Sequence[StationLane],
    service_time: int,
    intervals: Sequence[CapacityInterval],
    sales_item_ids: Sequence[uuid.UUID],
) -> Booking:
    window_start = request.delivery_window_starts_at
    window_end = request.delivery_window_ends_at

    booking = Booking(
        user_id=user_id,
        lane_id=stations[0].lane_id,
        address_id=request.address_id,
        delivery_window_starts_at=window_start,
        delivery_window_ends_at=window_end,
        service_time_seconds=service_time,
        vehicle_make=request.vehicle_make,
        vehicle_model=request.vehicle_model,
        vehicle_year=request.vehicle_year,
        vehicle_registration=request.vehicle_registration,
        customer_notes=request.customer_notes,
        status=BookingStatus.CONFIRMED.value,
    )
    session.add(booking)
    await _flush(session, "Failed to create booking")
    logger.debug("Booking row %s inserted", booking.id)

    for slot in schedule_stations(request.station_ids, window_start, service_time):
        session.add(
            BookingStation(
                booking_id=booking.id,
                station_id=slot.station_id,
                sequence_order=slot.sequence_order,
                estimated_start_time=slot.estimated_start_time,
                estimated_end_time=slot.estimated_end_time,
            )
        )
    await _flush(session, "Failed to create booking stations")

    for share in distribute_service_time(intervals, window_start, window_end, service_time):
        logger.debug("Interval %s: allocating %ss", share.interval_id, share.booked_seconds)
        await _record_allocation(session, booking, share)

    await _link_sales_items(session, booking, sales_item_ids)
    return booking


async def create_booking(
    session: AsyncSession,
    user_id: uuid.UUID,
    request: BookingCreate,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Validate and commit a booking for ``user_id``.

    Raises a ``BookingError`` subclass on rejection or write failure; the
    session is rolled back before the error propagates.
    """
    now = now or utcnow()
    logger.info(
        "Creating booking for user %s: %d station(s), window %s - %s",
        user_id,
        len(request.station_ids),
        request.delivery_window_starts_at,
        request.delivery_window_ends_at,
    )

    try:
        if not request.station_ids:
            raise ValidationError("At least one station is required")
        if request.delivery_window_ends_at <= request.delivery_window_starts_at:
            raise ValidationError("Delivery window must end after it starts")

        stations = await fetch_station_lanes(session, request.station_ids)
        validate_stations(request.station_ids, stations, now)

        lane = stations[0]
        required = await fetch_required_capabilities(session, request.sales_item_ids)
        lane_capabilities = await fetch_lane_capabilities(session, [lane.lane_id])
        validate_capabilities(lane, required, lane_capabilities.get(lane.lane_id, set()))

        service_times = await fetch_service_times(session, request.sales_item_ids)
        service_time = sum(service_times.values())
        # Unknown ids contribute nothing and get no join row
        sales_item_ids = [i for i in request.sales_item_ids if i in service_times]

        intervals = await find_overlapping_intervals(
            session, request.delivery_window_starts_at, request.delivery_window_ends_at
        )
        if not intervals:
            raise ConflictError("No capacity intervals found for delivery window")
        logger.info("Found %d overlapping intervals", len(intervals))

        booking = await _allocate(
            session, user_id, request, stations, service_time, intervals, sales_item_ids
        )
        await session.commit()
    except BookingError as e:
        await session.rollback()
        logger.warning("Booking rejected for user %s: %s", user_id, e.message)
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.exception("Error creating booking")
        raise InternalError("Failed to create booking") from e
    except Exception as e:
        await session.rollback()
        logger.exception("Unexpected error creating booking")
        raise InternalError("Failed to create booking") from e

    logger.info("Booking created successfully: %s", booking.id)
    return booking


async def cancel_booking(
    session: AsyncSession,
    user_id: uuid.UUID,
    booking_id: uuid.UUID,
    is_admin: bool = False,
    now: Optional[datetime] = None,
) -> Booking:
    """Cancel a booking and release its allocations from the lane's ledger."""
    now = now or utcnow()
    logger.info("Cancelling booking %s for user %s", booking_id, user_id)

    try:
        statement = (
            select(Booking, Lane)
            .join(Lane, Booking.lane_id == Lane.id)
            .where(Booking.id == booking_id)
        )
        row = (await session.execute(statement)).first()
        if row is None:
            raise NotFoundError("Booking not found")
        booking, lane = row

        if booking.user_id != user_id and not is_admin:
            raise ForbiddenError("Not authorized to cancel this booking")
        if booking.status == BookingStatus.CANCELLED.value:
            raise ConflictError("Booking is already cancelled")
        if lane.closed_for_cancellations_at is not None and lane.closed_for_cancellations_at < now:
            raise ConflictError("Cancellations are no longer allowed for this booking")

        # Only the request that flips the status releases the ledger
        table = Booking.__table__
        flipped = await session.execute(
            update(table)
            .where(table.c.id == booking.id, table.c.status != BookingStatus.CANCELLED.value)
            .values(status=BookingStatus.CANCELLED.value, updated_at=now)
        )
        if flipped.rowcount != 1:
            raise ConflictError("Booking is already cancelled")

        result = await session.execute(
            select(BookingInterval).where(BookingInterval.booking_id == booking.id)
        )
        for allocation in result.scalars().all():
            logger.debug(
                "Reversing interval %s: %ss", allocation.interval_id, allocation.booked_seconds
            )
            await release_lane_capacity(
                session, booking.lane_id, allocation.interval_id, allocation.booked_seconds
            )

        booking.status = BookingStatus.CANCELLED.value
        booking.updated_at = now
        session.add(booking)
        await session.commit()
    except BookingError as e:
        await session.rollback()
        logger.warning("Cancellation rejected for booking %s: %s", booking_id, e.message)
        raise
    except SQLAlchemyError as e:
        await session.rollback()
        logger.exception("Error cancelling booking %s", booking_id)
        raise InternalError("Failed to update booking status") from e

    logger.info("Booking cancelled successfully: %s", booking_id)
    return booking
