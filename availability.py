import datetime as dt
import logging
import uuid
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from booking_service import (
    fetch_lane_capabilities,
    fetch_required_capabilities,
    total_service_time,
)
from ledger import get_lane_capacities
from models import (
    CapacityInterval,
    ContributionInterval,
    Lane,
    WorkerContribution,
    utcnow,
)
from schemas import AvailabilitySlot

logger = logging.getLogger(__name__)


async def _worker_capacity(
    session: AsyncSession, lane_id: uuid.UUID, interval_ids: Sequence[uuid.UUID]
) -> Dict[uuid.UUID, int]:
    """Remaining worker seconds per interval for one lane."""
    statement = (
        select(ContributionInterval.interval_id, func.sum(ContributionInterval.remaining_seconds))
        .join(WorkerContribution, ContributionInterval.contribution_id == WorkerContribution.id)
        .where(
            WorkerContribution.lane_id == lane_id,
            col(ContributionInterval.interval_id).in_(interval_ids),
        )
        .group_by(ContributionInterval.interval_id)
    )
    result = await session.execute(statement)
    return {interval_id: int(total or 0) for interval_id, total in result.all()}


def _is_open(lane: Lane, interval: CapacityInterval) -> bool:
    starts = interval.starts_at.time()
    return lane.open_time <= starts < lane.close_time


async def check_availability(
    session: AsyncSession,
    day: dt.date,
    sales_item_ids: Sequence[uuid.UUID],
    lane_ids: Optional[Sequence[uuid.UUID]] = None,
    now: Optional[dt.datetime] = None,
) -> List[AvailabilitySlot]:
    """
    Intervals on ``day`` where a lane has enough unbooked worker time for the
    requested services.
    """
    now = now or utcnow()
    needed = await total_service_time(session, sales_item_ids)
    required = await fetch_required_capabilities(session, sales_item_ids)
    logger.info("Checking availability for %s: %ss needed", day, needed)

    result = await session.execute(
        select(CapacityInterval)
        .where(CapacityInterval.date == day)
        .order_by(CapacityInterval.starts_at)
    )
    intervals = list(result.scalars().all())
    if not intervals:
        return []
    interval_ids = [interval.id for interval in intervals]

    lanes_query = select(Lane).order_by(Lane.name)
    if lane_ids:
        lanes_query = lanes_query.where(col(Lane.id).in_(list(set(lane_ids))))
    lanes = list((await session.execute(lanes_query)).scalars().all())
    capabilities = await fetch_lane_capabilities(session, [lane.id for lane in lanes])

    slots = []
    for lane in lanes:
        if lane.closed_for_new_bookings_at is not None and lane.closed_for_new_bookings_at < now:
            logger.debug("Lane %s is closed for new bookings", lane.name)
            continue
        if not required <= capabilities.get(lane.id, set()):
            logger.debug("Lane %s missing required capabilities", lane.name)
            continue

        worker_capacity = await _worker_capacity(session, lane.id, interval_ids)
        booked = await get_lane_capacities(session, lane.id, interval_ids)

        for interval in intervals:
            if not _is_open(lane, interval):
                continue

            available = worker_capacity.get(interval.id, 0) - booked.get(interval.id, 0)
            if available >= needed:
                slots.append(
                    AvailabilitySlot(
                        interval_id=interval.id,
                        starts_at=interval.starts_at,
                        ends_at=interval.ends_at,
                        lane_id=lane.id,
                        lane_name=lane.name,
                        available_seconds=available,
                    )
                )

    logger.info("Found %d available slots", len(slots))
    return slots
