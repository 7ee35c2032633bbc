"""
Pure capacity maths for a booking window.

Nothing here touches the database: callers pass in already-loaded intervals
and get back the rows they should write.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Sequence

from models import CapacityInterval


@dataclass(frozen=True)
class IntervalShare:
    interval_id: uuid.UUID
    overlap_seconds: float
    booked_seconds: int


@dataclass(frozen=True)
class StationSlot:
    station_id: uuid.UUID
    sequence_order: int
    estimated_start_time: datetime
    estimated_end_time: datetime


def overlap_seconds(
    window_start: datetime,
    window_end: datetime,
    interval_start: datetime,
    interval_end: datetime,
) -> float:
    """Seconds the window shares with the interval; zero or negative means no overlap."""
    overlap_start = max(window_start, interval_start)
    overlap_end = min(window_end, interval_end)
    return (overlap_end - overlap_start).total_seconds()


def distribute_service_time(
    intervals: Sequence[CapacityInterval],
    window_start: datetime,
    window_end: datetime,
    total_service_time: int,
) -> List[IntervalShare]:
    """
    Spread ``total_service_time`` over the intervals pro rata to their overlap
    with the window.

    Each share is rounded on its own, so the shares may drift from the total by
    up to one second per interval. Intervals that only touch the window edge get
    no share.
    """
    window_duration = (window_end - window_start).total_seconds()
    if window_duration <= 0:
        raise ValueError("window_end must be after window_start")

    shares = []
    for interval in intervals:
        overlap = overlap_seconds(window_start, window_end, interval.starts_at, interval.ends_at)
        if overlap <= 0:
            continue

        booked = round(overlap / window_duration * total_service_time)
        shares.append(
            IntervalShare(interval_id=interval.id, overlap_seconds=overlap, booked_seconds=booked)
        )

    return shares


def schedule_stations(
    station_ids: Sequence[uuid.UUID],
    window_start: datetime,
    total_service_time: int,
) -> List[StationSlot]:
    """
    Lay the stations back to back from ``window_start``, each getting an equal
    floor share of the service time.

    The ``total_service_time % len(station_ids)`` leftover seconds are not
    scheduled, so the last station can finish a little before the total.
    """
    if not station_ids:
        return []

    per_station_seconds = total_service_time // len(station_ids)
    cumulative_seconds = 0
    slots = []

    for sequence_order, station_id in enumerate(station_ids, start=1):
        start = window_start + timedelta(seconds=cumulative_seconds)
        end = start + timedelta(seconds=per_station_seconds)
        slots.append(
            StationSlot(
                station_id=station_id,
                sequence_order=sequence_order,
                estimated_start_time=start,
                estimated_end_time=end,
            )
        )
        cumulative_seconds += per_station_seconds

    return slots
