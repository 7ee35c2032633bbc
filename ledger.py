"""
Capacity ledger: running booked seconds per (interval, lane).

Writes are single statements evaluated by the database, so two bookings that
hit the same lane and interval at once both land in the total.
"""

import logging
import uuid
from typing import Dict, Iterable

from sqlalchemy import case, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import col, select

from models import LaneIntervalCapacity

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    try:
        return _UPSERT_DIALECTS[dialect]
    except KeyError:
        raise NotImplementedError(f"Capacity ledger does not support the {dialect} dialect")


async def increment_lane_capacity(
    session: AsyncSession, lane_id: uuid.UUID, interval_id: uuid.UUID, seconds: int
) -> None:
    """Add ``seconds`` to the ledger row, creating it on first touch."""
    table = LaneIntervalCapacity.__table__
    insert = _insert_for(session)

    statement = insert(table).values(
        interval_id=interval_id, lane_id=lane_id, total_booked_seconds=seconds
    )
    statement = statement.on_conflict_do_update(
        index_elements=[table.c.interval_id, table.c.lane_id],
        set_={
            "total_booked_seconds": table.c.total_booked_seconds
            + statement.excluded.total_booked_seconds
        },
    )
    await session.execute(statement)
    logger.debug("Ledger +%ss for lane %s interval %s", seconds, lane_id, interval_id)


async def release_lane_capacity(
    session: AsyncSession, lane_id: uuid.UUID, interval_id: uuid.UUID, seconds: int
) -> None:
    """Subtract ``seconds`` from the ledger row, never going below zero."""
    table = LaneIntervalCapacity.__table__
    statement = (
        update(table)
        .where(table.c.interval_id == interval_id, table.c.lane_id == lane_id)
        .values(
            total_booked_seconds=case(
                (table.c.total_booked_seconds > seconds, table.c.total_booked_seconds - seconds),
                else_=0,
            )
        )
    )
    await session.execute(statement)
    logger.debug("Ledger -%ss for lane %s interval %s", seconds, lane_id, interval_id)


async def get_lane_capacity(
    session: AsyncSession, lane_id: uuid.UUID, interval_id: uuid.UUID
) -> int:
    statement = select(LaneIntervalCapacity.total_booked_seconds).where(
        LaneIntervalCapacity.lane_id == lane_id,
        LaneIntervalCapacity.interval_id == interval_id,
    )
    result = await session.execute(statement)
    return result.scalars().first() or 0


async def get_lane_capacities(
    session: AsyncSession, lane_id: uuid.UUID, interval_ids: Iterable[uuid.UUID]
) -> Dict[uuid.UUID, int]:
    """Booked seconds per interval for one lane; missing rows are omitted."""
    statement = select(LaneIntervalCapacity).where(
        LaneIntervalCapacity.lane_id == lane_id,
        col(LaneIntervalCapacity.interval_id).in_(list(interval_ids)),
    )
    result = await session.execute(statement)
    return {row.interval_id: row.total_booked_seconds or 0 for row in result.scalars().all()}
