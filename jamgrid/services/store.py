"""Local observation store."""

import logging
from collections.abc import AsyncIterator
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jamgrid.database import local_session_maker
from jamgrid.models import TrafficObservation
from jamgrid.tiles import parse_tile_key

logger = logging.getLogger(__name__)


def observation_values(tile_key: str, yellow: int, red: int, dark_red: int) -> dict:
    """Row values for one observation, with fields derived from the key."""
    key = parse_tile_key(tile_key)
    return {
        "tile_key": key.name,
        "yellow": yellow,
        "red": red,
        "dark_red": dark_red,
        "ts": key.timestamp,
        "x": key.x,
        "y": key.y,
    }


class LocalStore:
    """Keyed storage of one TrafficObservation per tile."""

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker

    async def upsert(self, tile_key: str, yellow: int, red: int, dark_red: int) -> None:
        """Insert an observation, replacing the counts of an existing key."""
        values = observation_values(tile_key, yellow, red, dark_red)
        stmt = sqlite_insert(TrafficObservation).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["tile_key"],
            set_={
                "yellow": stmt.excluded.yellow,
                "red": stmt.excluded.red,
                "dark_red": stmt.excluded.dark_red,
                "ts": stmt.excluded.ts,
                "x": stmt.excluded.x,
                "y": stmt.excluded.y,
            },
        )
        async with self._session_maker() as db:
            await db.execute(stmt)
            await db.commit()

    async def get(self, tile_key: str) -> TrafficObservation | None:
        async with self._session_maker() as db:
            return await db.get(TrafficObservation, tile_key)

    async def count(self) -> int:
        async with self._session_maker() as db:
            result = await db.execute(select(func.count()).select_from(TrafficObservation))
            return result.scalar_one()

    async def stream_after(
        self, cursor: str | None, limit: int | None = None
    ) -> AsyncIterator[TrafficObservation]:
        """Yield rows with a key strictly greater than ``cursor``, ascending.

        A ``None`` cursor starts from the first row.
        """
        query = select(TrafficObservation).order_by(TrafficObservation.tile_key)
        if cursor is not None:
            query = query.where(TrafficObservation.tile_key > cursor)
        if limit is not None:
            query = query.limit(limit)

        async with self._session_maker() as db:
            result = await db.stream_scalars(query)
            async for row in result:
                yield row

    async def query(
        self,
        x: int | None = None,
        y: int | None = None,
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[TrafficObservation]:
        """Most recent observations, optionally for one cell and after ``since``."""
        stmt = select(TrafficObservation).order_by(TrafficObservation.tile_key.desc())
        if x is not None:
            stmt = stmt.where(TrafficObservation.x == x)
        if y is not None:
            stmt = stmt.where(TrafficObservation.y == y)
        if since is not None:
            stmt = stmt.where(TrafficObservation.ts >= since)
        stmt = stmt.limit(limit)

        async with self._session_maker() as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def latest_batch(self) -> dict | None:
        """Totals of the most recent batch."""
        async with self._session_maker() as db:
            latest = await db.execute(select(func.max(TrafficObservation.ts)))
            ts = latest.scalar()
            if ts is None:
                return None
            result = await db.execute(
                select(
                    func.count(),
                    func.sum(TrafficObservation.yellow),
                    func.sum(TrafficObservation.red),
                    func.sum(TrafficObservation.dark_red),
                ).where(TrafficObservation.ts == ts)
            )
            tiles, yellow, red, dark_red = result.one()
            return {
                "ts": ts,
                "tiles": tiles,
                "yellow": yellow or 0,
                "red": red or 0,
                "dark_red": dark_red or 0,
            }


# Global local store instance
local_store = LocalStore(local_session_maker)
