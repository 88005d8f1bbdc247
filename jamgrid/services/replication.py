"""One-way replication of local observations into the remote store."""

import asyncio
import logging
from contextlib import aclosing

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jamgrid.config import get_settings
from jamgrid.database import remote_session_maker
from jamgrid.exceptions import ReplicationError
from jamgrid.models import RemoteTrafficObservation
from jamgrid.services.store import LocalStore, local_store

logger = logging.getLogger(__name__)


def _dialect_name(db: AsyncSession) -> str:
    return db.bind.dialect.name


class SyncStatus:
    """Outcome of the most recent sync attempt."""

    def __init__(self):
        self.status: str = "idle"  # idle, syncing, complete, error
        self.last_cursor: str | None = None
        self.last_synced: int = 0
        self.total_synced: int = 0
        self.last_error: str | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "last_cursor": self.last_cursor,
            "last_synced": self.last_synced,
            "total_synced": self.total_synced,
            "last_error": self.last_error,
        }


class ReplicationService:
    """Copies local rows the remote store has not seen yet.

    The cursor is the greatest tile key already in the remote store and is
    read fresh on every attempt, so an aborted attempt leaves nothing to
    repair. Attempts run when a hint arrives, not on a timer.
    """

    def __init__(
        self,
        local_store: LocalStore,
        remote_session_maker: async_sessionmaker[AsyncSession],
        batch_size: int = 100,
        page_size: int = 1000,
        timeout: float = 60.0,
        stop: asyncio.Event | None = None,
    ):
        if batch_size <= 0 or page_size <= 0:
            raise ValueError("batch_size and page_size must be positive")
        self.local_store = local_store
        self._remote_session_maker = remote_session_maker
        self.batch_size = batch_size
        self.page_size = page_size
        self.timeout = timeout
        self.stop_event = stop or asyncio.Event()
        self.sync_status = SyncStatus()
        self._hints: asyncio.Queue[None] = asyncio.Queue(maxsize=10)
        self._running = False
        self._task: asyncio.Task | None = None

    def hint(self) -> None:
        """Request a sync attempt; extra hints beyond the queue size are dropped."""
        try:
            self._hints.put_nowait(None)
        except asyncio.QueueFull:
            pass

    async def remote_cursor(self, db: AsyncSession) -> str | None:
        """Greatest tile key present in the remote store, in byte order."""
        key = RemoteTrafficObservation.tile_key
        if _dialect_name(db) == "postgresql":
            # Local keys sort bytewise; a locale collation would disagree
            key = key.collate("C")
        result = await db.execute(select(func.max(key)))
        return result.scalar()

    async def _insert_batch(self, db: AsyncSession, staged: list[dict]) -> None:
        """Insert staged rows, leaving keys the remote store already holds untouched."""
        insert = pg_insert if _dialect_name(db) == "postgresql" else sqlite_insert
        stmt = insert(RemoteTrafficObservation).on_conflict_do_nothing(index_elements=["tile_key"])
        await db.execute(stmt, staged)
        await db.commit()

    async def sync_once(self) -> int:
        """Copy one page of new rows to the remote store.

        Returns the number of rows written; keys the remote store already held
        count as written. Raises ReplicationError after rolling back the open
        transaction.
        """
        self.sync_status.status = "syncing"
        copied = 0
        try:
            async with asyncio.timeout(self.timeout):
                copied = await self._copy_page()
        except (SQLAlchemyError, OSError, TimeoutError) as e:
            self.sync_status.status = "error"
            self.sync_status.last_error = str(e)
            raise ReplicationError(f"error while syncing to remote store: {e}") from e

        self.sync_status.status = "complete"
        self.sync_status.last_error = None
        self.sync_status.last_synced = copied
        self.sync_status.total_synced += copied
        return copied

    async def _copy_page(self) -> int:
        copied = 0
        async with self._remote_session_maker() as db:
            try:
                cursor = await self.remote_cursor(db)
                self.sync_status.last_cursor = cursor
                logger.info(f"syncing rows after [{cursor or 'beginning'}]")

                staged: list[dict] = []
                rows = self.local_store.stream_after(cursor, limit=self.page_size)
                async with aclosing(rows):
                    async for row in rows:
                        if self.stop_event.is_set():
                            logger.info("stop requested, committing staged rows")
                            break
                        staged.append(row.to_dict())
                        if len(staged) < self.batch_size:
                            continue
                        await self._insert_batch(db, staged)
                        copied += len(staged)
                        logger.info(f"synced [{copied}] rows to remote store")
                        staged = []

                if staged:
                    await self._insert_batch(db, staged)
                    copied += len(staged)
            except BaseException:
                await db.rollback()
                raise

        logger.info(f"sync finished, {copied} rows copied")
        return copied

    async def start(self) -> None:
        """Start the replication loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sync_loop())
        # Catch up on rows captured while replication was not running
        self.hint()
        logger.info("Started replication service")

    async def _sync_loop(self) -> None:
        """Wait for hints and sync until the stop event is set."""
        stop_wait = asyncio.create_task(self.stop_event.wait())
        try:
            while self._running and not self.stop_event.is_set():
                hint_wait = asyncio.create_task(self._hints.get())
                await asyncio.wait({hint_wait, stop_wait}, return_when=asyncio.FIRST_COMPLETED)
                if not hint_wait.done():
                    hint_wait.cancel()
                    break

                logger.info("syncing to remote store")
                try:
                    copied = await self.sync_once()
                except ReplicationError as e:
                    logger.error(f"error while syncing local DB to remote store: {e}")
                    continue

                # A full page means more rows are probably waiting
                if copied == self.page_size and not self.stop_event.is_set():
                    self.hint()
        finally:
            stop_wait.cancel()
            logger.info("shutting down remote sync")

    async def stop(self) -> None:
        """Stop the replication loop, letting an in-progress attempt finish."""
        self._running = False
        self.stop_event.set()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped replication service")


def create_replication_service(
    settings,
    store: LocalStore,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    stop: asyncio.Event | None = None,
) -> ReplicationService | None:
    """Replication service for the configured remote store, if any."""
    if session_maker is None:
        session_maker = remote_session_maker
    if session_maker is None:
        return None
    return ReplicationService(
        store,
        session_maker,
        batch_size=settings.sync_batch_size,
        page_size=settings.sync_page_size,
        timeout=settings.sync_timeout_seconds,
        stop=stop,
    )


# Global replication service instance (None when no remote store is configured)
replication_service = create_replication_service(get_settings(), local_store)
