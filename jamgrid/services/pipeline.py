"""Capture, classify and compose cycle, and the periodic service that drives it."""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from sqlalchemy.exc import SQLAlchemyError

from jamgrid.config import get_settings
from jamgrid.exceptions import CaptureError, InvalidTileKey, StartupError, TileDecodeError
from jamgrid.services.capture import CaptureResult, CaptureScheduler, Capturer, HttpCapturer
from jamgrid.services.classifier import ColorClassifier
from jamgrid.services.grid import GridPlanner
from jamgrid.services.mosaic import MosaicComposer
from jamgrid.services.replication import ReplicationService, replication_service
from jamgrid.services.retention import RetentionManager
from jamgrid.services.skip import SkipPolicy
from jamgrid.services.store import LocalStore, local_store
from jamgrid.tiles import TILE_SUFFIX, ContentRect, batch_timestamp, parse_tile_key

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Outcome of analyzing the tiles that match a prefix."""

    prefix: str
    stored: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    mosaics: list[Path] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "prefix": self.prefix,
            "stored": len(self.stored),
            "failed": len(self.failed),
            "mosaics": [str(p) for p in self.mosaics],
        }


class CapturePipeline:
    """One capture batch end to end: tiles, masks, observations and mosaics."""

    def __init__(
        self,
        settings,
        store: LocalStore,
        planner: GridPlanner,
        scheduler: CaptureScheduler,
        classifier: ColorClassifier,
        composer: MosaicComposer,
    ):
        self.settings = settings
        self.store = store
        self.planner = planner
        self.scheduler = scheduler
        self.classifier = classifier
        self.composer = composer

    @classmethod
    def from_settings(
        cls,
        settings,
        store: LocalStore,
        capturer: Capturer | None = None,
    ) -> "CapturePipeline":
        planner = GridPlanner.from_settings(settings)
        rect = ContentRect.from_settings(settings)

        rows, cols = settings.mosaic_rows, settings.mosaic_cols
        if rows is None or cols is None:
            planned_rows, planned_cols = planner.dimensions()
            rows = rows or planned_rows
            cols = cols or planned_cols

        scheduler = CaptureScheduler(
            capturer or HttpCapturer(settings.capture_service_url, settings.capture_timeout),
            settings.ss_folder,
            settings.map_url_template,
            viewport=(settings.viewport_width, settings.viewport_height),
            skip_policy=SkipPolicy.from_settings(settings),
            max_concurrent=settings.max_concurrent_captures,
            dry_run=settings.dry_run,
        )
        return cls(
            settings,
            store,
            planner,
            scheduler,
            ColorClassifier(rect, settings.color_threshold),
            MosaicComposer(rows, cols, rect),
        )

    def create_folders(self) -> None:
        """Create every working folder; raises StartupError on failure."""
        for folder in self.settings.folders:
            try:
                Path(folder).mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise StartupError(f"error in creating folder [{folder}]: {e}") from e

    async def capture(self, stop: asyncio.Event | None = None) -> CaptureResult:
        """Capture one batch of tiles into the screenshot folder."""
        return await self.scheduler.capture_batch(self.planner, batch_timestamp(), stop)

    async def run_cycle(self, stop: asyncio.Event | None = None) -> AnalysisResult:
        """Capture a batch and analyze it."""
        capture = await self.capture(stop)
        return await self.analyze_batch(capture.batch_ts)

    def find_tiles(self, prefix: str) -> list[Path]:
        """Tiles in the screenshot folder whose name contains ``prefix``."""
        folder = Path(self.settings.ss_folder)
        return sorted(
            p for p in folder.iterdir()
            if p.is_file() and p.suffix == TILE_SUFFIX and prefix in p.name
        )

    async def analyze_tile(self, tile: Path) -> None:
        """Classify one tile, save its mask and store the observation."""
        mask_path = Path(self.settings.mask_folder) / tile.name
        result = await asyncio.to_thread(self.classifier.classify_file, tile, mask_path)
        await self.store.upsert(tile.name, result.yellow, result.red, result.dark_red)

    async def analyze_batch(self, prefix: str) -> AnalysisResult:
        """Classify and store every tile matching ``prefix``, then build the mosaics.

        A tile that cannot be read, decoded or stored is logged and skipped.
        One mosaic pair is composed per batch timestamp found among the tiles.
        """
        logger.info(f"---- analyzing screenshots at {prefix} ----")
        result = AnalysisResult(prefix=prefix)
        batches: set[str] = set()

        for tile in self.find_tiles(prefix):
            try:
                key = parse_tile_key(tile.name)
            except InvalidTileKey as e:
                logger.warning(f"skipping [{tile}]: {e}")
                continue
            batches.add(key.batch_ts)

            try:
                await self.analyze_tile(tile)
            except (TileDecodeError, OSError) as e:
                logger.error(f"error in computing mask for [{tile}]: {e}")
                result.failed[tile.name] = str(e)
                continue
            except SQLAlchemyError as e:
                logger.error(f"error in inserting traffic [{tile}]: {e}")
                result.failed[tile.name] = str(e)
                continue
            result.stored.append(tile.name)

        for batch_ts in sorted(batches):
            result.mosaics.append(await asyncio.to_thread(
                self.composer.compose, self.settings.ss_folder, self.settings.ss_comb_folder, batch_ts
            ))
            result.mosaics.append(await asyncio.to_thread(
                self.composer.compose, self.settings.mask_folder, self.settings.mask_comb_folder, batch_ts
            ))

        logger.info(
            f"---- screenshots analyzed: {len(result.stored)} stored, {len(result.failed)} failed ----"
        )
        return result

    def delete_batch_tiles(self, prefix: str) -> int:
        """Delete raw tiles and masks matching ``prefix``; mosaics stay."""
        logger.info(f"deleting screenshots with prefix [{prefix}]...")
        deleted = 0
        for tile in self.find_tiles(prefix):
            mask = Path(self.settings.mask_folder) / tile.name
            try:
                mask.unlink(missing_ok=True)
                tile.unlink()
            except OSError as e:
                logger.error(f"error in removing screenshot [{tile.name}]: {e}")
                continue
            deleted += 1
        return deleted

    async def isolate(self, x: int, y: int, stop: asyncio.Event | None = None) -> list[Path]:
        """Extract cell ``(x, y)`` from every stored screenshot mosaic."""
        if not (0 <= x < self.composer.cols and 0 <= y < self.composer.rows):
            raise ValueError(
                f"cell [{x}, {y}] outside {self.composer.cols}x{self.composer.rows} mosaic grid"
            )
        return await self.composer.isolate_all(
            self.settings.ss_comb_folder, self.settings.isolate_folder, x, y, stop
        )


class PeriodicCaptureService:
    """Background service running a capture cycle on every tick."""

    def __init__(
        self,
        pipeline: CapturePipeline,
        retention: RetentionManager | None = None,
        replication: ReplicationService | None = None,
        interval_seconds: float = 600,
        quiet_hours: Iterable[int] = (),
        reduced_hours: Iterable[int] = (),
        reduced_every: int = 3,
        delete_tiles: bool = True,
        stop: asyncio.Event | None = None,
    ):
        self.pipeline = pipeline
        self.retention = retention
        self.replication = replication
        self._interval = interval_seconds
        self.quiet_hours = set(quiet_hours)
        self.reduced_hours = set(reduced_hours)
        self.reduced_every = reduced_every
        self.delete_tiles = delete_tiles
        self.stop_event = stop or asyncio.Event()
        self.last_capture: CaptureResult | None = None
        self.last_analysis: AnalysisResult | None = None
        self._reduced_ticks = 0
        self._running = False
        self._task: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        settings,
        pipeline: CapturePipeline,
        replication: ReplicationService | None = None,
        stop: asyncio.Event | None = None,
    ) -> "PeriodicCaptureService":
        return cls(
            pipeline,
            retention=RetentionManager.from_settings(settings),
            replication=replication,
            interval_seconds=settings.capture_interval_seconds,
            quiet_hours=settings.quiet_hours_utc,
            reduced_hours=settings.reduced_hours_utc,
            reduced_every=settings.reduced_capture_every,
            delete_tiles=settings.delete_tiles_after_analysis,
            stop=stop,
        )

    @property
    def running(self) -> bool:
        return self._running

    def should_capture(self, now: datetime | None = None) -> bool:
        """Apply the quiet and reduced hour rules to one tick."""
        hour = (now or datetime.now(UTC)).hour
        if hour in self.quiet_hours:
            self._reduced_ticks = 0
            logger.info(f"skipping screenshot during quiet hour {hour} UTC")
            return False
        if hour in self.reduced_hours:
            self._reduced_ticks += 1
            if self._reduced_ticks % self.reduced_every != 0:
                logger.info(
                    f"skipping screenshot during reduced hour {hour} UTC "
                    f"(skipCount: {self._reduced_ticks})"
                )
                return False
            self._reduced_ticks = 0
        return True

    async def start(self) -> None:
        """Start the periodic capture service."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._capture_loop())
        logger.info("Started periodic capture service")

    async def _capture_loop(self) -> None:
        """Run one tick per interval until stopped."""
        while self._running and not self.stop_event.is_set():
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self._interval)
                break
            except TimeoutError:
                pass

            if not self.should_capture():
                continue
            try:
                if not await self.tick():
                    break
            except Exception as e:
                logger.error(f"Capture cycle error: {e}", exc_info=True)
        self._running = False
        logger.info("shutting down screenshot loop")

    async def tick(self) -> bool:
        """Run one capture cycle; False means the loop should stop."""
        if self.retention is not None:
            await asyncio.to_thread(self.retention.make_space_if_needed)

        try:
            self.last_capture = await self.pipeline.capture(self.stop_event)
        except CaptureError as e:
            logger.error(str(e))
            return not self.stop_event.is_set()

        self.last_analysis = await self.pipeline.analyze_batch(self.last_capture.batch_ts)
        if self.delete_tiles:
            await asyncio.to_thread(self.pipeline.delete_batch_tiles, self.last_capture.batch_ts)
        if self.replication is not None:
            self.replication.hint()
        return not self.last_capture.cancelled

    async def stop(self) -> None:
        """Stop the periodic capture service, finishing any cycle in progress."""
        self._running = False
        self.stop_event.set()
        if self._task:
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Stopped periodic capture service")

    def status(self) -> dict:
        return {
            "running": self._running,
            "last_capture": self.last_capture.to_dict() if self.last_capture else None,
            "last_analysis": self.last_analysis.to_dict() if self.last_analysis else None,
        }


settings = get_settings()

# Global pipeline and periodic capture service instances
capture_pipeline = CapturePipeline.from_settings(settings, local_store)
capture_service = PeriodicCaptureService.from_settings(settings, capture_pipeline, replication_service)
