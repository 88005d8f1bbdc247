"""Tile capture: screenshot service client and bounded-concurrency scheduler."""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import httpx

from jamgrid.exceptions import CaptureError, TileCaptureError
from jamgrid.services.grid import GridCell
from jamgrid.services.skip import SkipPolicy
from jamgrid.tiles import tile_path

logger = logging.getLogger(__name__)

# Granularity at which a blocked dispatcher re-checks the stop signal
STOP_POLL_SECONDS = 0.5


class Capturer(Protocol):
    """Renders a URL and returns the screenshot as PNG bytes."""

    async def capture(self, url: str, viewport: tuple[int, int]) -> bytes: ...


class HttpCapturer:
    """Client for a headless-browser screenshot service.

    The service receives ``{"url": ..., "viewport": {"width": W, "height": H}}``
    and answers with the PNG bytes of the rendered page.
    """

    def __init__(
        self,
        service_url: str,
        timeout: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.service_url = service_url
        self.timeout = timeout
        self._client = client

    async def capture(self, url: str, viewport: tuple[int, int]) -> bytes:
        payload = {
            "url": url,
            "viewport": {"width": viewport[0], "height": viewport[1]},
            "type": "png",
        }
        if self._client is not None:
            return await self._post(self._client, payload)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await self._post(client, payload)

    async def _post(self, client: httpx.AsyncClient, payload: dict) -> bytes:
        try:
            response = await client.post(self.service_url, json=payload, timeout=self.timeout)
        except httpx.RequestError as e:
            raise TileCaptureError(f"error while loading the webpage [{payload['url']}]: {e}") from e

        if response.status_code != 200:
            raise TileCaptureError(
                f"screenshot service returned {response.status_code} for [{payload['url']}]"
            )
        if not response.content:
            raise TileCaptureError(f"screenshot service returned no image for [{payload['url']}]")
        return response.content


@dataclass
class CaptureResult:
    """Outcome of one capture batch."""

    batch_ts: str
    captured: list[Path] = field(default_factory=list)
    skipped: list[tuple[int, int]] = field(default_factory=list)
    failed: dict[tuple[int, int], str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def dispatched(self) -> int:
        return len(self.captured) + len(self.failed)

    def to_dict(self) -> dict:
        return {
            "batch_ts": self.batch_ts,
            "captured": len(self.captured),
            "skipped": len(self.skipped),
            "failed": len(self.failed),
            "cancelled": self.cancelled,
        }


class CaptureScheduler:
    """Captures one screenshot per grid cell with at most N in flight."""

    def __init__(
        self,
        capturer: Capturer,
        output_folder: Path,
        url_template: str,
        viewport: tuple[int, int] = (1280, 800),
        skip_policy: SkipPolicy | None = None,
        max_concurrent: int = 10,
        dry_run: bool = False,
    ):
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be positive")
        self.capturer = capturer
        self.output_folder = Path(output_folder)
        self.url_template = url_template
        self.viewport = viewport
        self.skip_policy = skip_policy or SkipPolicy()
        self.max_concurrent = max_concurrent
        self.dry_run = dry_run

    def build_url(self, cell: GridCell) -> str:
        return self.url_template.format(lat=cell.lat, lon=cell.lon)

    async def capture_batch(
        self,
        cells: Iterable[GridCell],
        batch_ts: str,
        stop: asyncio.Event | None = None,
    ) -> CaptureResult:
        """Capture every non-skipped cell and write the tiles to disk.

        Individual tile failures are recorded in the result. Raises
        CaptureError if shutdown was requested before anything was
        dispatched, or if every dispatched capture failed.
        """
        stop = stop or asyncio.Event()
        result = CaptureResult(batch_ts=batch_ts)
        slots = asyncio.Semaphore(self.max_concurrent)
        tasks: list[asyncio.Task] = []

        logger.info(f"---- taking screenshots at {batch_ts} ----")
        try:
            for cell in cells:
                if stop.is_set():
                    result.cancelled = True
                    break
                if not await self._acquire_slot(slots, stop):
                    result.cancelled = True
                    break
                # Counted only once the cell can actually be dispatched
                if self.skip_policy.record_attempt(cell.x, cell.y):
                    slots.release()
                    result.skipped.append((cell.x, cell.y))
                    continue
                tasks.append(asyncio.create_task(self._capture_tile(cell, batch_ts, slots, result)))
        finally:
            # In-flight captures always run to completion
            if tasks:
                await asyncio.gather(*tasks)

        if result.cancelled:
            logger.info(f"Capture batch {batch_ts} stopped after {len(tasks)} dispatches")
            if not tasks:
                raise CaptureError(f"capture batch {batch_ts} cancelled before any capture")

        if tasks and not result.captured and not self.dry_run:
            raise CaptureError(
                f"all {len(tasks)} captures failed for batch {batch_ts}",
                failures=dict(result.failed),
            )

        logger.info(
            f"---- screenshots taken at {batch_ts}: {len(result.captured)} captured, "
            f"{len(result.skipped)} skipped, {len(result.failed)} failed ----"
        )
        return result

    async def _acquire_slot(self, slots: asyncio.Semaphore, stop: asyncio.Event) -> bool:
        """Wait for a free capture slot; False if stop was requested first."""
        while not stop.is_set():
            try:
                await asyncio.wait_for(slots.acquire(), timeout=STOP_POLL_SECONDS)
            except TimeoutError:
                continue
            if stop.is_set():
                slots.release()
                return False
            return True
        return False

    async def _capture_tile(
        self,
        cell: GridCell,
        batch_ts: str,
        slots: asyncio.Semaphore,
        result: CaptureResult,
    ) -> None:
        url = self.build_url(cell)
        logger.info(
            f"taking screenshot for [y:{cell.y}, x:{cell.x}] latitude: {cell.lat:.6f}, "
            f"longitude: {cell.lon:.6f} at [{url}]"
        )
        try:
            if self.dry_run:
                return
            png = await self.capturer.capture(url, self.viewport)
            path = tile_path(self.output_folder, batch_ts, cell.x, cell.y)
            await asyncio.to_thread(path.write_bytes, png)
            result.captured.append(path)
        except Exception as e:
            logger.error(f"error capturing tile [x:{cell.x}, y:{cell.y}]: {e}", exc_info=True)
            result.failed[(cell.x, cell.y)] = str(e) or type(e).__name__
        finally:
            slots.release()
