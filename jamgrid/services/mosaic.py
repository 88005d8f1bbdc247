"""Mosaic composition of a batch's tiles, and isolation of one cell back out."""

import asyncio
import logging
from collections.abc import Mapping
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont

from jamgrid.tiles import ContentRect, mosaic_path, tile_path

logger = logging.getLogger(__name__)

LABEL_SIZE = (50, 20)
LABEL_TEXT_OFFSET = (2, 3)
LABEL_BACKGROUND = (255, 255, 255)
LABEL_FOREGROUND = (0, 0, 0)

ISOLATE_CONCURRENCY = 6


def read_image(path: Path) -> Image.Image:
    """Load an image fully into memory."""
    with Image.open(path) as img:
        img.load()
        return img.copy()


def save_png(path: Path, img: Image.Image) -> Path:
    img.save(path, format="PNG", optimize=True)
    return path


def cell_origin(x: int, y: int, rect: ContentRect) -> tuple[int, int]:
    """Top-left pixel of cell ``(x, y)`` inside a mosaic."""
    return x * rect.width, y * rect.height


def annotate_cell(draw: ImageDraw.ImageDraw, x: int, y: int, rect: ContentRect) -> None:
    """Print a "row, col" label in the corner of a placed tile."""
    left, top = cell_origin(x, y, rect)
    draw.rectangle(
        (left, top, left + LABEL_SIZE[0] - 1, top + LABEL_SIZE[1] - 1),
        fill=LABEL_BACKGROUND,
    )
    draw.text(
        (left + LABEL_TEXT_OFFSET[0], top + LABEL_TEXT_OFFSET[1]),
        f"{y}, {x}",
        fill=LABEL_FOREGROUND,
        font=ImageFont.load_default_imagefont(),
    )


def paste_tile(mosaic: Image.Image, tile: Image.Image, x: int, y: int, rect: ContentRect) -> None:
    """Paste the content rectangle of one tile at its grid position."""
    mosaic.paste(tile.crop(rect.box).convert("RGB"), cell_origin(x, y, rect))


def annotate_cells(mosaic: Image.Image, cells: list[tuple[int, int]], rect: ContentRect) -> None:
    draw = ImageDraw.Draw(mosaic)
    for x, y in cells:
        annotate_cell(draw, x, y, rect)


def compose_image(
    tiles: Mapping[tuple[int, int], Image.Image],
    rows: int,
    cols: int,
    rect: ContentRect,
    annotate: bool = True,
) -> Image.Image:
    """Paste each tile's content rectangle at its grid position.

    Cells without a tile stay black. Tiles outside ``rows`` x ``cols`` are
    ignored.
    """
    mosaic = Image.new("RGB", (cols * rect.width, rows * rect.height))
    placed: list[tuple[int, int]] = []
    for (x, y), tile in sorted(tiles.items()):
        if not (0 <= x < cols and 0 <= y < rows):
            logger.warning(f"[combine image] tile [x:{x}, y:{y}] outside {cols}x{rows} grid")
            continue
        paste_tile(mosaic, tile, x, y, rect)
        placed.append((x, y))

    if annotate:
        annotate_cells(mosaic, placed, rect)
    return mosaic


def isolate_image(mosaic: Image.Image, x: int, y: int, rect: ContentRect) -> Image.Image:
    """Cut cell ``(x, y)`` out of a mosaic, pixel for pixel."""
    left, top = cell_origin(x, y, rect)
    if left + rect.width > mosaic.width or top + rect.height > mosaic.height:
        raise ValueError(f"cell [x:{x}, y:{y}] is outside the mosaic")
    return mosaic.crop((left, top, left + rect.width, top + rect.height))


class MosaicComposer:
    """Builds per-batch mosaics from tile folders and isolates cells from them."""

    def __init__(self, rows: int, cols: int, rect: ContentRect | None = None):
        if rows <= 0 or cols <= 0:
            raise ValueError("mosaic grid must have at least one row and column")
        self.rows = rows
        self.cols = cols
        self.rect = rect or ContentRect()

    def compose(self, tile_folder: Path, out_folder: Path, batch_ts: str) -> Path:
        """Compose and save the mosaic of one batch.

        Tiles are decoded one at a time and released once pasted. Missing or
        unreadable tiles are logged and their cells stay black.
        """
        mosaic = Image.new("RGB", (self.cols * self.rect.width, self.rows * self.rect.height))
        placed: list[tuple[int, int]] = []
        for x in range(self.cols):
            for y in range(self.rows):
                path = tile_path(tile_folder, batch_ts, x, y)
                try:
                    with Image.open(path) as tile:
                        paste_tile(mosaic, tile, x, y, self.rect)
                except (OSError, ValueError) as e:
                    logger.info(f"[combine image] error reading [{path}]: {e}")
                    continue
                placed.append((x, y))

        annotate_cells(mosaic, placed, self.rect)
        out = save_png(mosaic_path(out_folder, batch_ts), mosaic)
        logger.info(f"combined {len(placed)} tiles of {batch_ts} into [{out}]")
        return out

    def isolate(self, mosaic_file: Path, out_folder: Path, x: int, y: int) -> Path:
        """Write cell ``(x, y)`` of one mosaic as a standalone image."""
        logger.info(f"processing file: {mosaic_file}")
        cell = isolate_image(read_image(mosaic_file), x, y, self.rect)
        return save_png(Path(out_folder) / Path(mosaic_file).name, cell)

    async def isolate_all(
        self,
        mosaic_folder: Path,
        out_folder: Path,
        x: int,
        y: int,
        stop: asyncio.Event | None = None,
    ) -> list[Path]:
        """Isolate cell ``(x, y)`` from every mosaic in ``mosaic_folder``.

        Failures are logged per file. Dispatch stops when ``stop`` is set;
        files already being processed are finished.
        """
        files = sorted(p for p in Path(mosaic_folder).iterdir() if p.suffix == ".png")
        logger.info(f"found {len(files)} files for grid [{x}, {y}]")

        slots = asyncio.Semaphore(ISOLATE_CONCURRENCY)
        written: list[Path] = []

        async def run(path: Path) -> None:
            try:
                written.append(await asyncio.to_thread(self.isolate, path, out_folder, x, y))
            except Exception as e:
                logger.error(f"error in isolating grid [{x}, {y}] from [{path}]: {e}")
            finally:
                slots.release()

        tasks = []
        for path in files:
            if stop is not None and stop.is_set():
                logger.info("shutting down...")
                break
            await slots.acquire()
            tasks.append(asyncio.create_task(run(path)))
        await asyncio.gather(*tasks)

        logger.info(f"completed processing {len(tasks)} files for grid [{x}, {y}]")
        return written
