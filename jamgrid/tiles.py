"""Tile keys, file naming and tile image geometry.

A tile key is the base file name of a captured tile::

    20250114-093000-x3-y12.png
    ^^^^^^^^^^^^^^^ batch timestamp (YYYYMMDD-HHMMSS)
                   ^^^^^^^^^^^^^^^ column and row

Keys sort lexicographically in capture order across batches, which the
replication cursor relies on.
"""

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from jamgrid.exceptions import InvalidTileKey

BATCH_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"
BATCH_TIMESTAMP_LENGTH = 15
TILE_SUFFIX = ".png"


def batch_timestamp(now: datetime | None = None) -> str:
    """Format a batch timestamp at second precision."""
    return (now or datetime.now()).strftime(BATCH_TIMESTAMP_FORMAT)


def tile_name(batch_ts: str, x: int, y: int) -> str:
    """Base file name (and tile key) of one tile."""
    return f"{batch_ts}-x{x}-y{y}{TILE_SUFFIX}"


def tile_path(folder: Path, batch_ts: str, x: int, y: int) -> Path:
    """Path of a tile artifact inside ``folder``."""
    return Path(folder) / tile_name(batch_ts, x, y)


def mosaic_path(folder: Path, batch_ts: str) -> Path:
    """Path of a batch mosaic inside ``folder``."""
    return Path(folder) / f"{batch_ts}{TILE_SUFFIX}"


@dataclass(frozen=True, slots=True)
class TileKey:
    """Parsed form of a tile key."""

    timestamp: datetime
    x: int
    y: int

    @property
    def batch_ts(self) -> str:
        return self.timestamp.strftime(BATCH_TIMESTAMP_FORMAT)

    @property
    def name(self) -> str:
        return tile_name(self.batch_ts, self.x, self.y)


def parse_tile_key(key: str) -> TileKey:
    """Derive ``(timestamp, x, y)`` from a tile key.

    The timestamp sits at fixed offsets ``[0:15]``; the coordinates follow as
    ``-x<col>-y<row>.png``. Directory components are ignored.
    """
    name = Path(key).name
    ts_part = name[:BATCH_TIMESTAMP_LENGTH]
    rest = name[BATCH_TIMESTAMP_LENGTH:]
    try:
        timestamp = datetime.strptime(ts_part, BATCH_TIMESTAMP_FORMAT)
    except ValueError as e:
        raise InvalidTileKey(f"invalid timestamp in tile key [{key}]") from e

    if not rest.startswith("-x") or not rest.endswith(TILE_SUFFIX):
        raise InvalidTileKey(f"invalid coordinates in tile key [{key}]")
    coords = rest[2 : -len(TILE_SUFFIX)]
    x_part, sep, y_part = coords.partition("-y")
    if not sep or not x_part.isdigit() or not y_part.isdigit():
        raise InvalidTileKey(f"invalid coordinates in tile key [{key}]")

    return TileKey(timestamp=timestamp, x=int(x_part), y=int(y_part))


@dataclass(frozen=True, slots=True)
class ContentRect:
    """Interior map region of a tile, excluding the browser and map chrome."""

    tile_width: int = 1280
    tile_height: int = 800
    left: int = 170
    top: int = 230
    right: int = 260
    bottom: int = 50

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError("margins leave no content area")

    @property
    def width(self) -> int:
        return self.tile_width - self.left - self.right

    @property
    def height(self) -> int:
        return self.tile_height - self.top - self.bottom

    @property
    def box(self) -> tuple[int, int, int, int]:
        """Crop box ``(left, upper, right, lower)`` in tile pixels."""
        return (self.left, self.top, self.left + self.width, self.top + self.height)

    @classmethod
    def from_settings(cls, settings) -> "ContentRect":
        return cls(
            tile_width=settings.viewport_width,
            tile_height=settings.viewport_height,
            left=settings.margin_left,
            top=settings.margin_top,
            right=settings.margin_right,
            bottom=settings.margin_bottom,
        )
