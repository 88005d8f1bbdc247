"""Grid planning over a lat/long bounding box.

Latitude is vertical (rows, y) and longitude is horizontal (columns, x)::

    north_west_lat ----------------
          |
          |     LATITUDE (y)
          |
    south_east_lat ----------------

          |                       |
    north_west_lon  LONGITUDE (x)  south_east_lon
          |                       |
"""

import math
from collections.abc import Iterator
from dataclasses import dataclass

METERS_PER_DEGREE = 111320.0

# Absorbs float error when a box is an exact multiple of the tile size
_EPSILON_DEG = 1e-9


def add_meters_to_latitude(latitude: float, meters: float) -> float:
    """Move ``meters`` south of ``latitude``."""
    return latitude - meters / METERS_PER_DEGREE


def add_meters_to_longitude(latitude: float, longitude: float, meters: float) -> float:
    """Move ``meters`` east of ``longitude`` along the parallel at ``latitude``."""
    return longitude + meters / (METERS_PER_DEGREE * math.cos(math.radians(latitude)))


@dataclass(frozen=True, slots=True)
class BoundingBox:
    """Capture area given by its north-west and south-east corners."""

    north_west_lat: float
    north_west_lon: float
    south_east_lat: float
    south_east_lon: float

    def __post_init__(self) -> None:
        if self.south_east_lat >= self.north_west_lat:
            raise ValueError("south-east latitude must be south of north-west latitude")
        if self.south_east_lon <= self.north_west_lon:
            raise ValueError("south-east longitude must be east of north-west longitude")


@dataclass(frozen=True, slots=True)
class GridCell:
    """One tile position with the coordinates of its center."""

    x: int
    y: int
    lat: float
    lon: float


class GridPlanner:
    """Raster walk over a bounding box in tile-sized steps.

    Tile centers start half a tile inside the north-west corner. A row keeps
    adding columns while the next tile still starts west of the south-east
    longitude, and rows are added while the next row still starts north of
    the south-east latitude. Partial tiles at the east and south edges are
    kept, so each axis holds ``ceil(extent / tile)`` cells.

    Iterating the planner always starts a fresh walk.
    """

    def __init__(self, bbox: BoundingBox, tile_height_m: float, tile_width_m: float):
        if tile_height_m <= 0 or tile_width_m <= 0:
            raise ValueError("tile footprint must be positive")
        self.bbox = bbox
        self.tile_height_m = tile_height_m
        self.tile_width_m = tile_width_m

    @classmethod
    def from_settings(cls, settings) -> "GridPlanner":
        bbox = BoundingBox(
            north_west_lat=settings.north_west_lat,
            north_west_lon=settings.north_west_lon,
            south_east_lat=settings.south_east_lat,
            south_east_lon=settings.south_east_lon,
        )
        return cls(bbox, settings.tile_height_m, settings.tile_width_m)

    def __iter__(self) -> Iterator[GridCell]:
        return self.cells()

    def cells(self) -> Iterator[GridCell]:
        bbox = self.bbox
        half_height = self.tile_height_m / 2
        half_width = self.tile_width_m / 2

        y = 0
        lat = add_meters_to_latitude(bbox.north_west_lat, half_height)
        # the row's north edge must lie north of the box's south edge
        while add_meters_to_latitude(lat, -half_height) > bbox.south_east_lat + _EPSILON_DEG:
            x = 0
            lon = add_meters_to_longitude(lat, bbox.north_west_lon, half_width)
            # the tile's west edge must lie west of the box's east edge
            while (
                add_meters_to_longitude(lat, lon, -half_width)
                < bbox.south_east_lon - _EPSILON_DEG
            ):
                yield GridCell(x=x, y=y, lat=lat, lon=lon)
                x += 1
                lon = add_meters_to_longitude(lat, lon, self.tile_width_m)
            y += 1
            lat = add_meters_to_latitude(lat, self.tile_height_m)

    def dimensions(self) -> tuple[int, int]:
        """Return ``(rows, columns)`` of the walk."""
        rows = 0
        cols = 0
        for cell in self.cells():
            rows = max(rows, cell.y + 1)
            cols = max(cols, cell.x + 1)
        return rows, cols
