"""Application configuration from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Cells that rarely carry congestion, keyed "x,y". Every listed cell is captured
# on every third cycle.
DEFAULT_SKIP_CELLS: dict[str, int] = {
    f"{x},{y}": 3
    for x, ys in {
        0: (0, 4, 5, 6, 9, 10, 20),
        1: (0, 1, 10),
        2: (20,),
        3: (0, 13, 17),
        4: (14, 20),
        5: (20,),
        6: (6, 8, 18),
        7: (20,),
        8: (0, 1, 2),
        9: (0, 1, 2, 3, 4, 16),
        10: (0, 1, 11, 12, 13, 14),
        11: (3, 5, 6, 8, 10, 11),
        12: (3, 5, 6, 7, 9, 12, 13, 20),
        13: (0, 1, 3, 9, 16, 17, 20),
        14: (0, 5, 12, 13, 14, 17),
    }.items()
    for y in ys
}

# Starting counts that stagger the skip table so the skipped cells do not all
# come due in the same cycle.
DEFAULT_SKIP_PHASES: dict[str, int] = {
    **{f"{x},{y}": 1 for x, ys in {
        8: (0, 1, 2),
        9: (0, 1, 2, 3, 4, 16),
        10: (0, 1, 11, 12, 13, 14),
        11: (3, 5, 6, 8, 10, 11),
    }.items() for y in ys},
    **{f"{x},{y}": 2 for x, ys in {
        12: (3, 5, 6, 7, 9, 12, 13, 20),
        13: (0, 1, 3, 9, 16, 17, 20),
        14: (0, 5, 12, 13, 14, 17),
    }.items() for y in ys},
}


def parse_cell(value: str) -> tuple[int, int]:
    """Parse an "x,y" cell reference."""
    parts = value.split(",")
    if len(parts) != 2:
        raise ValueError(f"invalid grid cell [{value}], expected x,y")
    return int(parts[0].strip()), int(parts[1].strip())


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Folders
    ss_folder: Path = Field(default=Path("ss"), description="Raw tile screenshots")
    mask_folder: Path = Field(default=Path("mask"), description="Per-tile severity masks")
    db_folder: Path = Field(default=Path("db"), description="Local database files")
    ss_comb_folder: Path = Field(default=Path("ss-comb"), description="Screenshot mosaics")
    mask_comb_folder: Path = Field(default=Path("mask-comb"), description="Mask mosaics")
    isolate_folder: Path = Field(default=Path("ss-iso"), description="Cells isolated from mosaics")

    # Databases
    local_database_url: str | None = Field(
        default=None,
        description="Local SQLite URL (defaults to traffic.db inside db_folder)",
    )
    remote_database_url: str | None = Field(
        default=None,
        validation_alias=AliasChoices("remote_database_url", "postgres_url"),
        description="Remote PostgreSQL URL; replication is disabled when unset",
    )

    # Bounding box and tile footprint. Partial edge tiles are kept, so the
    # default box plans 22 rows x 15 columns and row 21 lies outside the
    # default skip table. Mosaics use the planned grid unless overridden.
    north_west_lat: float = Field(default=26.99)
    north_west_lon: float = Field(default=75.65)
    south_east_lat: float = Field(default=26.78)
    south_east_lon: float = Field(default=75.92)
    tile_height_m: float = Field(default=1100.0, gt=0)
    tile_width_m: float = Field(default=1800.0, gt=0)
    mosaic_rows: int | None = Field(default=None, description="Mosaic rows (derived when unset)")
    mosaic_cols: int | None = Field(default=None, description="Mosaic columns (derived when unset)")

    # Tile image layout
    viewport_width: int = Field(default=1280, gt=0)
    viewport_height: int = Field(default=800, gt=0)
    margin_left: int = Field(default=170, ge=0)
    margin_top: int = Field(default=230, ge=0)
    margin_right: int = Field(default=260, ge=0)
    margin_bottom: int = Field(default=50, ge=0)

    # Classification
    color_threshold: int = Field(default=10, ge=0, le=255)

    # Capture
    capture_service_url: str = Field(
        default="http://localhost:3000/screenshot",
        description="Headless browser screenshot endpoint",
    )
    capture_timeout: float = Field(default=60.0, gt=0)
    map_url_template: str = Field(
        default="https://www.google.com/maps/@{lat:.6f},{lon:.6f},16z/data=!5m1!1e1",
        description="Map URL with {lat} and {lon} placeholders",
    )
    max_concurrent_captures: int = Field(default=10, gt=0)
    dry_run: bool = Field(default=False, description="Log capture URLs without capturing")

    # Skip table
    skip_cells: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_SKIP_CELLS))
    skip_phases: dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_SKIP_PHASES))

    # Cadence
    capture_interval_seconds: int = Field(default=600, gt=0)
    quiet_hours_utc: Annotated[list[int], NoDecode] = Field(default=[21, 22, 23, 0, 1])
    reduced_hours_utc: Annotated[list[int], NoDecode] = Field(default=[18, 19])
    reduced_capture_every: int = Field(default=3, gt=0)
    delete_tiles_after_analysis: bool = Field(default=True)

    # Replication
    sync_batch_size: int = Field(default=100, gt=0)
    sync_page_size: int = Field(default=1000, gt=0)
    sync_timeout_seconds: float = Field(default=60.0, gt=0)

    # Retention
    min_free_space_gib: float = Field(default=5.0, ge=0)

    # Application
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Logging level")

    @field_validator("quiet_hours_utc", "reduced_hours_utc", mode="before")
    @classmethod
    def parse_hours(cls, v: str | list[int] | None) -> list[int]:
        """Parse hour lists from comma-separated strings or lists."""
        if v is None or v == "":
            return []
        if isinstance(v, str):
            hours = [int(h.strip()) for h in v.strip("[]").split(",") if h.strip()]
        else:
            hours = [int(h) for h in v]
        for hour in hours:
            if not 0 <= hour <= 23:
                raise ValueError(f"hour out of range: {hour}")
        return hours

    @field_validator("remote_database_url")
    @classmethod
    def use_async_driver(cls, v: str | None) -> str | None:
        """Point plain PostgreSQL URLs at the asyncpg driver."""
        if not v:
            return None
        for scheme in ("postgres://", "postgresql://"):
            if v.startswith(scheme):
                return "postgresql+asyncpg://" + v[len(scheme) :]
        return v

    @field_validator("skip_cells", "skip_phases")
    @classmethod
    def validate_cell_keys(cls, v: dict[str, int]) -> dict[str, int]:
        """Ensure skip table keys are "x,y" cell references."""
        for key, count in v.items():
            parse_cell(key)
            if count < 0:
                raise ValueError(f"negative skip value for cell [{key}]")
        return v

    @property
    def local_db_url(self) -> str:
        """Resolved local database URL."""
        if self.local_database_url:
            return self.local_database_url
        return f"sqlite+aiosqlite:///{self.db_folder / 'traffic.db'}"

    @property
    def replication_enabled(self) -> bool:
        """Check if a remote store is configured."""
        return bool(self.remote_database_url)

    @property
    def folders(self) -> list[Path]:
        """All working folders, in creation order."""
        return [
            self.ss_folder,
            self.mask_folder,
            self.db_folder,
            self.ss_comb_folder,
            self.mask_comb_folder,
            self.isolate_folder,
        ]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
