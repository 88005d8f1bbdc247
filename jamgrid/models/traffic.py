"""Traffic observation models for the local and remote stores."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from jamgrid.database import Base, RemoteBase


class ObservationColumns:
    """Columns shared by the local and remote traffic tables."""

    # Base file name of the tile, e.g. 20250114-093000-x3-y12.png
    tile_key: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Pixel counts per severity inside the tile's content rectangle
    yellow: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    red: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    dark_red: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Derived from tile_key at write time
    ts: Mapped[datetime | None] = mapped_column(DateTime)
    x: Mapped[int | None] = mapped_column(Integer)
    y: Mapped[int | None] = mapped_column(Integer)

    def to_dict(self) -> dict:
        return {
            "tile_key": self.tile_key,
            "yellow": self.yellow,
            "red": self.red,
            "dark_red": self.dark_red,
            "ts": self.ts,
            "x": self.x,
            "y": self.y,
        }


class TrafficObservation(ObservationColumns, Base):
    """Severity counts for one captured tile, in the local store."""

    __tablename__ = "traffic"


class RemoteTrafficObservation(ObservationColumns, RemoteBase):
    """Replicated copy of a traffic observation in the remote store."""

    __tablename__ = "traffic"

    # Byte order on PostgreSQL, matching the local store and the sync cursor
    tile_key: Mapped[str] = mapped_column(
        String(64).with_variant(String(64, collation="C"), "postgresql"),
        primary_key=True,
    )


# Per-cell history lookups and time range scans on the remote store
Index(
    "ix_traffic_cell_ts",
    RemoteTrafficObservation.x,
    RemoteTrafficObservation.y,
    RemoteTrafficObservation.ts.desc(),
)
Index("ix_traffic_ts", RemoteTrafficObservation.ts)
