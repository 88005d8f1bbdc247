"""Schemas for traffic observations."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class ObservationResponse(BaseModel):
    """Severity counts of one captured tile."""

    model_config = ConfigDict(from_attributes=True)

    tile_key: str
    yellow: int
    red: int
    dark_red: int
    ts: datetime | None
    x: int
    y: int


class ObservationListResponse(BaseModel):
    """A page of observations, newest first."""

    observations: list[ObservationResponse]
    count: int


class LatestBatchResponse(BaseModel):
    """Totals of the most recent batch."""

    ts: datetime
    tiles: int
    yellow: int
    red: int
    dark_red: int


class SyncResponse(BaseModel):
    """Result of a replication request."""

    status: str
    replication: dict
