"""Traffic observation endpoints."""

from datetime import datetime

from fastapi import APIRouter, HTTPException, Query

from jamgrid.schemas.observation import (
    LatestBatchResponse,
    ObservationListResponse,
    ObservationResponse,
    SyncResponse,
)
from jamgrid.services.replication import replication_service
from jamgrid.services.store import local_store

router = APIRouter(prefix="/api", tags=["observations"])


@router.get("/observations", response_model=ObservationListResponse)
async def list_observations(
    x: int | None = Query(default=None, ge=0, description="Grid column"),
    y: int | None = Query(default=None, ge=0, description="Grid row"),
    since: datetime | None = Query(default=None, description="Earliest batch timestamp"),
    limit: int = Query(default=100, ge=1, le=1000),
) -> ObservationListResponse:
    """List observations, newest first."""
    rows = await local_store.query(x=x, y=y, since=since, limit=limit)
    return ObservationListResponse(
        observations=[ObservationResponse.model_validate(row) for row in rows],
        count=len(rows),
    )


@router.get("/observations/latest", response_model=LatestBatchResponse)
async def latest_batch() -> LatestBatchResponse:
    """Totals of the most recently captured batch."""
    summary = await local_store.latest_batch()
    if summary is None:
        raise HTTPException(status_code=404, detail="No observations recorded yet")
    return LatestBatchResponse(**summary)


@router.post("/sync", response_model=SyncResponse, status_code=202)
async def trigger_sync() -> SyncResponse:
    """Ask the replication service to run now."""
    if replication_service is None:
        raise HTTPException(status_code=503, detail="Replication is not configured")
    replication_service.hint()
    return SyncResponse(status="queued", replication=replication_service.sync_status.to_dict())
