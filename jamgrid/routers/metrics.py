"""Prometheus metrics endpoint."""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Gauge, generate_latest

from jamgrid.services.pipeline import capture_service
from jamgrid.services.replication import replication_service
from jamgrid.services.store import local_store

router = APIRouter(tags=["metrics"])

SYNC_STATES = ("idle", "syncing", "complete", "error")


async def collect_metrics() -> bytes:
    """Collect all metrics and return Prometheus format."""
    registry = CollectorRegistry()

    observation_rows = Gauge(
        "jamgrid_observations_total",
        "Observations in the local store",
        registry=registry,
    )

    # Capture metrics
    capture_running = Gauge(
        "jamgrid_capture_running",
        "Periodic capture service status (1=running, 0=stopped)",
        registry=registry,
    )
    last_batch_tiles = Gauge(
        "jamgrid_last_batch_tiles",
        "Tiles in the last capture batch by outcome",
        ["outcome"],
        registry=registry,
    )

    # Replication metrics
    replication_enabled = Gauge(
        "jamgrid_replication_enabled",
        "Remote store configured (1=yes, 0=no)",
        registry=registry,
    )
    replication_state = Gauge(
        "jamgrid_replication_state",
        "Current replication state",
        ["state"],
        registry=registry,
    )
    replication_synced = Gauge(
        "jamgrid_replication_rows_synced_total",
        "Rows copied to the remote store since startup",
        registry=registry,
    )

    observation_rows.set(await local_store.count())

    capture_running.set(1 if capture_service.running else 0)
    last_capture = capture_service.last_capture
    if last_capture is not None:
        last_batch_tiles.labels(outcome="captured").set(len(last_capture.captured))
        last_batch_tiles.labels(outcome="skipped").set(len(last_capture.skipped))
        last_batch_tiles.labels(outcome="failed").set(len(last_capture.failed))

    replication_enabled.set(1 if replication_service is not None else 0)
    if replication_service is not None:
        status = replication_service.sync_status
        for state in SYNC_STATES:
            replication_state.labels(state=state).set(1 if status.status == state else 0)
        replication_synced.set(status.total_synced)

    return generate_latest(registry)


@router.get("/metrics", response_class=PlainTextResponse)
async def prometheus_metrics() -> PlainTextResponse:
    """Prometheus metrics endpoint."""
    metrics_data = await collect_metrics()
    return PlainTextResponse(content=metrics_data, media_type=CONTENT_TYPE_LATEST)
