"""API routers."""

from jamgrid.routers.health import router as health_router
from jamgrid.routers.metrics import router as metrics_router
from jamgrid.routers.observations import router as observations_router

__all__ = [
    "health_router",
    "metrics_router",
    "observations_router",
]
