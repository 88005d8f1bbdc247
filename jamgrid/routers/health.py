"""Health check endpoint."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jamgrid.database import get_db
from jamgrid.services.pipeline import capture_service
from jamgrid.services.replication import replication_service

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(db: AsyncSession = Depends(get_db)) -> dict:
    """Report local store reachability and background service state."""
    try:
        await db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as e:
        database = f"error: {e}"

    return {
        "status": "healthy" if database == "ok" else "degraded",
        "database": database,
        "capture_running": capture_service.running,
        "replication": replication_service.sync_status.to_dict() if replication_service else None,
    }
