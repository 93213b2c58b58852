"""Health check endpoints."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends

from govdata import __version__
from govdata.api.deps import get_manager
from govdata.config.settings import settings
from govdata.ingestion.manager import DataSourceManager

router = APIRouter()


@router.get("/health")
async def health_check(manager: DataSourceManager = Depends(get_manager)) -> dict[str, Any]:
    """Basic health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "version": __version__,
        "environment": settings.app_env,
        "sync_running": manager.scheduler.is_running,
    }


@router.get("/health/sources")
async def sources_health_check(
    manager: DataSourceManager = Depends(get_manager),
) -> dict[str, Any]:
    """Run every adapter's health check."""
    results = await manager.check_all_health()
    services = {name: status.to_dict() for name, status in results.items()}
    all_healthy = all(status.is_healthy for status in results.values())

    return {
        "status": "healthy" if all_healthy else "degraded",
        "timestamp": datetime.now(UTC).isoformat(),
        "services": services,
    }


@router.get("/live")
async def liveness_check() -> dict[str, str]:
    """Kubernetes liveness probe."""
    return {"status": "alive"}
