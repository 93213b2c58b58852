"""Source observability API: cache, sync status, metrics, forced syncs."""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from govdata.api.deps import get_manager
from govdata.ingestion.errors import DataSourceError, ErrorKind
from govdata.ingestion.manager import DataSourceManager

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("")
async def list_sources(manager: DataSourceManager = Depends(get_manager)) -> dict[str, Any]:
    """List registered sources."""
    sources = manager.get_data_sources()
    return {"sources": sources, "count": len(sources)}


# ── Cache ───────────────────────────────────────────────────

@router.get("/cache")
async def cache_stats(manager: DataSourceManager = Depends(get_manager)) -> dict[str, int]:
    """Cache entry counts."""
    return manager.get_cache_stats().to_dict()


@router.post("/cache/sweep")
async def sweep_cache(manager: DataSourceManager = Depends(get_manager)) -> dict[str, int]:
    """Delete expired cache entries."""
    return {"removed": manager.clear_expired_cache()}


# ── Sync ────────────────────────────────────────────────────

@router.get("/sync")
async def sync_status(manager: DataSourceManager = Depends(get_manager)) -> dict[str, Any]:
    """Per-source schedule and counters."""
    return manager.get_sync_status()


@router.get("/sync/statistics")
async def sync_statistics(manager: DataSourceManager = Depends(get_manager)) -> dict[str, Any]:
    """Totals across all sources."""
    return manager.get_sync_statistics()


@router.post("/sync")
async def force_sync_all(manager: DataSourceManager = Depends(get_manager)) -> dict[str, Any]:
    """Sync every source now."""
    results = await manager.force_sync_all()
    return {
        "results": results,
        "succeeded": sum(1 for ok in results.values() if ok),
        "failed": sum(1 for ok in results.values() if not ok),
    }


@router.post("/sync/{source}")
async def force_sync(
    source: str,
    manager: DataSourceManager = Depends(get_manager),
) -> dict[str, Any]:
    """Sync one source now."""
    try:
        await manager.force_sync(source)
    except DataSourceError as exc:
        if exc.kind == ErrorKind.NOT_FOUND:
            raise HTTPException(status_code=404, detail=exc.message)
        logger.warning(f"Forced sync of {source} failed: {exc}")
        raise HTTPException(status_code=502, detail=exc.to_dict())

    return {"source": source, "status": manager.get_sync_status()[source]}


# ── Metrics ─────────────────────────────────────────────────

@router.get("/metrics")
async def system_metrics(manager: DataSourceManager = Depends(get_manager)) -> dict[str, Any]:
    """Roll-up of the metrics ledger."""
    return manager.get_system_health_summary()


@router.get("/metrics/{source}")
async def source_metrics(
    source: str,
    limit: int = Query(default=50, ge=1, le=1000, description="Most recent entries to return"),
    manager: DataSourceManager = Depends(get_manager),
) -> dict[str, Any]:
    """Summary and recent ledger entries for one source."""
    if source not in manager.get_data_sources():
        raise HTTPException(status_code=404, detail=f"Data source '{source}' not found")

    entries = manager.get_performance_metrics(source)
    return {
        "summary": manager.get_metrics_summary(source).to_dict(),
        "entries": [m.to_dict() for m in entries[-limit:]],
    }
