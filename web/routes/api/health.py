"""Health check endpoint."""
import time

from fastapi import APIRouter, Depends, Request

from amzsync.observability import get_correlation_id, Timer
from web.config import VERSION
from web.schemas import HealthResponse
from ._deps import limiter, get_store, get_service, get_logger, START_TIME

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
@limiter.limit("60/minute")
async def health_check(request: Request, service=Depends(get_service)):
    """Health check endpoint for Docker/load balancer monitoring."""
    uptime_seconds = int(time.time() - START_TIME)

    db_latency_ms = None
    try:
        with Timer("health_check_db") as timer:
            store = service.store or await get_store()
            duckdb_stats = await store.get_stats()
        duckdb_status = "connected"
        db_latency_ms = round(timer.elapsed_ms, 2)
    except Exception as e:
        logger.warning(f"Health check could not reach DuckDB: {e}")
        duckdb_stats = None
        duckdb_status = f"error: {e}"

    return {
        "status": "healthy" if duckdb_stats else "degraded",
        "version": VERSION,
        "uptime_seconds": uptime_seconds,
        "correlation_id": get_correlation_id(),
        "sync_running": service.is_running,
        "duckdb": {
            "status": duckdb_status,
            "latency_ms": db_latency_ms,
            **(duckdb_stats or {}),
        },
    }
