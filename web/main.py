"""
FastAPI control surface for the historical order sync.
"""
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import ORJSONResponse, JSONResponse

from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from web.config import VERSION
from web.routes.api import router as api_router, health_router
from web.routes.api._deps import limiter
from web.middleware import RequestLoggingMiddleware, RequestTimeoutMiddleware
from amzsync.config import validate_config, ConfigurationError
from amzsync.events import events, SyncEvent
from amzsync.observability import setup_logging, get_logger
from amzsync.store import get_store, close_store
from amzsync.sync_service import get_sync_service, close_sync_service

# Use JSON format in production (LOG_FORMAT=json), human-readable otherwise
log_format = os.getenv("LOG_FORMAT", "text")
log_level = os.getenv("LOG_LEVEL", "INFO")
setup_logging(level=log_level, json_format=(log_format == "json"))
logger = get_logger(__name__)


async def startup() -> None:
    logger.info("Historical sync service starting...")

    try:
        validate_config()
        logger.info("Configuration validated")
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        raise SystemExit(1)

    store = await get_store()
    stats = await store.get_stats()
    logger.info(
        f"DuckDB ready: {stats['orders']} orders, {stats['order_items']} items, "
        f"{stats['products']} products, {stats['db_size_mb']} MB"
    )

    # Runs interrupted by a restart can never finish
    stale = await store.cancel_running_sync_logs(reason="Interrupted by restart")
    if stale:
        logger.warning(f"Marked {stale} stale sync logs as cancelled")

    await get_sync_service()
    _register_event_handlers()
    logger.info("Event handlers registered")


async def shutdown() -> None:
    try:
        await close_sync_service()
    except Exception as e:
        logger.warning(f"Error stopping historical sync: {e}")

    try:
        await close_store()
        logger.info("DuckDB closed")
    except Exception as e:
        logger.warning(f"Error closing DuckDB: {e}")
    logger.info("Historical sync service stopped")


def _register_event_handlers():
    """Log run-level sync events."""
    events.clear_handlers()

    @events.on(SyncEvent.SYNC_COMPLETED)
    async def on_sync_completed(data: dict):
        logger.info(
            f"Historical sync completed: {data.get('records_synced', 0)} orders",
            extra={"duration_ms": data.get("duration_ms"), "errors": data.get("errors")},
        )

    @events.on(SyncEvent.SYNC_FAILED)
    async def on_sync_failed(data: dict):
        logger.warning(f"Sync failed: {data.get('sync_type', 'unknown')} - {data.get('error', 'unknown error')}")

    @events.on(SyncEvent.BATCH_FAILED)
    async def on_batch_failed(data: dict):
        logger.warning(f"Batch {data.get('batch')} ({data.get('dateRange')}) failed: {data.get('error')}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup()
    try:
        yield
    finally:
        await shutdown()


app = FastAPI(
    title="Amazon Historical Sync",
    description="Batched historical import of marketplace orders",
    version=VERSION,
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.state.limiter = limiter


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    logger.warning(f"Rate limit exceeded for {get_remote_address(request)}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "Rate limit exceeded",
            "detail": "Too many requests. Please try again later.",
            "retry_after": exc.detail,
        }
    )


# Timeout wraps the handler, logging wraps both so correlation_id is set when timeout fires
app.add_middleware(RequestTimeoutMiddleware)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(health_router)
app.include_router(api_router, prefix="/api")
