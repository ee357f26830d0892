"""
Historical batched sync control endpoints.

POST   /amazon/sync/historical-batched?size=&total=   start a run (202)
GET    /amazon/sync/historical-batched[?stream=true]  progress (JSON or SSE)
DELETE /amazon/sync/historical-batched                 stop and reset
GET    /amazon/sync/logs                               recent sync log rows
"""
import json
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from amzsync.exceptions import AlreadyRunningError, ValidationError
from amzsync.sync_service import HistoricalSyncService
from web.config import START_RATE_LIMIT, STATUS_RATE_LIMIT
from web.schemas import StartSyncResponse, StopSyncResponse, SyncLogResponse, SyncStateResponse
from ._deps import limiter, get_service, get_logger

router = APIRouter(prefix="/amazon/sync", tags=["sync"])
logger = get_logger(__name__)


@router.post("/historical-batched", status_code=202, response_model=StartSyncResponse)
@limiter.limit(START_RATE_LIMIT)
async def start_historical_sync(
    request: Request,
    size: Optional[int] = Query(None, description="Days per batch (default 90)"),
    total: Optional[int] = Query(None, description="Total days to import (default 720)"),
    service: HistoricalSyncService = Depends(get_service),
):
    """Start a batched historical import in the background."""
    try:
        result = await service.start(batch_size_days=size, total_days=total)
    except AlreadyRunningError as e:
        return JSONResponse(
            status_code=409,
            content={"error": e.message, "state": service.status().to_dict()},
        )
    except ValidationError as e:
        return JSONResponse(
            status_code=422,
            content={"error": "Invalid parameters", "detail": str(e), "field": e.field},
        )

    return {"success": True, **result}


@router.get("/historical-batched", response_model=SyncStateResponse)
@limiter.limit(STATUS_RATE_LIMIT)
async def get_historical_sync_status(
    request: Request,
    stream: bool = Query(False, description="Stream progress as Server-Sent Events"),
    service: HistoricalSyncService = Depends(get_service),
):
    """
    Current progress.

    With ``stream=true`` the response is an SSE stream sending the state
    every 500 ms until the run finishes.
    """
    if not stream:
        return service.status().to_dict()

    async def event_generator():
        subscription = service.publisher.subscribe()
        try:
            async for snapshot in subscription:
                yield {"data": json.dumps(snapshot.to_dict())}
        finally:
            await subscription.aclose()

    return EventSourceResponse(event_generator())


@router.delete("/historical-batched", response_model=StopSyncResponse)
@limiter.limit(START_RATE_LIMIT)
async def stop_historical_sync(
    request: Request,
    service: HistoricalSyncService = Depends(get_service),
):
    """Stop the running import (if any) and reset progress."""
    await service.stop()
    return {"success": True}


@router.get("/logs", response_model=List[SyncLogResponse])
@limiter.limit(STATUS_RATE_LIMIT)
async def get_sync_logs(
    request: Request,
    limit: int = Query(50, ge=1, le=500),
    service: HistoricalSyncService = Depends(get_service),
):
    """Recent historical sync log rows, newest first."""
    if service.store is None:
        return []
    logs = await service.store.list_sync_logs(limit=limit, sync_type_prefix="historical")
    return [log.to_dict() for log in logs]
