"""Shared dependencies for API route modules."""
import time

from slowapi import Limiter
from slowapi.util import get_remote_address

from amzsync.observability import get_logger
from amzsync.store import get_store
from amzsync.sync_service import HistoricalSyncService, get_sync_service

# Shared limiter instance
limiter = Limiter(key_func=get_remote_address)

# Track startup time for uptime calculation
START_TIME = time.time()


async def get_service() -> HistoricalSyncService:
    """FastAPI dependency for the historical sync service (overridable in tests)."""
    return await get_sync_service()


__all__ = ["limiter", "get_logger", "get_store", "get_service", "START_TIME"]
