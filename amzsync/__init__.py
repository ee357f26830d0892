"""
Batched historical order sync for the Amazon Selling Partner Reports API.

This package contains the sync engine used by the web/ control surface:
- exceptions: Custom exception hierarchy
- config: Centralized configuration
- planner: Date-window batch planning
- sync_service: The background run controller
"""

# Import in dependency order
from amzsync.exceptions import (
    SyncError,
    CredentialError,
    SPAPIConnectionError,
    SPAPIError,
    RateLimitedError,
    RateLimitExhaustedError,
    ReportFailureError,
    ReportTimeoutError,
    DataError,
    AlreadyRunningError,
    ValidationError,
)

from amzsync.config import config

from amzsync.models import SyncPhase, SyncState, BatchResult

from amzsync.planner import DateWindow, plan_batches

from amzsync.sync_service import HistoricalSyncService, get_sync_service

__all__ = [
    # Exceptions
    "SyncError",
    "CredentialError",
    "SPAPIConnectionError",
    "SPAPIError",
    "RateLimitedError",
    "RateLimitExhaustedError",
    "ReportFailureError",
    "ReportTimeoutError",
    "DataError",
    "AlreadyRunningError",
    "ValidationError",
    # Config
    "config",
    # Progress
    "SyncPhase",
    "SyncState",
    "BatchResult",
    # Planning
    "DateWindow",
    "plan_batches",
    # Service
    "HistoricalSyncService",
    "get_sync_service",
]
