"""
Pydantic response models for API endpoints.

Field names follow the dashboard's camelCase contract.
"""
from datetime import datetime
from typing import Optional, List

from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# HISTORICAL SYNC
# ═══════════════════════════════════════════════════════════════════════════════

class BatchResultResponse(BaseModel):
    """Outcome of one batch."""
    batch: int
    dateRange: str = Field(description="'YYYY-MM-DD to YYYY-MM-DD'")
    orders: int = 0
    ordersCreated: int = 0
    ordersUpdated: int = 0
    items: int = 0
    error: Optional[str] = None


class SyncStateResponse(BaseModel):
    """Progress of the current (or last) historical sync run."""
    isRunning: bool
    currentBatch: int
    totalBatches: int
    currentPhase: str = Field(description="Human-readable phase, e.g. 'Batch 2/8: Downloading...'")
    phase: str = Field(description="Machine-readable phase name")
    ordersProcessed: int
    ordersCreated: int
    ordersUpdated: int
    itemsProcessed: int
    skipped: int
    errors: int
    rateLimitResets: int
    startTime: Optional[str] = Field(None, description="Run start (ISO format)")
    batchResults: List[BatchResultResponse] = []


class StartSyncResponse(BaseModel):
    """Accepted start request."""
    success: bool = True
    totalBatches: int
    batchSize: int = Field(description="Days per batch")
    totalDays: int


class StopSyncResponse(BaseModel):
    success: bool = True


class SyncLogResponse(BaseModel):
    """One sync log row."""
    id: int
    sync_type: str
    status: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    error: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════════

class DuckDBStats(BaseModel):
    """DuckDB statistics."""
    status: str
    latency_ms: Optional[float] = None
    orders: Optional[int] = None
    order_items: Optional[int] = None
    products: Optional[int] = None
    db_size_mb: Optional[float] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="Service status: healthy or degraded")
    version: str = Field(description="Application version")
    uptime_seconds: int = Field(description="Uptime in seconds")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    sync_running: bool = Field(False, description="Whether a historical sync is running")
    duckdb: DuckDBStats
