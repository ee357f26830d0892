"""
Domain models for the historical order sync.

Provides type-safe dataclasses for sync progress (SyncState, BatchResult)
and the persisted aggregates (Order, OrderItem, SyncLog).
"""
import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class SyncPhase(Enum):
    """States of the per-batch report lifecycle."""
    IDLE = "idle"
    CREATING_REPORT = "creating_report"
    WAITING_FOR_REPORT = "waiting_for_report"
    DOWNLOADING = "downloading"
    PROCESSING = "processing"
    BETWEEN_BATCHES = "between_batches"
    BATCH_ERROR = "batch_error"
    DONE = "done"


class OrderStatus(str, Enum):
    """Normalized order status."""
    SHIPPED = "Shipped"
    CANCELLED = "Cancelled"
    PENDING = "Pending"
    DELIVERED = "Delivered"

    @classmethod
    def normalize(cls, raw: Optional[str]) -> "OrderStatus":
        """Map a provider status string onto one of the four known statuses."""
        s = (raw or "").lower()
        if "ship" in s:
            return cls.SHIPPED
        if "cancel" in s:
            return cls.CANCELLED
        if "pend" in s:
            return cls.PENDING
        if "deliver" in s:
            return cls.DELIVERED
        # FBA shipment reports only list shipped orders
        return cls.SHIPPED


class SyncLogStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


# ═══════════════════════════════════════════════════════════════════════════════
# PROGRESS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class BatchResult:
    """Outcome of one processed batch. Append-only within a run."""
    batch_number: int
    date_range_label: str
    orders: int = 0
    orders_created: int = 0
    orders_updated: int = 0
    items: int = 0
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "batch": self.batch_number,
            "dateRange": self.date_range_label,
            "orders": self.orders,
            "ordersCreated": self.orders_created,
            "ordersUpdated": self.orders_updated,
            "items": self.items,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class SyncState:
    """Progress of the current historical sync run."""
    is_running: bool = False
    current_batch: int = 0
    total_batches: int = 0
    current_phase: str = ""
    phase: SyncPhase = SyncPhase.IDLE
    orders_processed: int = 0
    orders_created: int = 0
    orders_updated: int = 0
    items_processed: int = 0
    skipped: int = 0
    errors: int = 0
    rate_limit_resets: int = 0
    start_time: Optional[datetime] = None
    batch_results: List[BatchResult] = field(default_factory=list)

    def copy(self) -> "SyncState":
        return copy.deepcopy(self)

    @property
    def is_idle(self) -> bool:
        """Run finished (or was stopped) after at least one batch started."""
        return not self.is_running and self.current_batch > 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the dashboard's camelCase keys."""
        return {
            "isRunning": self.is_running,
            "currentBatch": self.current_batch,
            "totalBatches": self.total_batches,
            "currentPhase": self.current_phase,
            "phase": self.phase.value,
            "ordersProcessed": self.orders_processed,
            "ordersCreated": self.orders_created,
            "ordersUpdated": self.orders_updated,
            "itemsProcessed": self.items_processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "rateLimitResets": self.rate_limit_resets,
            "startTime": self.start_time.isoformat() if self.start_time else None,
            "batchResults": [r.to_dict() for r in self.batch_results],
        }


# ═══════════════════════════════════════════════════════════════════════════════
# PERSISTED AGGREGATES
# ═══════════════════════════════════════════════════════════════════════════════

def safe_float(value: Optional[str]) -> float:
    """Parse a report money/number cell; blanks and garbage become 0."""
    if not value:
        return 0.0
    cleaned = value.replace(",", "").replace("$", "").replace('"', "").strip()
    try:
        return float(cleaned)
    except ValueError:
        return 0.0


def safe_int(value: Optional[str]) -> int:
    if not value:
        return 0
    try:
        return int(safe_float(value))
    except (ValueError, OverflowError):
        return 0


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 report timestamp into an aware UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass
class Order:
    """Order aggregate, keyed by the marketplace order id."""
    id: str
    purchase_date: datetime
    ship_date: Optional[datetime] = None
    status: OrderStatus = OrderStatus.SHIPPED
    order_total: float = 0.0
    currency: str = "USD"
    fulfillment_channel: str = "FBA"
    sales_channel: str = "Amazon.com"
    ship_city: str = ""
    ship_state: str = ""
    ship_postal_code: str = ""
    ship_country: str = ""

    @classmethod
    def from_row(cls, order_id: str, row, now: Optional[datetime] = None) -> "Order":
        """
        Create Order from the first report row of its group.

        ``row`` is a ``ReportRow`` (see amzsync.parser).
        """
        purchase_date = parse_timestamp(row.get("purchase_date"))
        if purchase_date is None:
            purchase_date = now or datetime.now(timezone.utc)

        return cls(
            id=order_id,
            purchase_date=purchase_date,
            ship_date=parse_timestamp(row.get("ship_date")),
            status=OrderStatus.normalize(row.get("order_status")),
            order_total=safe_float(row.get("item_price")),
            currency=row.get("currency") or "USD",
            sales_channel=row.get("sales_channel") or "Amazon.com",
            ship_city=row.get("ship_city"),
            ship_state=row.get("ship_state"),
            ship_postal_code=row.get("ship_postal_code"),
            ship_country=row.get("ship_country"),
        )


@dataclass
class OrderItem:
    """Order line, keyed by (order_id, sku)."""
    order_id: str
    sku: str
    asin: str = ""
    quantity: int = 1
    item_price: float = 0.0
    item_tax: float = 0.0
    shipping_price: float = 0.0
    shipping_tax: float = 0.0
    gift_wrap_price: float = 0.0
    gift_wrap_tax: float = 0.0
    promo_discount: float = 0.0
    ship_promo_discount: float = 0.0

    @property
    def gross_revenue(self) -> float:
        """Gross sales before promotions."""
        return self.item_price + self.shipping_price + self.gift_wrap_price

    @classmethod
    def from_row(cls, order_id: str, sku: str, row) -> "OrderItem":
        return cls(
            order_id=order_id,
            sku=sku,
            asin=row.get("asin"),
            quantity=safe_int(row.get("quantity")) or 1,
            item_price=safe_float(row.get("item_price")),
            item_tax=safe_float(row.get("item_tax")),
            shipping_price=safe_float(row.get("shipping_price")),
            shipping_tax=safe_float(row.get("shipping_tax")),
            gift_wrap_price=safe_float(row.get("gift_wrap_price")),
            gift_wrap_tax=safe_float(row.get("gift_wrap_tax")),
            promo_discount=abs(safe_float(row.get("item_promotion_discount"))),
            ship_promo_discount=abs(safe_float(row.get("ship_promotion_discount"))),
        )


@dataclass
class SyncLog:
    """Append-only record of a run or batch outcome."""
    sync_type: str
    status: SyncLogStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    records_processed: int = 0
    records_created: int = 0
    records_updated: int = 0
    error: Optional[str] = None
    id: Optional[int] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "SyncLog":
        """Create SyncLog from a sync_logs row keyed by column name."""
        return cls(
            id=row["id"],
            sync_type=row["sync_type"],
            status=SyncLogStatus(row["status"]),
            started_at=row["started_at"],
            completed_at=row.get("completed_at"),
            records_processed=row.get("records_processed") or 0,
            records_created=row.get("records_created") or 0,
            records_updated=row.get("records_updated") or 0,
            error=row.get("error"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "sync_type": self.sync_type,
            "status": self.status.value,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "records_processed": self.records_processed,
            "records_created": self.records_created,
            "records_updated": self.records_updated,
            "error": self.error,
        }
