"""
Idempotent merge of parsed report rows into the store.

Rows are grouped by order id and handled in chunks. Each chunk makes one
existence query and one catalog query, then writes order by order:

- unseen order    -> created from the first row of its group
- known order     -> only ship_date (when present) and status change
- every row       -> order item upserted on (order_id, sku); amounts are
                     overwritten from the latest row, never summed

Replaying the same report therefore leaves the store unchanged.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional, Set

from amzsync.config import config
from amzsync.exceptions import DataError
from amzsync.models import Order, OrderItem
from amzsync.observability import get_logger
from amzsync.parser import ParsedReport, group_by_order
from amzsync.state import SyncStateStore

logger = get_logger(__name__)


@dataclass
class MergeCounts:
    """Totals for one merged report."""
    orders: int = 0
    orders_created: int = 0
    orders_updated: int = 0
    items: int = 0
    skipped: int = 0
    errors: int = 0

    def add(self, other: "MergeCounts") -> None:
        self.orders += other.orders
        self.orders_created += other.orders_created
        self.orders_updated += other.orders_updated
        self.items += other.items
        self.skipped += other.skipped
        self.errors += other.errors


class Merger:
    """
    Writes a ParsedReport into the store and flushes counters into the
    progress state once per chunk.

    Usage:
        merger = Merger(store, state)
        counts = await merger.merge(report, prefix="Batch 1/8")
    """

    def __init__(
        self,
        store,
        state: SyncStateStore,
        chunk_size: int = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ):
        self.store = store
        self.state = state
        self.chunk_size = chunk_size or config.sync.merge_chunk_size
        self._should_stop = should_stop or (lambda: False)

    async def merge(self, report: ParsedReport, prefix: str = "", now: Optional[datetime] = None) -> MergeCounts:
        now = now or datetime.now(timezone.utc)
        groups, orphans = group_by_order(report)
        totals = MergeCounts(skipped=orphans)
        if orphans:
            self.state.add_counts(skipped=orphans)
            logger.debug(f"{prefix}: {orphans} rows without order id")

        order_ids = list(groups)
        for start in range(0, len(order_ids), self.chunk_size):
            if self._should_stop():
                logger.info(f"{prefix}: merge interrupted by stop", extra={"merged_orders": totals.orders})
                break

            chunk = order_ids[start:start + self.chunk_size]
            self.state.set_phase(
                f"{prefix}: Orders {start + 1}-{start + len(chunk)} of {len(order_ids)}"
            )

            counts = await self._merge_chunk(chunk, groups, now)
            self.state.add_counts(
                orders_created=counts.orders_created,
                orders_updated=counts.orders_updated,
                items=counts.items,
                skipped=counts.skipped,
                errors=counts.errors,
            )
            totals.add(counts)

        logger.info(
            f"{prefix}: merged {totals.orders} orders",
            extra={
                "created": totals.orders_created,
                "updated": totals.orders_updated,
                "items": totals.items,
                "skipped": totals.skipped,
                "errors": totals.errors,
            },
        )
        return totals

    async def _merge_chunk(self, chunk: List[str], groups, now: datetime) -> MergeCounts:
        counts = MergeCounts()
        existing = await self.store.existing_order_ids(chunk)
        known = await self.store.known_skus(
            row.get("sku") for order_id in chunk for row in groups[order_id]
        )

        for order_id in chunk:
            rows = groups[order_id]
            is_new = order_id not in existing
            order = Order.from_row(order_id, rows[0], now=now)

            items: List[OrderItem] = []
            skipped = 0
            for row in rows:
                try:
                    items.append(_item_from_row(order_id, row, known))
                except DataError as e:
                    logger.debug(f"Skipping row of {order_id}: {e}", extra={"field": e.field})
                    skipped += 1

            try:
                await self.store.save_order(order, _latest_per_sku(items), is_new=is_new)
            except Exception as e:
                logger.error(f"Failed to save order {order_id}: {e}", extra={"order_id": order_id})
                counts.errors += 1
                continue

            counts.orders += 1
            if is_new:
                counts.orders_created += 1
            else:
                counts.orders_updated += 1
            counts.items += len(items)
            counts.skipped += skipped

        return counts


def _item_from_row(order_id: str, row, known: Set[str]) -> OrderItem:
    sku = row.get("sku")
    if not sku:
        raise DataError("Row has no SKU", field="sku")
    if sku not in known:
        raise DataError("SKU not in product catalog", details=sku, field="sku")
    return OrderItem.from_row(order_id, sku, row)


def _latest_per_sku(items: List[OrderItem]) -> List[OrderItem]:
    """Collapse repeated SKUs within one order to the last row seen."""
    latest = {}
    for item in items:
        latest[item.sku] = item
    return list(latest.values())
