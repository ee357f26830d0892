"""
DuckDB store for synced marketplace orders.

Persists the order aggregates the historical sync merges into, the product
catalog used to accept or skip item rows, the sync log and stored API
connections.

All access goes through one connection serialized by an asyncio.Lock;
blocking DuckDB calls are offloaded with asyncio.to_thread so the event
loop (and the progress stream) keeps running during large merges.
Timestamps are stored as naive UTC.
"""
import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

import duckdb

from amzsync.config import config
from amzsync.exceptions import QueryTimeoutError
from amzsync.models import Order, OrderItem, OrderStatus, SyncLog, SyncLogStatus
from amzsync.observability import get_logger

logger = get_logger(__name__)


def _to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS orders (
    id VARCHAR PRIMARY KEY,
    purchase_date TIMESTAMP NOT NULL,
    ship_date TIMESTAMP,
    status VARCHAR NOT NULL,
    order_total DECIMAL(12, 2) DEFAULT 0,
    currency VARCHAR DEFAULT 'USD',
    fulfillment_channel VARCHAR DEFAULT 'FBA',
    sales_channel VARCHAR DEFAULT 'Amazon.com',
    ship_city VARCHAR,
    ship_state VARCHAR,
    ship_postal_code VARCHAR,
    ship_country VARCHAR,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_orders_purchase_date ON orders(purchase_date);

CREATE TABLE IF NOT EXISTS order_items (
    order_id VARCHAR NOT NULL,
    sku VARCHAR NOT NULL,
    asin VARCHAR,
    quantity INTEGER DEFAULT 1,
    item_price DECIMAL(12, 2) DEFAULT 0,
    item_tax DECIMAL(12, 2) DEFAULT 0,
    shipping_price DECIMAL(12, 2) DEFAULT 0,
    shipping_tax DECIMAL(12, 2) DEFAULT 0,
    gift_wrap_price DECIMAL(12, 2) DEFAULT 0,
    gift_wrap_tax DECIMAL(12, 2) DEFAULT 0,
    promo_discount DECIMAL(12, 2) DEFAULT 0,
    ship_promo_discount DECIMAL(12, 2) DEFAULT 0,
    gross_revenue DECIMAL(12, 2) DEFAULT 0,
    PRIMARY KEY (order_id, sku)
);

CREATE TABLE IF NOT EXISTS products (
    sku VARCHAR PRIMARY KEY,
    asin VARCHAR,
    name VARCHAR,
    synced_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);

CREATE SEQUENCE IF NOT EXISTS sync_logs_id_seq;

CREATE TABLE IF NOT EXISTS sync_logs (
    id BIGINT PRIMARY KEY DEFAULT nextval('sync_logs_id_seq'),
    sync_type VARCHAR NOT NULL,
    status VARCHAR NOT NULL,
    started_at TIMESTAMP NOT NULL,
    completed_at TIMESTAMP,
    records_processed INTEGER DEFAULT 0,
    records_created INTEGER DEFAULT 0,
    records_updated INTEGER DEFAULT 0,
    error VARCHAR
);

CREATE TABLE IF NOT EXISTS api_connections (
    platform VARCHAR PRIMARY KEY,
    credentials VARCHAR,
    is_connected BOOLEAN DEFAULT FALSE,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""

_SYNC_LOG_COLUMNS = (
    "id", "sync_type", "status", "started_at", "completed_at",
    "records_processed", "records_created", "records_updated", "error",
)


class DuckDBStore:
    """
    Async-compatible DuckDB store.

    Usage:
        store = DuckDBStore(tmp_path / "test.duckdb")
        await store.connect()
        try:
            known = await store.known_skus(["SKU-1", "SKU-2"])
        finally:
            await store.close()
    """

    def __init__(self, db_path: Path = None, query_timeout: float = None):
        self.db_path = Path(db_path or config.store.db_path)
        self.query_timeout = query_timeout or config.store.query_timeout
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()  # DuckDB connections are not thread-safe

    async def connect(self) -> None:
        """Open the database file and create the schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            if self._connection is None:
                self._connection = await asyncio.to_thread(duckdb.connect, str(self.db_path))
                await asyncio.to_thread(self._connection.execute, SCHEMA_SQL)
                logger.info(f"DuckDB connected: {self.db_path}")

    async def close(self) -> None:
        async with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @asynccontextmanager
    async def connection(self):
        """Serialized access to the underlying connection."""
        if self._connection is None:
            await self.connect()
        async with self._lock:
            yield self._connection

    # ─── Query Execution with Timeout ────────────────────────────────────────

    async def _run(self, func: Callable[[duckdb.DuckDBPyConnection], Any], label: str) -> Any:
        """
        Run ``func(conn)`` on a worker thread while holding the lock.

        Raises:
            QueryTimeoutError: If the call exceeds the query timeout
        """
        async with self.connection() as conn:
            try:
                return await asyncio.wait_for(asyncio.to_thread(func, conn), timeout=self.query_timeout)
            except asyncio.TimeoutError:
                raise QueryTimeoutError(label, self.query_timeout)

    async def _execute(self, query: str, params: list = None) -> None:
        await self._run(lambda conn: conn.execute(query, params or []), query)

    async def _fetch_one(self, query: str, params: list = None) -> Optional[tuple]:
        return await self._run(lambda conn: conn.execute(query, params or []).fetchone(), query)

    async def _fetch_all(self, query: str, params: list = None) -> List[tuple]:
        return await self._run(lambda conn: conn.execute(query, params or []).fetchall(), query)

    # ═══════════════════════════════════════════════════════════════════════════
    # ORDERS
    # ═══════════════════════════════════════════════════════════════════════════

    async def existing_order_ids(self, order_ids: Iterable[str]) -> Set[str]:
        """Which of ``order_ids`` are already stored (one query)."""
        ids = list(dict.fromkeys(order_ids))
        if not ids:
            return set()
        placeholders = ", ".join("?" for _ in ids)
        rows = await self._fetch_all(f"SELECT id FROM orders WHERE id IN ({placeholders})", ids)
        return {row[0] for row in rows}

    async def known_skus(self, skus: Iterable[str]) -> Set[str]:
        """Which of ``skus`` exist in the product catalog (one query)."""
        unique = list(dict.fromkeys(s for s in skus if s))
        if not unique:
            return set()
        placeholders = ", ".join("?" for _ in unique)
        rows = await self._fetch_all(f"SELECT sku FROM products WHERE sku IN ({placeholders})", unique)
        return {row[0] for row in rows}

    async def save_order(self, order: Order, items: List[OrderItem], is_new: bool) -> None:
        """
        Write one order and its items in a single transaction.

        New orders are inserted in full. Existing orders only get ``status``
        and, when present, ``ship_date``. Items upsert on (order_id, sku)
        and overwrite amounts from the latest row.
        """

        def _write(conn: duckdb.DuckDBPyConnection) -> None:
            conn.execute("BEGIN TRANSACTION")
            try:
                if is_new:
                    conn.execute("""
                        INSERT INTO orders (
                            id, purchase_date, ship_date, status, order_total, currency,
                            fulfillment_channel, sales_channel, ship_city, ship_state,
                            ship_postal_code, ship_country
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """, [
                        order.id,
                        _to_db_time(order.purchase_date),
                        _to_db_time(order.ship_date),
                        order.status.value,
                        order.order_total,
                        order.currency,
                        order.fulfillment_channel,
                        order.sales_channel,
                        order.ship_city,
                        order.ship_state,
                        order.ship_postal_code,
                        order.ship_country,
                    ])
                elif order.ship_date is not None:
                    conn.execute("""
                        UPDATE orders
                        SET ship_date = ?, status = ?, updated_at = CURRENT_TIMESTAMP
                        WHERE id = ?
                    """, [_to_db_time(order.ship_date), order.status.value, order.id])
                else:
                    conn.execute("""
                        UPDATE orders SET status = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?
                    """, [order.status.value, order.id])

                for item in items:
                    conn.execute("""
                        INSERT INTO order_items (
                            order_id, sku, asin, quantity, item_price, item_tax,
                            shipping_price, shipping_tax, gift_wrap_price, gift_wrap_tax,
                            promo_discount, ship_promo_discount, gross_revenue
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        ON CONFLICT (order_id, sku) DO UPDATE SET
                            quantity = EXCLUDED.quantity,
                            item_price = EXCLUDED.item_price,
                            gross_revenue = EXCLUDED.gross_revenue
                    """, [
                        item.order_id,
                        item.sku,
                        item.asin,
                        item.quantity,
                        item.item_price,
                        item.item_tax,
                        item.shipping_price,
                        item.shipping_tax,
                        item.gift_wrap_price,
                        item.gift_wrap_tax,
                        item.promo_discount,
                        item.ship_promo_discount,
                        item.gross_revenue,
                    ])

                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

        await self._run(_write, f"save_order {order.id}")

    async def get_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        row = await self._fetch_one("""
            SELECT id, purchase_date, ship_date, status, order_total, currency,
                   fulfillment_channel, sales_channel, ship_city, ship_state,
                   ship_postal_code, ship_country
            FROM orders WHERE id = ?
        """, [order_id])
        if not row:
            return None
        return {
            "id": row[0],
            "purchase_date": _from_db_time(row[1]),
            "ship_date": _from_db_time(row[2]),
            "status": OrderStatus(row[3]),
            "order_total": float(row[4] or 0),
            "currency": row[5],
            "fulfillment_channel": row[6],
            "sales_channel": row[7],
            "ship_city": row[8],
            "ship_state": row[9],
            "ship_postal_code": row[10],
            "ship_country": row[11],
        }

    async def get_order_items(self, order_id: str) -> List[Dict[str, Any]]:
        rows = await self._fetch_all("""
            SELECT sku, asin, quantity, item_price, gross_revenue, promo_discount, ship_promo_discount
            FROM order_items WHERE order_id = ? ORDER BY sku
        """, [order_id])
        return [
            {
                "order_id": order_id,
                "sku": r[0],
                "asin": r[1],
                "quantity": r[2],
                "item_price": float(r[3] or 0),
                "gross_revenue": float(r[4] or 0),
                "promo_discount": float(r[5] or 0),
                "ship_promo_discount": float(r[6] or 0),
            }
            for r in rows
        ]

    async def count_orders(self) -> int:
        row = await self._fetch_one("SELECT COUNT(*) FROM orders")
        return row[0]

    async def count_order_items(self) -> int:
        row = await self._fetch_one("SELECT COUNT(*) FROM order_items")
        return row[0]

    # ═══════════════════════════════════════════════════════════════════════════
    # PRODUCTS
    # ═══════════════════════════════════════════════════════════════════════════

    async def upsert_products(self, products: List[Dict[str, Any]]) -> int:
        """Insert or update catalog products (``sku`` required)."""
        rows = [p for p in products if p.get("sku")]
        if not rows:
            return 0

        def _write(conn: duckdb.DuckDBPyConnection) -> int:
            conn.execute("BEGIN TRANSACTION")
            try:
                for prod in rows:
                    conn.execute("""
                        INSERT INTO products (sku, asin, name, synced_at)
                        VALUES (?, ?, ?, CURRENT_TIMESTAMP)
                        ON CONFLICT (sku) DO UPDATE SET
                            asin = EXCLUDED.asin,
                            name = EXCLUDED.name,
                            synced_at = EXCLUDED.synced_at
                    """, [prod["sku"], prod.get("asin"), prod.get("name")])
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise
            return len(rows)

        count = await self._run(_write, "upsert_products")
        logger.info(f"Upserted {count} products to DuckDB")
        return count

    # ═══════════════════════════════════════════════════════════════════════════
    # SYNC LOGS
    # ═══════════════════════════════════════════════════════════════════════════

    async def create_sync_log(self, sync_type: str, started_at: datetime = None) -> int:
        """Open a ``running`` log row and return its id."""
        started_at = started_at or datetime.now(timezone.utc)
        row = await self._fetch_one("""
            INSERT INTO sync_logs (sync_type, status, started_at)
            VALUES (?, ?, ?)
            RETURNING id
        """, [sync_type, SyncLogStatus.RUNNING.value, _to_db_time(started_at)])
        return row[0]

    async def finish_sync_log(
        self,
        log_id: int,
        status: SyncLogStatus,
        records_processed: int = 0,
        records_created: int = 0,
        records_updated: int = 0,
        error: Optional[str] = None,
    ) -> None:
        """Close a log row. Rows already marked ``cancelled`` stay cancelled."""
        await self._execute("""
            UPDATE sync_logs
            SET status = ?, completed_at = ?, records_processed = ?,
                records_created = ?, records_updated = ?, error = ?
            WHERE id = ? AND status != ?
        """, [
            status.value,
            _to_db_time(datetime.now(timezone.utc)),
            records_processed,
            records_created,
            records_updated,
            error,
            log_id,
            SyncLogStatus.CANCELLED.value,
        ])

    async def cancel_running_sync_logs(self, reason: str = "Stopped by user") -> int:
        """
        Mark every ``running`` log row as ``cancelled``.

        Returns:
            Number of rows cancelled
        """
        rows = await self._fetch_all("""
            UPDATE sync_logs
            SET status = ?, completed_at = ?, error = ?
            WHERE status = ?
            RETURNING id
        """, [
            SyncLogStatus.CANCELLED.value,
            _to_db_time(datetime.now(timezone.utc)),
            reason,
            SyncLogStatus.RUNNING.value,
        ])
        if rows:
            logger.info(f"Cancelled {len(rows)} running sync logs")
        return len(rows)

    async def list_sync_logs(self, limit: int = 50, sync_type_prefix: str = None) -> List[SyncLog]:
        """Most recent sync log rows first."""
        query = f"SELECT {', '.join(_SYNC_LOG_COLUMNS)} FROM sync_logs"
        params: list = []
        if sync_type_prefix:
            query += " WHERE sync_type LIKE ?"
            params.append(f"{sync_type_prefix}%")
        query += " ORDER BY id DESC LIMIT ?"
        params.append(limit)

        rows = await self._fetch_all(query, params)
        logs = []
        for row in rows:
            log = dict(zip(_SYNC_LOG_COLUMNS, row))
            log["started_at"] = _from_db_time(log["started_at"])
            log["completed_at"] = _from_db_time(log["completed_at"])
            logs.append(SyncLog.from_row(log))
        return logs

    # ═══════════════════════════════════════════════════════════════════════════
    # API CONNECTIONS
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_api_connection(self, platform: str) -> Optional[Dict[str, Any]]:
        row = await self._fetch_one(
            "SELECT platform, credentials, is_connected FROM api_connections WHERE platform = ?",
            [platform],
        )
        if not row:
            return None
        return {"platform": row[0], "credentials": row[1], "is_connected": bool(row[2])}

    async def set_api_connection(
        self, platform: str, credentials: Dict[str, Any], is_connected: bool = True
    ) -> None:
        await self._execute("""
            INSERT INTO api_connections (platform, credentials, is_connected, updated_at)
            VALUES (?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT (platform) DO UPDATE SET
                credentials = EXCLUDED.credentials,
                is_connected = EXCLUDED.is_connected,
                updated_at = EXCLUDED.updated_at
        """, [platform, json.dumps(credentials), is_connected])

    async def get_stats(self) -> Dict[str, Any]:
        orders = await self.count_orders()
        items = await self.count_order_items()
        products = await self._fetch_one("SELECT COUNT(*) FROM products")
        return {
            "orders": orders,
            "order_items": items,
            "products": products[0],
            "db_size_mb": round(self.db_path.stat().st_size / 1024 / 1024, 2) if self.db_path.exists() else 0,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_store_instance: Optional[DuckDBStore] = None
_store_lock = asyncio.Lock()


async def get_store() -> DuckDBStore:
    """Get singleton DuckDB store instance (coroutine-safe)."""
    global _store_instance
    async with _store_lock:
        if _store_instance is None:
            _store_instance = DuckDBStore()
            await _store_instance.connect()
    return _store_instance


async def close_store() -> None:
    global _store_instance
    if _store_instance:
        await _store_instance.close()
        _store_instance = None
