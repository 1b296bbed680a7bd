"""
local_db.py - SQLite Store for Offline POS Operation

This module holds everything the terminal needs to keep trading while
disconnected: locally placed orders with their sync state, the cached menu
snapshot, the durable operation outbox and an activity log.
"""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from .exceptions import OperationNotFoundError, OrderNotFoundError
from .models import (
    CachedMenuItem,
    CachedMenuSnapshot,
    LocalOrder,
    OfflineOperation,
    OperationStatus,
    OrderSyncStatus,
    parse_timestamp,
    utcnow,
    utcnow_iso,
)

logger = logging.getLogger("LocalDB")

_OPERATION_PATCH_FIELDS = {"status", "retry_count", "last_attempt", "error_message", "payload"}


class LocalDatabase:
    """SQLite store for orders, menu cache and queued operations."""

    def __init__(self, db_path: str):
        self.db_path = str(db_path)
        self._ensure_data_dir()
        self._init_db()

    def _ensure_data_dir(self):
        """Create the database directory if it doesn't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self):
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema if tables don't exist."""
        with self._connection() as conn:
            cursor = conn.cursor()

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS local_orders (
                    id TEXT PRIMARY KEY,
                    status TEXT NOT NULL DEFAULT 'PENDING_SYNC',
                    sync_attempts INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    last_sync_attempt TEXT
                )
            ''')
            cursor.execute(
                'CREATE INDEX IF NOT EXISTS idx_local_orders_status ON local_orders(status)'
            )

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS menu_items (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    price REAL NOT NULL DEFAULT 0,
                    category_id TEXT NOT NULL DEFAULT '',
                    image_url TEXT,
                    active INTEGER NOT NULL DEFAULT 1,
                    variants TEXT,
                    customizations TEXT,
                    allergens TEXT,
                    cached_at TEXT NOT NULL
                )
            ''')

            # One row; survives an empty menu so "no cache" stays distinguishable
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS menu_cache_meta (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    cached_at TEXT NOT NULL
                )
            ''')

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS sync_operations (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT UNIQUE NOT NULL,
                    type TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'PENDING',
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    timestamp TEXT NOT NULL,
                    last_attempt TEXT,
                    error_message TEXT
                )
            ''')
            cursor.execute(
                'CREATE INDEX IF NOT EXISTS idx_sync_operations_status ON sync_operations(status)'
            )

            cursor.execute('''
                CREATE TABLE IF NOT EXISTS activity_logs (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    status TEXT DEFAULT 'pending',
                    details TEXT,
                    created_at TEXT NOT NULL
                )
            ''')

        logger.info(f"SQLite database initialized at: {self.db_path}")

    # ==================== Orders ====================

    def save_order(self, order: LocalOrder):
        """Insert or replace a local order."""
        with self._connection() as conn:
            conn.execute('''
                INSERT OR REPLACE INTO local_orders
                (id, status, sync_attempts, error_message, payload,
                 created_at, updated_at, last_sync_attempt)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                order.id,
                order.status.value,
                order.sync_attempts,
                order.error_message,
                json.dumps(order.payload, default=str),
                order.created_at,
                order.updated_at,
                order.last_sync_attempt,
            ))

    def get_order(self, order_id: str) -> Optional[LocalOrder]:
        with self._connection() as conn:
            row = conn.execute(
                'SELECT * FROM local_orders WHERE id = ?', (order_id,)
            ).fetchone()
        return LocalOrder.from_row(row) if row else None

    def get_orders(self, status: Optional[OrderSyncStatus] = None) -> List[LocalOrder]:
        """Get orders, optionally filtered by sync status, oldest first."""
        with self._connection() as conn:
            if status is not None:
                rows = conn.execute(
                    'SELECT * FROM local_orders WHERE status = ? ORDER BY created_at ASC',
                    (OrderSyncStatus(status).value,),
                ).fetchall()
            else:
                rows = conn.execute(
                    'SELECT * FROM local_orders ORDER BY created_at ASC'
                ).fetchall()
        return [LocalOrder.from_row(row) for row in rows]

    def update_order_sync_status(
        self,
        order_id: str,
        status: OrderSyncStatus,
        error: Optional[str] = None,
    ) -> LocalOrder:
        """
        Record the outcome of a delivery attempt.

        An error increments ``sync_attempts``; reaching SYNCED clears the
        previous error.

        Raises:
            OrderNotFoundError: if the order is unknown
        """
        order = self.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Order not found: {order_id}")

        now = utcnow_iso()
        order.status = OrderSyncStatus(status)
        order.updated_at = now
        order.last_sync_attempt = now

        if error:
            order.error_message = error
            order.sync_attempts += 1
        elif order.status == OrderSyncStatus.SYNCED:
            order.error_message = None

        self.save_order(order)
        return order

    def reset_failed_orders(self) -> int:
        """Move every FAILED_SYNC order back to PENDING_SYNC with a fresh retry budget."""
        with self._connection() as conn:
            cursor = conn.execute('''
                UPDATE local_orders
                SET status = ?, sync_attempts = 0, error_message = NULL, updated_at = ?
                WHERE status = ?
            ''', (
                OrderSyncStatus.PENDING_SYNC.value,
                utcnow_iso(),
                OrderSyncStatus.FAILED_SYNC.value,
            ))
            count = cursor.rowcount
        logger.info(f"Reset {count} failed orders to PENDING_SYNC")
        return count

    def delete_order(self, order_id: str):
        with self._connection() as conn:
            conn.execute('DELETE FROM local_orders WHERE id = ?', (order_id,))

    # ==================== Menu Cache ====================

    def cache_menu_items(self, items: Iterable[CachedMenuItem], cached_at: Optional[str] = None):
        """Replace the cached menu wholesale."""
        items = list(items)
        cached_at = cached_at or utcnow_iso()

        with self._connection() as conn:
            conn.execute('DELETE FROM menu_items')
            conn.executemany('''
                INSERT INTO menu_items
                (id, name, description, price, category_id, image_url, active,
                 variants, customizations, allergens, cached_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ''', [
                (
                    item.id,
                    item.name,
                    item.description,
                    item.price,
                    item.category_id,
                    item.image_url,
                    1 if item.active else 0,
                    json.dumps(item.variants) if item.variants is not None else None,
                    json.dumps(item.customizations) if item.customizations is not None else None,
                    json.dumps(item.allergens) if item.allergens is not None else None,
                    item.cached_at,
                )
                for item in items
            ])
            conn.execute(
                'INSERT OR REPLACE INTO menu_cache_meta (id, cached_at) VALUES (1, ?)',
                (cached_at,),
            )

        logger.info(f"Cached {len(items)} menu items")

    def get_cached_menu_items(self) -> List[CachedMenuItem]:
        with self._connection() as conn:
            rows = conn.execute('SELECT * FROM menu_items ORDER BY rowid ASC').fetchall()
        return [CachedMenuItem.from_row(row) for row in rows]

    def get_menu_snapshot(self) -> Optional[CachedMenuSnapshot]:
        """Return the cached menu, or None if the menu was never cached."""
        with self._connection() as conn:
            meta = conn.execute('SELECT cached_at FROM menu_cache_meta WHERE id = 1').fetchone()
        if meta is None:
            return None
        return CachedMenuSnapshot(items=self.get_cached_menu_items(), cached_at=meta["cached_at"])

    def is_cache_valid(self, max_age_hours: int = 24) -> bool:
        snapshot = self.get_menu_snapshot()
        if snapshot is None or not snapshot.items:
            return False
        return snapshot.age_minutes() < max_age_hours * 60

    # ==================== Sync Operations ====================

    def add_sync_operation(self, operation: OfflineOperation) -> str:
        with self._connection() as conn:
            conn.execute('''
                INSERT INTO sync_operations
                (id, type, payload, status, retry_count, timestamp, last_attempt, error_message)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ''', (
                operation.id,
                operation.type.value,
                json.dumps(operation.payload, default=str),
                operation.status.value,
                operation.retry_count,
                operation.timestamp,
                operation.last_attempt,
                operation.error_message,
            ))
        return operation.id

    def get_sync_operation(self, operation_id: str) -> Optional[OfflineOperation]:
        with self._connection() as conn:
            row = conn.execute(
                'SELECT * FROM sync_operations WHERE id = ?', (operation_id,)
            ).fetchone()
        return OfflineOperation.from_row(row) if row else None

    def get_sync_operations(self, status: OperationStatus) -> List[OfflineOperation]:
        """Operations in the given status, in enqueue order."""
        with self._connection() as conn:
            rows = conn.execute(
                'SELECT * FROM sync_operations WHERE status = ? ORDER BY seq ASC',
                (OperationStatus(status).value,),
            ).fetchall()
        return [OfflineOperation.from_row(row) for row in rows]

    def get_pending_sync_operations(self) -> List[OfflineOperation]:
        return self.get_sync_operations(OperationStatus.PENDING)

    def claim_pending_operations(self) -> List[OfflineOperation]:
        """Mark every PENDING operation PROCESSING and return them, in one transaction."""
        now = utcnow_iso()
        with self._connection() as conn:
            rows = conn.execute(
                'SELECT * FROM sync_operations WHERE status = ? ORDER BY seq ASC',
                (OperationStatus.PENDING.value,),
            ).fetchall()
            conn.executemany(
                'UPDATE sync_operations SET status = ?, last_attempt = ? WHERE id = ?',
                [(OperationStatus.PROCESSING.value, now, row["id"]) for row in rows],
            )

        operations = [OfflineOperation.from_row(row) for row in rows]
        for operation in operations:
            operation.status = OperationStatus.PROCESSING
            operation.last_attempt = now
        return operations

    def update_sync_operation(self, operation_id: str, patch: Dict[str, Any]):
        """
        Apply a partial update to a queued operation.

        Raises:
            OperationNotFoundError: if the operation is unknown
        """
        unknown = set(patch) - _OPERATION_PATCH_FIELDS
        if unknown:
            raise ValueError(f"Unsupported operation fields: {sorted(unknown)}")

        values = {}
        for key, value in patch.items():
            if key == "status":
                value = OperationStatus(value).value
            elif key == "payload":
                value = json.dumps(value, default=str)
            values[key] = value

        assignments = ", ".join(f"{key} = ?" for key in values)
        with self._connection() as conn:
            cursor = conn.execute(
                f'UPDATE sync_operations SET {assignments} WHERE id = ?',
                list(values.values()) + [operation_id],
            )
            if cursor.rowcount == 0:
                raise OperationNotFoundError(f"Sync operation not found: {operation_id}")

    def reset_processing_operations(self) -> int:
        """Return operations stranded in PROCESSING by a crash to PENDING."""
        with self._connection() as conn:
            cursor = conn.execute(
                'UPDATE sync_operations SET status = ? WHERE status = ?',
                (OperationStatus.PENDING.value, OperationStatus.PROCESSING.value),
            )
            return cursor.rowcount

    def count_sync_operations(self, *statuses: OperationStatus) -> int:
        if not statuses:
            return 0
        placeholders = ','.join('?' * len(statuses))
        with self._connection() as conn:
            row = conn.execute(
                f'SELECT COUNT(*) FROM sync_operations WHERE status IN ({placeholders})',
                [OperationStatus(s).value for s in statuses],
            ).fetchone()
        return row[0]

    def delete_sync_operations(self, status: OperationStatus) -> int:
        with self._connection() as conn:
            cursor = conn.execute(
                'DELETE FROM sync_operations WHERE status = ?',
                (OperationStatus(status).value,),
            )
            return cursor.rowcount

    # ==================== Maintenance ====================

    def cleanup_old_data(self, days_to_keep: int = 30) -> Dict[str, int]:
        """Delete synced orders and completed operations older than the cutoff."""
        cutoff = utcnow() - timedelta(days=days_to_keep)

        old_orders = [
            order.id for order in self.get_orders(OrderSyncStatus.SYNCED)
            if parse_timestamp(order.created_at) < cutoff
        ]
        old_operations = [
            op.id for op in self.get_sync_operations(OperationStatus.COMPLETED)
            if parse_timestamp(op.timestamp) < cutoff
        ]

        with self._connection() as conn:
            conn.executemany('DELETE FROM local_orders WHERE id = ?', [(i,) for i in old_orders])
            conn.executemany('DELETE FROM sync_operations WHERE id = ?', [(i,) for i in old_operations])

        logger.info(
            f"Cleanup removed {len(old_orders)} orders and {len(old_operations)} operations"
        )
        return {"orders": len(old_orders), "operations": len(old_operations)}

    def get_storage_stats(self) -> Dict[str, Any]:
        orders = self.get_orders()
        snapshot = self.get_menu_snapshot()

        stats = {
            "total_orders": len(orders),
            "pending_orders": sum(1 for o in orders if o.status == OrderSyncStatus.PENDING_SYNC),
            "synced_orders": sum(1 for o in orders if o.status == OrderSyncStatus.SYNCED),
            "failed_orders": sum(1 for o in orders if o.status == OrderSyncStatus.FAILED_SYNC),
            "cached_menu_items": len(snapshot.items) if snapshot else 0,
            "pending_sync_ops": self.count_sync_operations(OperationStatus.PENDING),
            "failed_sync_ops": self.count_sync_operations(OperationStatus.FAILED),
            "cache_age": None,
        }
        if snapshot is not None:
            stats["cache_age"] = f"{round(snapshot.age_minutes() / 60)} hours ago"
        return stats

    # ==================== Activity Logging ====================

    def log_activity(self, event_type: str, status: str = 'pending', details: str = None):
        """Log a sync activity event."""
        with self._connection() as conn:
            conn.execute('''
                INSERT INTO activity_logs (event_type, status, details, created_at)
                VALUES (?, ?, ?, ?)
            ''', (event_type, status, details, utcnow_iso()))

    def get_recent_logs(self, limit: int = 50) -> List[Dict]:
        """Get recent activity logs."""
        with self._connection() as conn:
            rows = conn.execute('''
                SELECT * FROM activity_logs
                ORDER BY id DESC
                LIMIT ?
            ''', (limit,)).fetchall()
        return [dict(row) for row in rows]
