"""
sync_manager.py - Store-and-Forward Sync Manager

This module reconciles the terminal's local state with the server once
connectivity returns: it pushes locally recorded orders, refreshes the menu
cache and drains the operation outbox.

Cycles are single-flight. A full cycle also refreshes the menu; the cheaper
incremental cycle runs on a timer while online. Per-item failures are kept
for a later cycle; only an exception escaping a cycle's own control flow
aborts it, and completed steps are never rolled back.
"""

import asyncio
import dataclasses
import logging
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from ..config import SyncConfig
from .api_client import PosApiClient
from .conflict_resolver import ConflictResolver, ResolverFn, merge_payloads
from .exceptions import SyncError
from .local_db import LocalDatabase
from .models import (
    CachedMenuItem,
    ConflictStrategy,
    LocalOrder,
    OfflineOperation,
    OperationType,
    OrderSyncStatus,
    SyncState,
    SyncStatus,
    utcnow,
    utcnow_iso,
)
from .network_monitor import NetworkMonitor
from .outbox import OperationOutbox

logger = logging.getLogger("SyncManager")

StatusListener = Callable[[SyncStatus], None]


def extract_menu_items(menu: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Pull the item list out of a menu graph (``data.items`` or ``items``)."""
    data = menu.get("data")
    if isinstance(data, dict) and isinstance(data.get("items"), list):
        return data["items"]
    if isinstance(menu.get("items"), list):
        return menu["items"]
    return []


class SyncManager:
    """
    Owns the sync state machine: IDLE -> SYNCING -> IDLE, or -> ERROR when a
    cycle aborts. A cycle may start from IDLE or ERROR; calls made while
    SYNCING return immediately.
    """

    def __init__(
        self,
        db: LocalDatabase,
        api: PosApiClient,
        monitor: NetworkMonitor,
        config: Optional[SyncConfig] = None,
        resolver: Optional[ConflictResolver] = None,
        outbox: Optional[OperationOutbox] = None,
    ):
        self.config = config or SyncConfig()
        self.db = db
        self.api = api
        self.monitor = monitor
        self.resolver = resolver or ConflictResolver()
        self.outbox = outbox or OperationOutbox(
            db,
            monitor.is_online,
            max_retries=self.config.max_retries,
            operation_delay=self.config.operation_delay,
        )
        self.outbox.on_change = self.refresh_pending_counts

        self.outbox.register_executor(OperationType.CREATE_ORDER, self._execute_create_order)
        self.outbox.register_executor(OperationType.UPDATE_ORDER, self._execute_update_order)
        self.outbox.register_executor(OperationType.UPDATE_ORDER_STATUS, self._execute_update_order_status)
        self.outbox.register_executor(OperationType.CREATE_PAYMENT, self._execute_create_payment)
        self.outbox.register_executor(OperationType.UPDATE_MENU, self._execute_update_menu)

        self.state = SyncState.IDLE
        self._status = SyncStatus(is_online=monitor.is_online())
        self._listeners: List[StatusListener] = []
        self._periodic_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._in_flight: Set[str] = set()
        self._unsubscribers: List[Callable[[], None]] = []
        self._started = False

    # ==================== Lifecycle ====================

    def start(self):
        """Wire network listeners and begin periodic sync if online."""
        if self._started:
            return

        self.outbox.recover_in_flight()
        self._unsubscribers = [
            self.monitor.on_reconnect(self._handle_online),
            self.monitor.on_disconnect(self._handle_offline),
        ]
        self._update_sync_status(is_online=self.monitor.is_online())
        self.refresh_pending_counts()

        if self.monitor.is_online():
            self.start_periodic_sync()

        self._started = True
        logger.info("SyncManager started")

    def stop(self):
        self.stop_periodic_sync()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self._started = False
        logger.info("SyncManager stopped")

    @property
    def is_syncing(self) -> bool:
        return self.state == SyncState.SYNCING

    # ==================== Status ====================

    def get_sync_status(self) -> SyncStatus:
        return dataclasses.replace(self._status)

    def on_sync_status_change(self, listener: StatusListener) -> Callable[[], None]:
        """Subscribe to status changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update_sync_status(self, **updates):
        self._status = dataclasses.replace(self._status, **updates)
        snapshot = self.get_sync_status()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Status listener error: {e}")

    def count_operations(self) -> Tuple[int, int]:
        """
        Count queued work from the store.

        Returns:
            (pending, failed): pending is queued operations plus PENDING_SYNC
            and retryable FAILED_SYNC orders; failed is every FAILED_SYNC
            order plus exhausted operations
        """
        pending_orders = self.db.get_orders(OrderSyncStatus.PENDING_SYNC)
        failed_orders = self.db.get_orders(OrderSyncStatus.FAILED_SYNC)
        retryable = [o for o in failed_orders if o.is_retryable(self.config.max_retries)]

        pending = self.outbox.pending_count() + len(pending_orders) + len(retryable)
        failed = len(failed_orders) + self.outbox.failed_count()
        return pending, failed

    def refresh_pending_counts(self):
        """Recompute pending/failed counters from the store."""
        try:
            pending, failed = self.count_operations()
            self._update_sync_status(pending_operations=pending, failed_operations=failed)
        except Exception as e:
            logger.error(f"Failed to refresh pending counts: {e}")

    # ==================== Network Transitions ====================

    def _handle_online(self):
        logger.info("Connection restored - starting sync")
        self._update_sync_status(is_online=True, sync_error=None)
        self.start_periodic_sync()
        self._spawn(self.perform_full_sync())

    def _handle_offline(self):
        logger.info("Connection lost - entering offline mode")
        self._update_sync_status(is_online=False)
        self.stop_periodic_sync()

    def _spawn(self, coro):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.warning("No running event loop; sync deferred")
            return None

        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ==================== Periodic Sync ====================

    def start_periodic_sync(self):
        if self._periodic_task is not None and not self._periodic_task.done():
            return
        self._periodic_task = self._spawn(self._periodic_loop())

    def stop_periodic_sync(self):
        if self._periodic_task is not None:
            self._periodic_task.cancel()
            self._periodic_task = None

    async def _periodic_loop(self):
        interval = self.config.periodic_interval
        while True:
            await asyncio.sleep(interval)
            if not self.monitor.is_online() or self.is_syncing:
                continue
            # Separate task so stopping the timer never cancels an in-flight cycle
            self._spawn(self.perform_incremental_sync())

    # ==================== Sync Cycles ====================

    async def perform_full_sync(self) -> Dict[str, Any]:
        """Push orders, refresh the menu, drain the outbox, recount."""
        return await self._run_cycle("full", include_menu=True)

    async def perform_incremental_sync(self) -> Dict[str, Any]:
        """Drain the outbox and push orders, without the menu refresh."""
        return await self._run_cycle("incremental", include_menu=False)

    async def force_sync(self) -> Dict[str, Any]:
        return await self.perform_full_sync()

    async def _run_cycle(self, kind: str, include_menu: bool) -> Dict[str, Any]:
        if self.is_syncing:
            logger.debug(f"{kind} sync requested while syncing, skipping")
            return {"status": "skipped", "reason": "sync_in_progress"}
        if not self.monitor.is_online():
            logger.debug(f"{kind} sync requested while offline, skipping")
            return {"status": "skipped", "reason": "offline"}

        # Must be set before the first await
        self.state = SyncState.SYNCING
        self._update_sync_status(
            is_currently_syncing=True,
            last_sync_attempt=utcnow(),
            state=SyncState.SYNCING,
        )

        try:
            logger.info(f"Starting {kind} sync...")
            self.db.log_activity('sync_start', 'pending', f"{kind} sync")

            if include_menu:
                orders = await self._sync_local_orders_to_server()
                menu_items = await self._refresh_menu_cache()
                operations = await self.outbox.drain_once()
            else:
                operations = await self.outbox.drain_once()
                orders = await self._sync_local_orders_to_server()
                menu_items = None

            self.refresh_pending_counts()

            self.state = SyncState.IDLE
            self._update_sync_status(
                last_successful_sync=utcnow(),
                is_currently_syncing=False,
                sync_error=None,
                state=SyncState.IDLE,
            )
            self.db.log_activity(
                'sync_complete',
                'completed',
                f"{kind} sync: {orders['synced']}/{orders['attempted']} orders synced, "
                f"{orders['deferred']} deferred",
            )
            logger.info(f"{kind.capitalize()} sync complete: {orders}")

            result = {"status": "success", "orders": orders, "operations": operations}
            if menu_items is not None:
                result["menu_items"] = menu_items
            return result

        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"{kind.capitalize()} sync failed: {error}")
            self.state = SyncState.ERROR
            self._update_sync_status(
                is_currently_syncing=False,
                sync_error=error,
                state=SyncState.ERROR,
            )
            try:
                self.db.log_activity('sync_error', 'failed', error)
            except Exception as log_error:
                logger.error(f"Failed to record sync error: {log_error}")
            return {"status": "error", "reason": error}

        finally:
            if self.state == SyncState.SYNCING:
                self.state = SyncState.IDLE
            if self._status.is_currently_syncing:
                self._update_sync_status(is_currently_syncing=False, state=self.state)

    # ==================== Order Synchronization ====================

    async def _sync_local_orders_to_server(self) -> Dict[str, int]:
        pending = self.db.get_orders(OrderSyncStatus.PENDING_SYNC)
        failed = self.db.get_orders(OrderSyncStatus.FAILED_SYNC)
        candidates = pending + [o for o in failed if o.is_retryable(self.config.max_retries)]

        result = {"attempted": 0, "synced": 0, "failed": 0, "deferred": 0}
        for index, order in enumerate(candidates):
            if index:
                # Backpressure between pushes, not a rate limiter
                await asyncio.sleep(self.config.inter_item_delay)

            # A direct push may have delivered it since the snapshot
            current = self.db.get_order(order.id)
            if current is None or current.status == OrderSyncStatus.SYNCED:
                continue

            outcome = await self._push_order(current)
            if outcome != "deferred":
                result["attempted"] += 1
            result[outcome] += 1

        return result

    async def sync_order_to_server(self, order: LocalOrder) -> bool:
        """
        Deliver one order, recording the outcome locally.

        While offline the order is stored as PENDING_SYNC for a later cycle.
        An order whose delivery is already in flight is not pushed again.

        Returns:
            True if the server acknowledged the order
        """
        return await self._push_order(order) == "synced"

    async def _push_order(self, order: LocalOrder) -> str:
        """Returns "synced", "failed" or "deferred" (left PENDING_SYNC)."""
        try:
            if self.db.get_order(order.id) is None:
                order.status = OrderSyncStatus.PENDING_SYNC
                self.db.save_order(order)

            if not self.monitor.is_online():
                logger.info(f"Offline - order {order.id} stored for later sync")
                self.refresh_pending_counts()
                return "deferred"
        except Exception as e:
            logger.error(f"Failed to store order {order.id}: {e}")
            return "failed"

        if order.id in self._in_flight:
            logger.debug(f"Order {order.id} already being delivered, skipping")
            return "deferred"

        self._in_flight.add(order.id)
        try:
            try:
                synced, error = await self._deliver_order(order)
            except Exception as e:
                synced, error = False, str(e) or type(e).__name__

            try:
                if synced:
                    self._mark_synced(order)
                else:
                    logger.error(f"Failed to sync order {order.id}: {error}")
                    self.db.update_order_sync_status(order.id, OrderSyncStatus.FAILED_SYNC, error)
            except Exception as e:
                logger.error(f"Failed to record sync result for order {order.id}: {e}")
        finally:
            self._in_flight.discard(order.id)

        return "synced" if synced else "failed"

    def queue_order(self, payload: Dict[str, Any]) -> LocalOrder:
        """
        Record a newly placed order as PENDING_SYNC and, when online, push it
        in the background. Re-queueing a known order id leaves its row alone.
        """
        order = LocalOrder.from_payload(payload)
        if self.db.get_order(order.id) is None:
            self.db.save_order(order)
            logger.info(f"Order {order.id} recorded for sync")
        self.refresh_pending_counts()

        if self.monitor.is_online():
            self._spawn(self.sync_order_to_server(order))
        return order

    async def _deliver_order(self, order: LocalOrder) -> Tuple[bool, Optional[str]]:
        response = await self.api.post_order(order.payload)
        if response.get("ok"):
            return True, None

        status = response.get("status")
        data = response.get("data")
        if status == 409 and isinstance(data, dict):
            server_data = data.get("order") if isinstance(data.get("order"), dict) else data
            return await self._handle_conflict(order, server_data)

        return False, f"Server responded with status {status}"

    async def _handle_conflict(self, order: LocalOrder, server_data: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
        """Route a divergent server copy through the resolver and enact its decision."""
        resolution = self.resolver.resolve(order.payload, server_data)
        logger.info(f"Conflict on order {order.id}: {resolution.strategy.value} ({resolution.reason})")
        self.db.log_activity('conflict', resolution.strategy.value, f"{order.id}: {resolution.reason}")

        if resolution.strategy == ConflictStrategy.SERVER_WINS:
            order.payload = {**server_data, "id": order.id}
            return True, None

        if resolution.strategy == ConflictStrategy.MANUAL:
            return False, f"Conflict requires manual resolution: {resolution.reason}"

        if resolution.strategy == ConflictStrategy.MERGE:
            payload = {**merge_payloads(order.payload, server_data), "id": order.id}
        else:
            payload = dict(order.payload)

        response = await self.api.update_order(payload)
        if not response.get("ok"):
            return False, (
                f"Conflict {resolution.strategy.value} update rejected with status {response.get('status')}"
            )

        order.payload = payload
        return True, None

    def _mark_synced(self, order: LocalOrder):
        stored = self.db.get_order(order.id) or order
        now = utcnow_iso()
        stored.payload = order.payload
        stored.status = OrderSyncStatus.SYNCED
        stored.error_message = None
        stored.updated_at = now
        stored.last_sync_attempt = now
        self.db.save_order(stored)

    # ==================== Menu Cache ====================

    async def _refresh_menu_cache(self) -> int:
        menu = await self.api.get_menu()
        cached_at = utcnow_iso()
        items = [
            CachedMenuItem.from_remote(item, cached_at)
            for item in extract_menu_items(menu)
            if isinstance(item, dict) and item.get("id") is not None
        ]
        self.db.cache_menu_items(items, cached_at)
        return len(items)

    async def refresh_menu_cache(self) -> bool:
        """Refresh the cached menu outside a cycle; errors are logged, not raised."""
        if not self.monitor.is_online():
            return False
        try:
            await self._refresh_menu_cache()
            return True
        except Exception as e:
            logger.error(f"Failed to refresh menu cache: {e}")
            return False

    # ==================== Outbox ====================

    def enqueue_operation(self, operation_type: OperationType, payload: Dict[str, Any]) -> str:
        """
        Queue a mutation and return its id.

        New orders go straight into the order lifecycle as PENDING_SYNC rows;
        every other type goes through the outbox.

        Raises:
            ValueError: if ``operation_type`` is not a known operation type
        """
        operation_type = OperationType(operation_type)
        if operation_type == OperationType.CREATE_ORDER:
            return self.queue_order(payload).id
        return self.outbox.enqueue(operation_type, payload).id

    async def _execute_create_order(self, operation: OfflineOperation) -> bool:
        # Hand a queued create over to the order lifecycle; the order row
        # carries retries and failure from here on
        order = LocalOrder.from_payload({"id": operation.id, **operation.payload})
        if self.db.get_order(order.id) is None:
            self.db.save_order(order)
        await self._push_order(order)
        return True

    async def _execute_update_order(self, operation: OfflineOperation) -> bool:
        return self._expect_ok(await self.api.update_order(operation.payload))

    async def _execute_update_order_status(self, operation: OfflineOperation) -> bool:
        return self._expect_ok(await self.api.update_order_status(operation.payload))

    async def _execute_create_payment(self, operation: OfflineOperation) -> bool:
        return self._expect_ok(await self.api.create_payment(operation.payload))

    async def _execute_update_menu(self, operation: OfflineOperation) -> bool:
        await self._refresh_menu_cache()
        return True

    @staticmethod
    def _expect_ok(response: Dict[str, Any]) -> bool:
        if not response.get("ok"):
            raise SyncError(f"Server responded with status {response.get('status')}")
        return True

    # ==================== Recovery & Maintenance ====================

    def clear_failed_operations(self) -> int:
        """Move every FAILED_SYNC order back to PENDING_SYNC."""
        try:
            count = self.db.reset_failed_orders()
        except Exception as e:
            logger.error(f"Failed to clear failed operations: {e}")
            return 0
        self.refresh_pending_counts()
        return count

    def set_conflict_resolver(self, resolver: Optional[ResolverFn]):
        self.resolver.set_resolver(resolver)

    def get_storage_stats(self) -> Dict[str, Any]:
        try:
            return self.db.get_storage_stats()
        except Exception as e:
            logger.error(f"Failed to read storage stats: {e}")
            return {}

    def cleanup_old_data(self, days_to_keep: Optional[int] = None) -> Dict[str, int]:
        try:
            return self.db.cleanup_old_data(days_to_keep or self.config.data_retention_days)
        except Exception as e:
            logger.error(f"Cleanup failed: {e}")
            return {"orders": 0, "operations": 0}
