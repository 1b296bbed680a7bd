"""
offline_coordinator.py - Offline Coordinator

Single entry point for the application layer. Composes the sync manager
with the menu cache, session persistence and the background scheduler, and
owns the initialize/shutdown lifecycle.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ..config import SyncConfig
from .background_scheduler import BackgroundScheduler, BackgroundTask, TaskPriority, TaskType
from .exceptions import SyncError
from .models import NO_CACHE, CoordinatorStatus, MenuLoadResult, OperationType
from .session_store import SessionStore
from .sync_manager import SyncManager

logger = logging.getLogger("OfflineCoordinator")


class OfflineCoordinator:
    """Application-facing facade over the offline sync core."""

    def __init__(
        self,
        sync_manager: SyncManager,
        session_store: SessionStore,
        scheduler: Optional[BackgroundScheduler] = None,
        config: Optional[SyncConfig] = None,
    ):
        self.config = config or sync_manager.config
        self.sync_manager = sync_manager
        self.db = sync_manager.db
        self.monitor = sync_manager.monitor
        self.session_store = session_store
        self.scheduler = scheduler or BackgroundScheduler()

        self.session: Dict[str, Any] = {}
        self._session_restored = False
        self._initialized = False
        self._unsubscribers: List[Callable[[], None]] = []

        self.scheduler.register_handler(TaskType.MENU_REFRESH, self._run_menu_refresh)
        self.scheduler.register_handler(TaskType.FULL_SYNC, self._run_full_sync)
        self.scheduler.register_handler(TaskType.CLEANUP, self._run_cleanup)

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ==================== Lifecycle ====================

    def initialize(self):
        """
        Start the sync core. Must be called from within the running event
        loop; calling it again is a logged no-op.
        """
        if self._initialized:
            logger.warning("OfflineCoordinator already initialized")
            return

        self.sync_manager.start()
        self._unsubscribers.append(self.monitor.on_reconnect(self._handle_reconnect))

        restored = self.session_store.load()
        if restored is not None:
            self.session = restored
            self._session_restored = True
            logger.info("Session restored from disk")
        self.session_store.start_auto_save(self._get_session_snapshot)

        self.scheduler.start()
        self.scheduler.queue_task(TaskType.MENU_REFRESH, priority=TaskPriority.LOW, max_retries=3)
        self.scheduler.queue_task(TaskType.CLEANUP, priority=TaskPriority.LOW, max_retries=1)

        self._initialized = True
        logger.info("OfflineCoordinator initialized")

    def shutdown(self):
        if not self._initialized:
            return

        self.scheduler.stop()
        self.session_store.stop_auto_save()
        try:
            self.session_store.save(self.session)
        except Exception as e:
            logger.error(f"Failed to save session on shutdown: {e}")

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.sync_manager.stop()

        self._initialized = False
        logger.info("OfflineCoordinator shut down")

    def _handle_reconnect(self):
        self.scheduler.queue_task(TaskType.MENU_REFRESH, priority=TaskPriority.LOW, max_retries=3)

    # ==================== Operations ====================

    def queue_operation(self, operation_type, payload: Optional[Dict[str, Any]] = None) -> Optional[str]:
        """
        Queue a mutation for delivery; delivery starts at once when online.

        Returns:
            The order id for CREATE_ORDER, otherwise the operation id; None
            if the operation could not be queued
        """
        try:
            operation_id = self.sync_manager.enqueue_operation(OperationType(operation_type), payload or {})
        except ValueError:
            logger.error(f"Unknown operation type: {operation_type}")
            return None
        except Exception as e:
            logger.error(f"Failed to queue {operation_type} operation: {e}")
            return None
        return operation_id

    def load_menu_data(self) -> MenuLoadResult:
        """Cache-first menu read; never touches the network."""
        try:
            snapshot = self.db.get_menu_snapshot()
        except Exception as e:
            logger.error(f"Failed to read menu cache: {e}")
            return NO_CACHE

        if snapshot is None:
            return NO_CACHE
        return MenuLoadResult(source="cache", snapshot=snapshot)

    def request_full_sync(self) -> str:
        """Ask the scheduler for a full sync instead of running one inline."""
        return self.scheduler.queue_task(TaskType.FULL_SYNC, priority=TaskPriority.HIGH, max_retries=1)

    # ==================== Session ====================

    def update_session(self, values: Dict[str, Any]):
        self.session.update(values)

    def clear_session(self):
        self.session = {}
        self.session_store.delete()

    def _get_session_snapshot(self) -> Dict[str, Any]:
        return dict(self.session)

    # ==================== Status ====================

    def get_status(self) -> CoordinatorStatus:
        scheduler_state = self.scheduler.get_state()

        try:
            queued, _ = self.sync_manager.count_operations()
        except Exception as e:
            logger.error(f"Failed to count queued operations: {e}")
            queued = 0

        cache_age = None
        try:
            snapshot = self.db.get_menu_snapshot()
            if snapshot is not None:
                cache_age = snapshot.age_minutes()
        except Exception as e:
            logger.error(f"Failed to read menu cache age: {e}")

        return CoordinatorStatus(
            is_online=self.monitor.is_online(),
            last_online_at=self.monitor.last_online_at,
            pending_operations=queued + scheduler_state["pending_tasks"],
            sync_in_progress=scheduler_state["is_syncing"],
            cache_age_minutes=cache_age,
            session_restored=self._session_restored,
        )

    # ==================== Scheduler Handlers ====================

    async def _run_menu_refresh(self, task: BackgroundTask):
        if not self.monitor.is_online():
            logger.debug("Skipping menu refresh while offline")
            return
        if not await self.sync_manager.refresh_menu_cache():
            raise SyncError("Menu refresh failed")

    async def _run_full_sync(self, task: BackgroundTask):
        result = await self.sync_manager.perform_full_sync()
        if result.get("status") == "error":
            raise SyncError(result.get("reason"))

    async def _run_cleanup(self, task: BackgroundTask):
        self.sync_manager.cleanup_old_data()
