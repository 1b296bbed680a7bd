"""
outbox.py - Durable Operation Outbox

Pending mutations are written to the local store before anything else
happens, then delivered by type-specific executors when the terminal is
online. Failed deliveries are retried on later drains up to a cap; past the
cap they stay in the store as FAILED so they remain visible.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from .exceptions import UnknownOperationTypeError
from .local_db import LocalDatabase
from .models import OfflineOperation, OperationStatus, OperationType, utcnow_iso

logger = logging.getLogger("Outbox")

Executor = Callable[[OfflineOperation], Awaitable[bool]]


class OperationOutbox:
    """Store-backed queue of operations with bounded retry."""

    def __init__(
        self,
        db: LocalDatabase,
        is_online: Callable[[], bool],
        max_retries: int = 3,
        operation_delay: float = 0.05,
    ):
        self.db = db
        self.is_online = is_online
        self.max_retries = max_retries
        self.operation_delay = operation_delay
        self.on_change: Optional[Callable[[], None]] = None

        self._executors: Dict[OperationType, Executor] = {}
        self._draining = False
        self._tasks: Set[asyncio.Task] = set()

    def register_executor(self, operation_type: OperationType, executor: Executor):
        self._executors[OperationType(operation_type)] = executor

    @property
    def is_draining(self) -> bool:
        return self._draining

    # ==================== Queueing ====================

    def enqueue(self, operation_type: OperationType, payload: Optional[Dict[str, Any]] = None) -> OfflineOperation:
        """
        Persist a new operation and, when online, start a drain.

        Raises:
            ValueError: if ``operation_type`` is not a known operation type
        """
        operation = OfflineOperation(type=OperationType(operation_type), payload=dict(payload or {}))
        self.db.add_sync_operation(operation)
        logger.info(f"Queued operation {operation.id} ({operation.type.value})")
        self._notify_change()

        if self.is_online():
            self.schedule_drain()

        return operation

    def schedule_drain(self):
        """Start a drain in the background if an event loop is running."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; drain deferred to next sync cycle")
            return

        task = loop.create_task(self.drain_once())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ==================== Draining ====================

    async def drain_once(self) -> Dict[str, Any]:
        """
        Deliver every operation pending at call time, in enqueue order.

        Returns:
            Dict with drain results
        """
        if self._draining:
            logger.debug("Drain already in progress, skipping")
            return {"status": "skipped", "reason": "drain_in_progress"}

        self._draining = True
        result = {"status": "success", "processed": 0, "completed": 0, "retried": 0, "dropped": 0}

        try:
            operations = self.db.claim_pending_operations()
            if operations:
                logger.info(f"Draining {len(operations)} queued operations")

            for index, operation in enumerate(operations):
                if index and self.operation_delay:
                    await asyncio.sleep(self.operation_delay)

                outcome = await self._process(operation)
                result["processed"] += 1
                result[outcome] += 1
        finally:
            self._draining = False
            self._notify_change()

        return result

    async def _process(self, operation: OfflineOperation) -> str:
        executor = self._executors.get(operation.type)
        error = None

        try:
            if executor is None:
                raise UnknownOperationTypeError(f"No executor for {operation.type.value}")
            if not await executor(operation):
                error = "Operation failed"
        except Exception as e:
            error = str(e) or type(e).__name__

        if error is None:
            self.db.update_sync_operation(operation.id, {
                "status": OperationStatus.COMPLETED,
                "last_attempt": utcnow_iso(),
                "error_message": None,
            })
            return "completed"

        retry_count = operation.retry_count + 1
        if retry_count < self.max_retries:
            status, outcome = OperationStatus.PENDING, "retried"
            logger.info(
                f"Operation {operation.id} failed ({retry_count}/{self.max_retries}), re-queued: {error}"
            )
        else:
            status, outcome = OperationStatus.FAILED, "dropped"
            logger.warning(
                f"Operation {operation.id} ({operation.type.value}) dropped after "
                f"{retry_count} attempts: {error}"
            )

        self.db.update_sync_operation(operation.id, {
            "status": status,
            "retry_count": retry_count,
            "last_attempt": utcnow_iso(),
            "error_message": error,
        })
        return outcome

    # ==================== Maintenance ====================

    def recover_in_flight(self) -> int:
        """Requeue operations a previous process left in PROCESSING."""
        count = self.db.reset_processing_operations()
        if count:
            logger.warning(f"Recovered {count} operations interrupted mid-delivery")
            self._notify_change()
        return count

    def pending_count(self) -> int:
        return self.db.count_sync_operations(OperationStatus.PENDING, OperationStatus.PROCESSING)

    def failed_count(self) -> int:
        return self.db.count_sync_operations(OperationStatus.FAILED)

    def clear_failed(self) -> int:
        count = self.db.delete_sync_operations(OperationStatus.FAILED)
        if count:
            logger.info(f"Cleared {count} exhausted operations")
            self._notify_change()
        return count

    def _notify_change(self):
        if self.on_change is None:
            return
        try:
            self.on_change()
        except Exception as e:
            logger.error(f"Outbox change callback error: {e}")
