"""
background_scheduler.py - Background Task Scheduler

Runs low-urgency housekeeping (menu refreshes, full syncs requested by the
coordinator) one task at a time on the event loop, highest priority first.
"""

import asyncio
import heapq
import itertools
import logging
import uuid
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger("BackgroundScheduler")


class TaskPriority(IntEnum):
    """Lower value runs first."""
    CRITICAL = 0
    HIGH = 1
    NORMAL = 2
    LOW = 3


class TaskType:
    MENU_REFRESH = "MENU_REFRESH"
    FULL_SYNC = "FULL_SYNC"
    CLEANUP = "CLEANUP"


@dataclass
class BackgroundTask:
    type: str
    priority: TaskPriority = TaskPriority.NORMAL
    data: Optional[Dict[str, Any]] = None
    max_retries: int = 3
    retries: int = 0
    id: str = field(default_factory=lambda: f"task_{uuid.uuid4().hex[:12]}")


Handler = Callable[[BackgroundTask], Awaitable[Any]]


class BackgroundScheduler:
    """Single-worker priority queue on the running event loop."""

    def __init__(self):
        self._queue: List = []
        self._counter = itertools.count()
        self._handlers: Dict[str, Handler] = {}
        self._wakeup: Optional[asyncio.Event] = None
        self._worker: Optional[asyncio.Task] = None
        self._is_syncing = False

    def register_handler(self, task_type: str, handler: Handler):
        self._handlers[task_type] = handler

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    # ==================== Lifecycle ====================

    def start(self):
        """Start the worker; requires a running event loop."""
        if self.is_running:
            return
        self._wakeup = asyncio.Event()
        if self._queue:
            self._wakeup.set()
        self._worker = asyncio.get_running_loop().create_task(self._run())
        logger.info("Background scheduler started")

    def stop(self):
        if self._worker is not None:
            self._worker.cancel()
            self._worker = None
            logger.info("Background scheduler stopped")
        self._is_syncing = False

    # ==================== Queue ====================

    def queue_task(
        self,
        task_type: str,
        priority: TaskPriority = TaskPriority.NORMAL,
        data: Optional[Dict[str, Any]] = None,
        max_retries: int = 3,
    ) -> str:
        task = BackgroundTask(
            type=task_type,
            priority=TaskPriority(priority),
            data=data,
            max_retries=max_retries,
        )
        self._push(task)
        logger.debug(f"Queued {task.type} task {task.id} (priority {task.priority.name})")
        return task.id

    def _push(self, task: BackgroundTask):
        heapq.heappush(self._queue, (task.priority, next(self._counter), task))
        if self._wakeup is not None:
            self._wakeup.set()

    def get_state(self) -> Dict[str, Any]:
        return {
            "is_syncing": self._is_syncing,
            "pending_tasks": len(self._queue),
        }

    # ==================== Worker ====================

    async def _run(self):
        while True:
            if not self._queue:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            _, _, task = heapq.heappop(self._queue)
            await self._execute(task)

    async def _execute(self, task: BackgroundTask):
        handler = self._handlers.get(task.type)
        if handler is None:
            logger.warning(f"No handler for task type {task.type}, dropping {task.id}")
            return

        self._is_syncing = True
        try:
            await handler(task)
            logger.debug(f"Task {task.id} ({task.type}) completed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            task.retries += 1
            if task.retries < task.max_retries:
                logger.warning(
                    f"Task {task.id} ({task.type}) failed ({task.retries}/{task.max_retries}): {e}"
                )
                self._push(task)
            else:
                logger.warning(f"Task {task.id} ({task.type}) dropped after {task.retries} attempts: {e}")
        finally:
            self._is_syncing = False
