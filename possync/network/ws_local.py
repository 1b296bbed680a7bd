"""
ws_local.py - Local WebSocket Status Bridge for POS UI

Pushes every sync status change to connected UI clients on the terminal and
accepts a small set of commands (status requests, forced sync, queueing
operations) so the UI never has to poll.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

import websockets

from ..services.models import OperationType, SyncStatus
from ..services.offline_coordinator import OfflineCoordinator

logger = logging.getLogger("StatusBridge")


class StatusBridge:
    """WebSocket server broadcasting SyncStatus to local clients."""

    def __init__(self, coordinator: OfflineCoordinator, host: str = "127.0.0.1", port: int = 8002):
        self.coordinator = coordinator
        self.sync_manager = coordinator.sync_manager
        self.host = host
        self.port = port
        self.clients: Set[Any] = set()
        self._server = None
        self._unsubscribe = None
        self._tasks: Set[asyncio.Task] = set()

    # ==================== Lifecycle ====================

    async def start(self):
        self._server = await websockets.serve(self.handler, self.host, self.port)
        self._unsubscribe = self.sync_manager.on_sync_status_change(self._on_status_change)
        logger.info(f"Status bridge started on ws://{self.host}:{self.port}")

    async def stop(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("Status bridge stopped")

    # ==================== Broadcasting ====================

    def _status_message(self, status: Optional[SyncStatus] = None) -> str:
        status = status or self.sync_manager.get_sync_status()
        return json.dumps({"type": "status", "data": status.to_dict()})

    def _on_status_change(self, status: SyncStatus):
        if not self.clients:
            return
        task = asyncio.get_running_loop().create_task(self.broadcast_status(status))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def broadcast_status(self, status: Optional[SyncStatus] = None):
        """Broadcast current status to all connected clients."""
        if not self.clients:
            return

        message = self._status_message(status)
        await asyncio.gather(
            *[client.send(message) for client in list(self.clients)],
            return_exceptions=True
        )

    # ==================== Client Handling ====================

    async def handler(self, websocket):
        """
        Handles WebSocket connections from local POS UI clients.

        Supports:
        - Status requests and pushed status updates
        - Forced full sync
        - Queueing offline operations
        """
        logger.info(f"Client connected: {websocket.remote_address}")
        self.clients.add(websocket)

        try:
            await websocket.send(self._status_message())

            async for message in websocket:
                reply = await self.handle_message(message)
                if reply is not None:
                    await websocket.send(json.dumps(reply))

        except websockets.exceptions.ConnectionClosed:
            logger.info("Client disconnected")
        finally:
            self.clients.discard(websocket)

    async def handle_message(self, message: str) -> Optional[Dict[str, Any]]:
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.error("Invalid JSON received")
            return {"type": "error", "error": "Invalid JSON format"}

        if not isinstance(data, dict):
            logger.error("Non-object message received")
            return {"type": "error", "error": "Message must be a JSON object"}

        msg_type = data.get("type")
        logger.info(f"Received: {msg_type}")

        if msg_type == "get_status":
            return {
                "type": "status",
                "data": self.sync_manager.get_sync_status().to_dict(),
                "coordinator": self.coordinator.get_status().to_dict(),
            }

        if msg_type == "force_sync":
            result = await self.sync_manager.force_sync()
            return {"type": "sync_result", "result": result}

        if msg_type == "queue_operation":
            try:
                operation_type = OperationType(data.get("operation"))
            except ValueError:
                return {
                    "type": "error",
                    "error": f"Unknown operation type: {data.get('operation')}",
                    "code": "UNKNOWN_OPERATION",
                }

            operation_id = self.coordinator.queue_operation(operation_type, data.get("payload") or {})
            if operation_id is None:
                return {"type": "error", "error": "Failed to queue operation", "code": "STORAGE_FAILED"}
            return {"type": "operation_ack", "id": operation_id, "status": "queued"}

        if msg_type == "ping":
            return {"type": "pong", "timestamp": data.get("timestamp")}

        logger.warning(f"Unknown message type: {msg_type}")
        return {"type": "error", "error": f"Unknown message type: {msg_type}"}
