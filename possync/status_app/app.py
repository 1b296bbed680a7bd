"""
Status App - Local HTTP surface for the offline sync core

This FastAPI application lets POS UI processes on the same terminal read
sync status and trigger the explicit recovery actions:
- Coordinator and sync status
- Forced full sync and failed-order reset
- Cache-first menu reads
- Queueing operations

Serve on port 8001 (status bridge WebSocket runs on 8002)
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from ..services.models import OperationType
from ..services.offline_coordinator import OfflineCoordinator

logger = logging.getLogger("StatusAPI")


class QueueOperationRequest(BaseModel):
    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


def create_app(coordinator: OfflineCoordinator) -> FastAPI:
    """Build the status API around an explicit coordinator instance."""
    app = FastAPI(title="POS Offline Sync Status")
    sync_manager = coordinator.sync_manager

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok", "mode": "online" if coordinator.monitor.is_online() else "offline"}

    @app.get("/api/status")
    async def get_status():
        """Coordinator-level status: connectivity, queue depth, cache age."""
        return coordinator.get_status().to_dict()

    @app.get("/api/sync/status")
    async def get_sync_status():
        return sync_manager.get_sync_status().to_dict()

    @app.get("/api/sync/stats")
    async def get_storage_stats():
        return sync_manager.get_storage_stats()

    @app.post("/api/sync/force")
    async def force_sync():
        result = await sync_manager.force_sync()
        return {"result": result, "sync_status": sync_manager.get_sync_status().to_dict()}

    @app.post("/api/sync/clear-failed")
    async def clear_failed():
        reset = sync_manager.clear_failed_operations()
        return {"reset_orders": reset, "sync_status": sync_manager.get_sync_status().to_dict()}

    @app.get("/api/menu")
    async def get_menu():
        """Cached menu snapshot; 404 until a menu has been cached."""
        result = coordinator.load_menu_data()
        if not result.has_cache:
            raise HTTPException(status_code=404, detail="No cached menu")
        return {"source": result.source, **result.snapshot.to_dict()}

    @app.post("/api/operations", status_code=202)
    async def queue_operation(request: QueueOperationRequest):
        try:
            operation_type = OperationType(request.type)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown operation type: {request.type}")

        operation_id: Optional[str] = coordinator.queue_operation(operation_type, request.payload)
        if operation_id is None:
            raise HTTPException(status_code=500, detail="Operation could not be queued")

        logger.info(f"Queued {operation_type.value} via API: {operation_id}")
        return {"id": operation_id, "type": operation_type.value}

    return app
