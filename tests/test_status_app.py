"""Tests for the local status API."""

import pytest
from fastapi.testclient import TestClient

from possync.services.models import CachedMenuItem, LocalOrder, OrderSyncStatus
from possync.services.offline_coordinator import OfflineCoordinator
from possync.status_app.app import create_app


@pytest.fixture
def client(coordinator):
    return TestClient(create_app(coordinator))


@pytest.fixture
def online_client(online_sync_manager, session_store):
    return TestClient(create_app(OfflineCoordinator(online_sync_manager, session_store)))


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "mode": "offline"}


def test_status_endpoints(client):
    status = client.get("/api/status").json()
    sync_status = client.get("/api/sync/status").json()

    assert status["is_online"] is False
    assert status["pending_operations"] == 0
    assert sync_status["state"] == "IDLE"
    assert sync_status["is_currently_syncing"] is False


def test_storage_stats(client, db):
    db.save_order(LocalOrder.from_payload({"id": "o1"}))

    stats = client.get("/api/sync/stats").json()

    assert stats["total_orders"] == 1
    assert stats["pending_orders"] == 1


def test_menu_404_until_cached(client, db):
    assert client.get("/api/menu").status_code == 404

    db.cache_menu_items([CachedMenuItem(id="1", name="Garlic Naan", price=2.5)])
    response = client.get("/api/menu")

    assert response.status_code == 200
    body = response.json()
    assert body["source"] == "cache"
    assert body["items"][0]["name"] == "Garlic Naan"
    assert body["cached_at"]


def test_queue_operation(client, coordinator):
    response = client.post(
        "/api/operations",
        json={"type": "CREATE_PAYMENT", "payload": {"order_id": "o1", "amount": 12.5}},
    )

    assert response.status_code == 202
    assert response.json()["type"] == "CREATE_PAYMENT"
    assert coordinator.get_status().pending_operations == 1


def test_queue_unknown_operation_is_rejected(client):
    response = client.post("/api/operations", json={"type": "REFUND_EVERYTHING", "payload": {}})

    assert response.status_code == 422


def test_force_sync_offline_is_skipped(client):
    body = client.post("/api/sync/force").json()

    assert body["result"] == {"status": "skipped", "reason": "offline"}


def test_force_sync_online(online_client, db, api):
    db.save_order(LocalOrder.from_payload({"id": "o1", "total": 10}))

    body = online_client.post("/api/sync/force").json()

    assert body["result"]["status"] == "success"
    assert body["sync_status"]["last_successful_sync"] is not None
    assert db.get_order("o1").status == OrderSyncStatus.SYNCED
    api.get_menu.assert_awaited_once()


def test_clear_failed(client, db):
    db.save_order(LocalOrder.from_payload({"id": "o1"}))
    db.update_order_sync_status("o1", OrderSyncStatus.FAILED_SYNC, "HTTP 500")

    body = client.post("/api/sync/clear-failed").json()

    assert body["reset_orders"] == 1
    assert body["sync_status"]["failed_operations"] == 0
