"""Tests for the local WebSocket status bridge."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from possync.network.ws_local import StatusBridge

from .conftest import wait_until


@pytest.fixture
def bridge(coordinator):
    return StatusBridge(coordinator)


def make_client():
    client = MagicMock()
    client.send = AsyncMock()
    return client


@pytest.mark.asyncio
async def test_get_status(bridge):
    reply = await bridge.handle_message(json.dumps({"type": "get_status"}))

    assert reply["type"] == "status"
    assert reply["data"]["is_online"] is False
    assert reply["coordinator"]["pending_operations"] == 0


@pytest.mark.asyncio
async def test_ping(bridge):
    reply = await bridge.handle_message(json.dumps({"type": "ping", "timestamp": 1700000000}))

    assert reply == {"type": "pong", "timestamp": 1700000000}


@pytest.mark.asyncio
async def test_invalid_json(bridge):
    reply = await bridge.handle_message("{oops")

    assert reply == {"type": "error", "error": "Invalid JSON format"}


@pytest.mark.asyncio
async def test_unknown_message_type(bridge):
    reply = await bridge.handle_message(json.dumps({"type": "reboot"}))

    assert reply["type"] == "error"


@pytest.mark.asyncio
async def test_queue_operation(bridge, coordinator):
    reply = await bridge.handle_message(json.dumps({
        "type": "queue_operation",
        "operation": "UPDATE_ORDER_STATUS",
        "payload": {"order_id": "o1", "status": "READY"},
    }))

    assert reply["type"] == "operation_ack"
    assert reply["status"] == "queued"
    assert coordinator.get_status().pending_operations == 1


@pytest.mark.asyncio
async def test_queue_unknown_operation(bridge):
    reply = await bridge.handle_message(json.dumps({"type": "queue_operation", "operation": "NOPE"}))

    assert reply["code"] == "UNKNOWN_OPERATION"


@pytest.mark.asyncio
async def test_force_sync_while_offline(bridge):
    reply = await bridge.handle_message(json.dumps({"type": "force_sync"}))

    assert reply == {"type": "sync_result", "result": {"status": "skipped", "reason": "offline"}}


@pytest.mark.asyncio
async def test_broadcast_reaches_every_client(bridge):
    healthy = make_client()
    closed = make_client()
    closed.send.side_effect = ConnectionResetError("gone")
    bridge.clients.update({healthy, closed})

    await bridge.broadcast_status()

    message = json.loads(healthy.send.await_args.args[0])
    assert message["type"] == "status"
    closed.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_status_change_is_pushed(bridge, sync_manager):
    client = make_client()
    bridge.clients.add(client)
    bridge._unsubscribe = sync_manager.on_sync_status_change(bridge._on_status_change)

    sync_manager.enqueue_operation("CREATE_PAYMENT", {"amount": 4})
    await wait_until(lambda: client.send.await_count == 1)
    bridge._unsubscribe()

    message = json.loads(client.send.await_args.args[0])
    assert message["data"]["pending_operations"] == 1


@pytest.mark.asyncio
async def test_non_object_message(bridge):
    for message in ("[]", "42", '"get_status"', "null"):
        reply = await bridge.handle_message(message)

        assert reply == {"type": "error", "error": "Message must be a JSON object"}
