"""Pytest configuration and fixtures."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from possync.config import SyncConfig
from possync.services.background_scheduler import BackgroundScheduler
from possync.services.local_db import LocalDatabase
from possync.services.network_monitor import NetworkMonitor
from possync.services.offline_coordinator import OfflineCoordinator
from possync.services.session_store import SessionStore
from possync.services.sync_manager import SyncManager

SAMPLE_MENU = {
    "data": {
        "items": [
            {
                "id": 1,
                "name": "Garlic Naan",
                "description": "Tandoor-baked",
                "price": None,
                "active": None,
                "internal_notes": "not cached",
            },
            {
                "id": "2",
                "name": "Chicken Korma",
                "price": 9.5,
                "category_id": "mains",
                "active": False,
                "allergens": ["nuts", "dairy"],
                "variants": [{"name": "Large", "price": 11.0}],
            },
        ]
    }
}


def ok_response(status=200, data=None):
    return {"ok": True, "status": status, "data": data or {}}


def error_response(status=500, data=None):
    return {"ok": False, "status": status, "data": data}


async def wait_until(predicate, timeout=3.0, interval=0.01):
    """Poll ``predicate`` on the event loop until it holds or time runs out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def config(tmp_path):
    return SyncConfig(
        db_path=str(tmp_path / "pos_local.db"),
        session_path=str(tmp_path / "session.json"),
        operation_delay_ms=0,
        auto_save_interval=0.05,
    )


@pytest.fixture
def db(config):
    return LocalDatabase(config.db_path)


@pytest.fixture
def api():
    """Transport fake: every call succeeds unless a test says otherwise."""
    client = MagicMock()
    client.post_order = AsyncMock(return_value=ok_response(201))
    client.update_order = AsyncMock(return_value=ok_response())
    client.update_order_status = AsyncMock(return_value=ok_response())
    client.create_payment = AsyncMock(return_value=ok_response(201))
    client.get_menu = AsyncMock(return_value=SAMPLE_MENU)
    client.heartbeat = AsyncMock(return_value=True)
    return client


@pytest.fixture
def monitor():
    return NetworkMonitor(initial_online=False)


@pytest.fixture
def online_monitor():
    return NetworkMonitor(initial_online=True)


@pytest.fixture
def sync_manager(db, api, monitor, config):
    return SyncManager(db, api, monitor, config=config)


@pytest.fixture
def online_sync_manager(db, api, online_monitor, config):
    return SyncManager(db, api, online_monitor, config=config)


@pytest.fixture
def session_store(config):
    return SessionStore(config.session_path, auto_save_interval=config.auto_save_interval)


@pytest.fixture
def coordinator(sync_manager, session_store, config):
    return OfflineCoordinator(sync_manager, session_store, BackgroundScheduler(), config=config)
