"""Tests for the application-facing coordinator."""

import logging

import pytest

from possync.services.background_scheduler import TaskPriority, TaskType
from possync.services.models import (
    CachedMenuItem,
    NO_CACHE,
    LocalOrder,
    OperationType,
    OrderSyncStatus,
)

from .conftest import wait_until


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_initialize_twice_is_a_logged_noop(self, coordinator, caplog):
        coordinator.initialize()
        with caplog.at_level(logging.WARNING, logger="OfflineCoordinator"):
            coordinator.initialize()
        coordinator.shutdown()

        assert "already initialized" in caplog.text

    @pytest.mark.asyncio
    async def test_session_is_restored_and_saved(self, coordinator, session_store):
        session_store.save({"table": 5})

        coordinator.initialize()
        assert coordinator.get_status().session_restored is True
        assert coordinator.session == {"table": 5}

        coordinator.update_session({"cart": ["naan"]})
        coordinator.shutdown()

        assert session_store.load() == {"table": 5, "cart": ["naan"]}

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, coordinator):
        coordinator.initialize()

        coordinator.shutdown()
        coordinator.shutdown()

        assert coordinator.is_initialized is False
        assert coordinator.scheduler.is_running is False

    def test_shutdown_before_initialize_does_nothing(self, coordinator, session_store):
        coordinator.shutdown()

        assert session_store.load() is None

    @pytest.mark.asyncio
    async def test_reconnect_refreshes_menu(self, coordinator, monitor, db, api):
        coordinator.initialize()

        monitor.set_online()
        await wait_until(
            lambda: db.get_menu_snapshot() is not None
            and coordinator.sync_manager.get_sync_status().last_successful_sync is not None
        )
        coordinator.shutdown()

        api.get_menu.assert_awaited()

    def test_clear_session_removes_file(self, coordinator, session_store):
        session_store.save({"table": 2})
        coordinator.update_session({"table": 2})

        coordinator.clear_session()

        assert coordinator.session == {}
        assert session_store.load() is None


class TestMenu:

    def test_load_menu_from_cache_while_offline(self, coordinator, db, api):
        db.cache_menu_items([CachedMenuItem(id="1", name="Garlic Naan", price=2.5)])

        result = coordinator.load_menu_data()

        assert result.source == "cache"
        assert [item.name for item in result.snapshot.items] == ["Garlic Naan"]
        api.get_menu.assert_not_called()

    def test_load_menu_without_cache(self, coordinator, api):
        result = coordinator.load_menu_data()

        assert result is NO_CACHE
        assert result.has_cache is False
        api.get_menu.assert_not_called()


class TestOperations:

    def test_queue_operation_while_offline(self, coordinator, api):
        first = coordinator.queue_operation(OperationType.CREATE_PAYMENT, {"amount": 12})
        second = coordinator.queue_operation("UPDATE_ORDER_STATUS", {"order_id": "o1", "status": "READY"})

        assert first and second and first != second
        assert coordinator.get_status().pending_operations == 2
        api.create_payment.assert_not_called()

    def test_queue_unknown_operation_returns_none(self, coordinator):
        assert coordinator.queue_operation("REFUND_EVERYTHING", {}) is None
        assert coordinator.get_status().pending_operations == 0

    def test_status_counts_scheduler_backlog(self, coordinator):
        coordinator.queue_operation(OperationType.CREATE_PAYMENT, {"amount": 1})
        coordinator.scheduler.queue_task(TaskType.MENU_REFRESH, priority=TaskPriority.LOW)

        status = coordinator.get_status()

        assert status.pending_operations == 2
        assert status.sync_in_progress is False
        assert status.is_online is False
        assert status.cache_age_minutes is None

    @pytest.mark.asyncio
    async def test_status_counts_orders_awaiting_sync(self, coordinator, sync_manager, db):
        await sync_manager.sync_order_to_server(LocalOrder.from_payload({"id": "o1", "total": 10}))
        db.save_order(LocalOrder(id="o2", payload={"id": "o2"},
                                 status=OrderSyncStatus.FAILED_SYNC, sync_attempts=1))
        db.save_order(LocalOrder(id="o3", payload={"id": "o3"},
                                 status=OrderSyncStatus.FAILED_SYNC, sync_attempts=3))

        assert coordinator.get_status().pending_operations == 2

    def test_queue_create_order_returns_order_id(self, coordinator, db):
        order_id = coordinator.queue_operation(OperationType.CREATE_ORDER, {"id": "o7", "total": 4})

        assert order_id == "o7"
        assert db.get_order("o7").status == OrderSyncStatus.PENDING_SYNC
        assert coordinator.get_status().pending_operations == 1

    def test_request_full_sync_queues_task(self, coordinator):
        task_id = coordinator.request_full_sync()

        assert task_id.startswith("task_")
        assert coordinator.scheduler.get_state()["pending_tasks"] == 1

    def test_status_reports_cache_age(self, coordinator, db):
        db.cache_menu_items([CachedMenuItem(id="1", name="Naan")])

        age = coordinator.get_status().to_dict()["cache_age_minutes"]

        assert age is not None and age < 1
