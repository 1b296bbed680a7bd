"""Tests for the SQLite local store."""

from datetime import timedelta

import pytest

from possync.services.exceptions import OperationNotFoundError, OrderNotFoundError
from possync.services.local_db import LocalDatabase
from possync.services.models import (
    CachedMenuItem,
    LocalOrder,
    OfflineOperation,
    OperationStatus,
    OperationType,
    OrderSyncStatus,
    utcnow,
)


def make_order(order_id, **payload):
    return LocalOrder(id=order_id, payload={"id": order_id, **payload})


class TestOrders:

    def test_save_and_get_order(self, db):
        db.save_order(make_order("o1", total=12.5, order_type="COLLECTION"))

        order = db.get_order("o1")
        assert order.status == OrderSyncStatus.PENDING_SYNC
        assert order.payload["total"] == 12.5
        assert order.sync_attempts == 0

    def test_get_orders_filters_by_status(self, db):
        db.save_order(make_order("o1"))
        db.save_order(make_order("o2"))
        db.update_order_sync_status("o2", OrderSyncStatus.SYNCED)

        pending = db.get_orders(OrderSyncStatus.PENDING_SYNC)
        assert [o.id for o in pending] == ["o1"]
        assert len(db.get_orders()) == 2

    def test_error_increments_attempts(self, db):
        db.save_order(make_order("o1"))

        db.update_order_sync_status("o1", OrderSyncStatus.FAILED_SYNC, "HTTP 500")
        order = db.update_order_sync_status("o1", OrderSyncStatus.FAILED_SYNC, "timeout")

        assert order.sync_attempts == 2
        assert order.error_message == "timeout"
        assert order.last_sync_attempt is not None

    def test_synced_clears_error(self, db):
        db.save_order(make_order("o1"))
        db.update_order_sync_status("o1", OrderSyncStatus.FAILED_SYNC, "HTTP 500")

        order = db.update_order_sync_status("o1", OrderSyncStatus.SYNCED)

        assert order.error_message is None
        assert order.sync_attempts == 1

    def test_update_unknown_order_raises(self, db):
        with pytest.raises(OrderNotFoundError):
            db.update_order_sync_status("missing", OrderSyncStatus.SYNCED)

    def test_reset_failed_orders(self, db):
        db.save_order(make_order("o1"))
        db.save_order(make_order("o2"))
        db.update_order_sync_status("o1", OrderSyncStatus.FAILED_SYNC, "boom")

        assert db.reset_failed_orders() == 1

        order = db.get_order("o1")
        assert order.status == OrderSyncStatus.PENDING_SYNC
        assert order.sync_attempts == 0
        assert order.error_message is None

    def test_orders_survive_reopen(self, db, config):
        db.save_order(make_order("o1"))

        reopened = LocalDatabase(config.db_path)
        assert reopened.get_order("o1") is not None


class TestMenuCache:

    def test_no_snapshot_before_first_cache(self, db):
        assert db.get_menu_snapshot() is None
        assert db.is_cache_valid() is False

    def test_cache_replaces_wholesale(self, db):
        db.cache_menu_items([CachedMenuItem(id="1", name="Naan"), CachedMenuItem(id="2", name="Rice")])
        db.cache_menu_items([CachedMenuItem(id="3", name="Korma", allergens=["nuts"])])

        snapshot = db.get_menu_snapshot()
        assert [item.id for item in snapshot.items] == ["3"]
        assert snapshot.items[0].allergens == ["nuts"]

    def test_empty_menu_still_counts_as_cached(self, db):
        db.cache_menu_items([])

        snapshot = db.get_menu_snapshot()
        assert snapshot is not None
        assert snapshot.items == []

    def test_cache_validity_uses_age(self, db):
        stale = (utcnow() - timedelta(hours=30)).isoformat()
        db.cache_menu_items([CachedMenuItem(id="1", name="Naan", cached_at=stale)], cached_at=stale)

        assert db.is_cache_valid(max_age_hours=24) is False
        assert db.is_cache_valid(max_age_hours=48) is True


class TestSyncOperations:

    def test_claim_marks_processing_in_order(self, db):
        first = OfflineOperation(type=OperationType.CREATE_PAYMENT, payload={"n": 1})
        second = OfflineOperation(type=OperationType.UPDATE_ORDER, payload={"n": 2})
        db.add_sync_operation(first)
        db.add_sync_operation(second)

        claimed = db.claim_pending_operations()

        assert [op.id for op in claimed] == [first.id, second.id]
        assert all(op.status == OperationStatus.PROCESSING for op in claimed)
        assert db.get_pending_sync_operations() == []
        assert db.claim_pending_operations() == []

    def test_update_operation_patch(self, db):
        op = OfflineOperation(type=OperationType.CREATE_PAYMENT)
        db.add_sync_operation(op)

        db.update_sync_operation(op.id, {"status": OperationStatus.FAILED, "retry_count": 3})

        stored = db.get_sync_operation(op.id)
        assert stored.status == OperationStatus.FAILED
        assert stored.retry_count == 3

    def test_update_unknown_operation_raises(self, db):
        with pytest.raises(OperationNotFoundError):
            db.update_sync_operation("op_missing", {"status": OperationStatus.COMPLETED})

    def test_update_rejects_unknown_fields(self, db):
        op = OfflineOperation(type=OperationType.CREATE_PAYMENT)
        db.add_sync_operation(op)

        with pytest.raises(ValueError):
            db.update_sync_operation(op.id, {"type": "DROP TABLE"})

    def test_reset_processing_operations(self, db):
        db.add_sync_operation(OfflineOperation(type=OperationType.CREATE_PAYMENT))
        db.claim_pending_operations()

        assert db.reset_processing_operations() == 1
        assert len(db.get_pending_sync_operations()) == 1


class TestMaintenance:

    def test_cleanup_removes_only_old_synced_data(self, db):
        old = (utcnow() - timedelta(days=45)).isoformat()

        old_synced = make_order("old")
        old_synced.created_at = old
        old_synced.status = OrderSyncStatus.SYNCED
        db.save_order(old_synced)

        old_pending = make_order("old-pending")
        old_pending.created_at = old
        db.save_order(old_pending)

        db.save_order(make_order("fresh"))

        old_op = OfflineOperation(type=OperationType.CREATE_PAYMENT, timestamp=old,
                                  status=OperationStatus.COMPLETED)
        db.add_sync_operation(old_op)

        removed = db.cleanup_old_data(days_to_keep=30)

        assert removed == {"orders": 1, "operations": 1}
        assert db.get_order("old") is None
        assert db.get_order("old-pending") is not None
        assert db.get_order("fresh") is not None

    def test_storage_stats(self, db):
        db.save_order(make_order("o1"))
        db.save_order(make_order("o2"))
        db.update_order_sync_status("o2", OrderSyncStatus.FAILED_SYNC, "boom")
        db.cache_menu_items([CachedMenuItem(id="1", name="Naan")])

        stats = db.get_storage_stats()

        assert stats["total_orders"] == 2
        assert stats["pending_orders"] == 1
        assert stats["failed_orders"] == 1
        assert stats["cached_menu_items"] == 1
        assert stats["cache_age"] == "0 hours ago"

    def test_activity_log(self, db):
        db.log_activity('sync_start', 'pending', 'full sync')
        db.log_activity('sync_complete', 'completed', 'done')

        logs = db.get_recent_logs(1)
        assert logs[0]["event_type"] == "sync_complete"
