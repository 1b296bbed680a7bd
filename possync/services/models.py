"""
models.py - Data model for the offline sync core

Orders, queued operations and cached menu items as they live in the local
store, plus the ephemeral status records broadcast to the UI.
"""

import json
import random
import string
import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return utcnow().isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_operation_id() -> str:
    """Operation id from the millisecond timestamp and a random suffix."""
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"op_{int(time.time() * 1000)}_{suffix}"


class OrderSyncStatus(str, Enum):
    PENDING_SYNC = "PENDING_SYNC"
    SYNCED = "SYNCED"
    FAILED_SYNC = "FAILED_SYNC"


class OperationType(str, Enum):
    CREATE_ORDER = "CREATE_ORDER"
    UPDATE_ORDER = "UPDATE_ORDER"
    UPDATE_ORDER_STATUS = "UPDATE_ORDER_STATUS"
    CREATE_PAYMENT = "CREATE_PAYMENT"
    UPDATE_MENU = "UPDATE_MENU"


class OperationStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SyncState(str, Enum):
    """Orchestrator cycle state."""
    IDLE = "IDLE"
    SYNCING = "SYNCING"
    ERROR = "ERROR"


class ConflictStrategy(str, Enum):
    LOCAL_WINS = "LOCAL_WINS"
    SERVER_WINS = "SERVER_WINS"
    MERGE = "MERGE"
    MANUAL = "MANUAL"


# ==================== Store Records ====================

@dataclass
class LocalOrder:
    """An order recorded locally, with its delivery state."""
    id: str
    payload: Dict[str, Any] = field(default_factory=dict)
    status: OrderSyncStatus = OrderSyncStatus.PENDING_SYNC
    sync_attempts: int = 0
    error_message: Optional[str] = None
    created_at: str = field(default_factory=utcnow_iso)
    updated_at: str = field(default_factory=utcnow_iso)
    last_sync_attempt: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "LocalOrder":
        """Wrap a raw order payload, reusing its ``id`` when it has one."""
        order_id = payload.get("id") or f"offline-{uuid.uuid4()}"
        return cls(id=str(order_id), payload={**payload, "id": str(order_id)})

    @classmethod
    def from_row(cls, row) -> "LocalOrder":
        return cls(
            id=row["id"],
            payload=json.loads(row["payload"]) if row["payload"] else {},
            status=OrderSyncStatus(row["status"]),
            sync_attempts=row["sync_attempts"],
            error_message=row["error_message"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            last_sync_attempt=row["last_sync_attempt"],
        )

    def is_retryable(self, max_retries: int) -> bool:
        return (
            self.status == OrderSyncStatus.FAILED_SYNC
            and self.sync_attempts < max_retries
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class OfflineOperation:
    """A queued mutation awaiting delivery."""
    type: OperationType
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=generate_operation_id)
    timestamp: str = field(default_factory=utcnow_iso)
    retry_count: int = 0
    status: OperationStatus = OperationStatus.PENDING
    last_attempt: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_row(cls, row) -> "OfflineOperation":
        return cls(
            id=row["id"],
            type=OperationType(row["type"]),
            payload=json.loads(row["payload"]) if row["payload"] else {},
            timestamp=row["timestamp"],
            retry_count=row["retry_count"],
            status=OperationStatus(row["status"]),
            last_attempt=row["last_attempt"],
            error_message=row["error_message"],
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["status"] = self.status.value
        return data


@dataclass
class CachedMenuItem:
    id: str
    name: str
    price: float = 0.0
    category_id: str = ""
    description: Optional[str] = None
    image_url: Optional[str] = None
    active: bool = True
    variants: Optional[List[Any]] = None
    customizations: Optional[List[Any]] = None
    allergens: Optional[List[str]] = None
    cached_at: str = field(default_factory=utcnow_iso)

    @classmethod
    def from_remote(cls, item: Dict[str, Any], cached_at: str) -> "CachedMenuItem":
        """Project a remote menu item onto the cached shape."""
        return cls(
            id=str(item["id"]),
            name=item.get("name") or "",
            description=item.get("description"),
            price=float(item.get("price") or 0),
            category_id=item.get("category_id") or "",
            image_url=item.get("image_url"),
            active=item.get("active") is not False,
            variants=item.get("variants"),
            customizations=item.get("customizations"),
            allergens=item.get("allergens"),
            cached_at=cached_at,
        )

    @classmethod
    def from_row(cls, row) -> "CachedMenuItem":
        def _json(value):
            return json.loads(value) if value else None

        return cls(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            price=row["price"],
            category_id=row["category_id"],
            image_url=row["image_url"],
            active=bool(row["active"]),
            variants=_json(row["variants"]),
            customizations=_json(row["customizations"]),
            allergens=_json(row["allergens"]),
            cached_at=row["cached_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CachedMenuSnapshot:
    items: List[CachedMenuItem]
    cached_at: str

    def age_minutes(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return (now - parse_timestamp(self.cached_at)).total_seconds() / 60.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "cached_at": self.cached_at,
        }


# ==================== Ephemeral Status ====================

@dataclass
class ConflictResolution:
    strategy: ConflictStrategy
    reason: str


@dataclass
class SyncStatus:
    """Snapshot of sync state; rebuilt on demand, never persisted."""
    is_online: bool = False
    last_sync_attempt: Optional[datetime] = None
    last_successful_sync: Optional[datetime] = None
    pending_operations: int = 0
    failed_operations: int = 0
    is_currently_syncing: bool = False
    sync_error: Optional[str] = None
    state: SyncState = SyncState.IDLE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_online": self.is_online,
            "last_sync_attempt": self.last_sync_attempt.isoformat() if self.last_sync_attempt else None,
            "last_successful_sync": self.last_successful_sync.isoformat() if self.last_successful_sync else None,
            "pending_operations": self.pending_operations,
            "failed_operations": self.failed_operations,
            "is_currently_syncing": self.is_currently_syncing,
            "sync_error": self.sync_error,
            "state": self.state.value,
        }


@dataclass
class CoordinatorStatus:
    is_online: bool
    last_online_at: Optional[datetime]
    pending_operations: int
    sync_in_progress: bool
    cache_age_minutes: Optional[float]
    session_restored: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_online": self.is_online,
            "last_online_at": self.last_online_at.isoformat() if self.last_online_at else None,
            "pending_operations": self.pending_operations,
            "sync_in_progress": self.sync_in_progress,
            "cache_age_minutes": (
                round(self.cache_age_minutes, 1) if self.cache_age_minutes is not None else None
            ),
            "session_restored": self.session_restored,
        }


@dataclass
class MenuLoadResult:
    """Result of a cache-first menu load."""
    source: str
    snapshot: Optional[CachedMenuSnapshot] = None

    @property
    def has_cache(self) -> bool:
        return self.snapshot is not None


NO_CACHE = MenuLoadResult(source="none")
