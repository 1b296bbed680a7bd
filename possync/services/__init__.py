"""
Services module for the POS offline sync core.

Provides the local store, outbox, sync orchestration and the coordinator facade.
"""

from .local_db import LocalDatabase
from .network_monitor import NetworkMonitor, NetworkMode
from .outbox import OperationOutbox
from .conflict_resolver import ConflictResolver
from .sync_manager import SyncManager
from .offline_coordinator import OfflineCoordinator

__all__ = [
    'LocalDatabase',
    'NetworkMonitor',
    'NetworkMode',
    'OperationOutbox',
    'ConflictResolver',
    'SyncManager',
    'OfflineCoordinator',
]
