"""
bootstrap.py - Composition root

Builds one explicitly-owned instance of each sync component from a config.
Nothing here starts work; ``OfflineCoordinator.initialize()`` does that.
"""

from dataclasses import dataclass
from typing import Optional

from .config import SyncConfig
from .services.api_client import PosApiClient
from .services.background_scheduler import BackgroundScheduler
from .services.conflict_resolver import ConflictResolver
from .services.local_db import LocalDatabase
from .services.network_monitor import NetworkMonitor
from .services.offline_coordinator import OfflineCoordinator
from .services.session_store import SessionStore
from .services.sync_manager import SyncManager


@dataclass
class Services:
    config: SyncConfig
    db: LocalDatabase
    api: PosApiClient
    monitor: NetworkMonitor
    resolver: ConflictResolver
    sync_manager: SyncManager
    scheduler: BackgroundScheduler
    session_store: SessionStore
    coordinator: OfflineCoordinator


def build_services(
    config: SyncConfig,
    api: Optional[PosApiClient] = None,
    monitor: Optional[NetworkMonitor] = None,
) -> Services:
    db = LocalDatabase(config.db_path)
    api = api or PosApiClient(config.server_url, config.api_token, timeout=config.request_timeout)
    monitor = monitor or NetworkMonitor(max_failures_before_offline=config.max_failures_before_offline)
    resolver = ConflictResolver()

    sync_manager = SyncManager(db, api, monitor, config=config, resolver=resolver)
    scheduler = BackgroundScheduler()
    session_store = SessionStore(config.session_path, auto_save_interval=config.auto_save_interval)
    coordinator = OfflineCoordinator(sync_manager, session_store, scheduler, config=config)

    return Services(
        config=config,
        db=db,
        api=api,
        monitor=monitor,
        resolver=resolver,
        sync_manager=sync_manager,
        scheduler=scheduler,
        session_store=session_store,
        coordinator=coordinator,
    )
