"""
config.py - Runtime configuration for the sync core

Tunables that the sync core used to hard-code (retry cap, inter-item delay,
periodic interval) live here, together with connection settings read from
the environment or a ``secrets.env`` file.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"
CONFIG_DIR = BASE_DIR / "config"
SECRETS_PATH = CONFIG_DIR / "secrets.env"


def load_env_file(path):
    """Simple replacement for load_dotenv to avoid external dependency."""
    if not os.path.exists(path):
        return
    with open(path, 'r') as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith('#'):
                continue
            if '=' in line:
                key, val = line.split('=', 1)
                os.environ[key.strip()] = val.strip()


def configure_logging(level: int = logging.INFO):
    """Configure root logging once, from the runner."""
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@dataclass
class SyncConfig:
    """Sync core configuration."""

    server_url: str = "http://localhost:8000/api/v1"
    api_token: str = ""
    request_timeout: float = 30.0

    db_path: str = str(DATA_DIR / "pos_local.db")
    session_path: str = str(DATA_DIR / "session.json")

    max_retries: int = 3
    inter_item_delay_ms: int = 100
    operation_delay_ms: int = 50
    periodic_interval_ms: int = 30000
    auto_save_interval: float = 60.0
    max_failures_before_offline: int = 3

    cache_max_age_hours: int = 24
    data_retention_days: int = 30

    status_api_port: int = 8001
    status_bridge_port: int = 8002

    @property
    def inter_item_delay(self) -> float:
        return self.inter_item_delay_ms / 1000.0

    @property
    def operation_delay(self) -> float:
        return self.operation_delay_ms / 1000.0

    @property
    def periodic_interval(self) -> float:
        return self.periodic_interval_ms / 1000.0

    @classmethod
    def from_env(cls, secrets_path=SECRETS_PATH) -> "SyncConfig":
        """
        Build a config from ``POS_*`` environment variables.

        Values in ``secrets_path`` are loaded into the environment first.
        Unset variables keep their defaults.
        """
        load_env_file(secrets_path)
        defaults = cls()

        def _int(name, default):
            value = os.getenv(name)
            return int(value) if value else default

        def _float(name, default):
            value = os.getenv(name)
            return float(value) if value else default

        return cls(
            server_url=os.getenv("POS_SERVER_URL", defaults.server_url),
            api_token=os.getenv("POS_API_TOKEN", defaults.api_token),
            request_timeout=_float("POS_REQUEST_TIMEOUT", defaults.request_timeout),
            db_path=os.getenv("POS_DB_PATH", defaults.db_path),
            session_path=os.getenv("POS_SESSION_PATH", defaults.session_path),
            max_retries=_int("POS_MAX_RETRIES", defaults.max_retries),
            inter_item_delay_ms=_int("POS_INTER_ITEM_DELAY_MS", defaults.inter_item_delay_ms),
            operation_delay_ms=_int("POS_OPERATION_DELAY_MS", defaults.operation_delay_ms),
            periodic_interval_ms=_int("POS_PERIODIC_INTERVAL_MS", defaults.periodic_interval_ms),
            auto_save_interval=_float("POS_AUTO_SAVE_INTERVAL", defaults.auto_save_interval),
            max_failures_before_offline=_int(
                "POS_MAX_FAILURES_BEFORE_OFFLINE", defaults.max_failures_before_offline
            ),
            cache_max_age_hours=_int("POS_CACHE_MAX_AGE_HOURS", defaults.cache_max_age_hours),
            data_retention_days=_int("POS_DATA_RETENTION_DAYS", defaults.data_retention_days),
            status_api_port=_int("POS_STATUS_API_PORT", defaults.status_api_port),
            status_bridge_port=_int("POS_STATUS_BRIDGE_PORT", defaults.status_bridge_port),
        )
