"""
session_store.py - Session Persistence

Keeps the terminal's working session (open cart, selected table, staff
context) in a JSON file so a restart can pick up where it left off.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("SessionStore")


class SessionStore:
    """JSON-file session persistence with optional periodic auto-save."""

    def __init__(self, path: str, auto_save_interval: float = 60.0):
        self.path = Path(path)
        self.auto_save_interval = auto_save_interval
        self._auto_save_task: Optional[asyncio.Task] = None

    def load(self) -> Optional[Dict[str, Any]]:
        """Return the saved session, or None if there is none or it is unreadable."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load session from {self.path}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Ignoring malformed session file {self.path}")
            return None
        return data

    def save(self, data: Dict[str, Any]):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, 'w') as f:
            json.dump(data, f, default=str)
        os.replace(tmp_path, self.path)

    def delete(self):
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass

    # ==================== Auto-save ====================

    def start_auto_save(self, getter: Callable[[], Optional[Dict[str, Any]]]):
        """Periodically save whatever ``getter`` returns; requires a running loop."""
        if self._auto_save_task is not None and not self._auto_save_task.done():
            return
        self._auto_save_task = asyncio.get_running_loop().create_task(self._auto_save_loop(getter))

    def stop_auto_save(self):
        if self._auto_save_task is not None:
            self._auto_save_task.cancel()
            self._auto_save_task = None

    async def _auto_save_loop(self, getter):
        while True:
            await asyncio.sleep(self.auto_save_interval)
            try:
                data = getter()
                if data is not None:
                    self.save(data)
            except Exception as e:
                logger.error(f"Session auto-save failed: {e}")
