"""
network_monitor.py - Network Monitor

This module tracks the terminal's online/offline state. It never polls:
transitions arrive as events, either directly from the host platform
(``set_online`` / ``set_offline``) or from the runner's heartbeat outcome.
"""

import logging
from enum import Enum
from typing import Callable, List, Optional
from datetime import datetime, timezone

logger = logging.getLogger("NetworkMonitor")


class NetworkMode(Enum):
    """Terminal connectivity modes."""
    ONLINE = "online"
    OFFLINE = "offline"
    UNKNOWN = "unknown"  # No transition observed yet


class NetworkMonitor:
    """
    Observes connectivity transitions and notifies subscribers.

    Reconnect subscribers fire only on an OFFLINE/UNKNOWN -> ONLINE
    transition; they are where sync triggers hook in.
    """

    def __init__(self, max_failures_before_offline: int = 3, initial_online: Optional[bool] = None):
        self.current_mode: NetworkMode = NetworkMode.UNKNOWN
        self.last_online_at: Optional[datetime] = None
        self.last_offline_at: Optional[datetime] = None
        self.consecutive_failures: int = 0
        self.max_failures_before_offline = max_failures_before_offline

        self._on_mode_change_callbacks: List[Callable] = []
        self._on_reconnect_callbacks: List[Callable] = []
        self._on_disconnect_callbacks: List[Callable] = []

        if initial_online is not None:
            self.current_mode = NetworkMode.ONLINE if initial_online else NetworkMode.OFFLINE
            if initial_online:
                self.last_online_at = datetime.now(timezone.utc)

    # ==================== Mode Management ====================

    def get_current_mode(self) -> NetworkMode:
        return self.current_mode

    def is_online(self) -> bool:
        return self.current_mode == NetworkMode.ONLINE

    def _set_mode(self, new_mode: NetworkMode, reason: str = ""):
        """
        Set the mode and trigger callbacks.

        Args:
            new_mode: The new mode to set
            reason: Reason for the mode change (for logging)
        """
        if new_mode == self.current_mode:
            return

        old_mode = self.current_mode
        self.current_mode = new_mode

        if new_mode == NetworkMode.ONLINE:
            self.last_online_at = datetime.now(timezone.utc)
        elif new_mode == NetworkMode.OFFLINE:
            self.last_offline_at = datetime.now(timezone.utc)

        logger.info(f"Mode changed: {old_mode.value} -> {new_mode.value} | Reason: {reason}")

        self._fire(self._on_mode_change_callbacks, "Mode change", old_mode, new_mode, reason)

        if new_mode == NetworkMode.ONLINE:
            self._fire(self._on_reconnect_callbacks, "Reconnect")
        elif new_mode == NetworkMode.OFFLINE:
            self._fire(self._on_disconnect_callbacks, "Disconnect")

    def _fire(self, callbacks: List[Callable], label: str, *args):
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception as e:
                logger.error(f"{label} callback error: {e}")

    # ==================== Transition Events ====================

    def set_online(self, reason: str = "Connection restored"):
        """Platform reported that connectivity is available."""
        self.consecutive_failures = 0
        self._set_mode(NetworkMode.ONLINE, reason)

    def set_offline(self, reason: str = "Connection lost"):
        """Platform reported that connectivity is gone."""
        self.consecutive_failures = self.max_failures_before_offline
        self._set_mode(NetworkMode.OFFLINE, reason)

    # ==================== Heartbeat Handling ====================

    def on_heartbeat_success(self):
        """Called when a heartbeat to the server succeeds."""
        self.consecutive_failures = 0
        if self.current_mode != NetworkMode.ONLINE:
            self._set_mode(NetworkMode.ONLINE, "Heartbeat succeeded")

    def on_heartbeat_failure(self, error: str = ""):
        """
        Called when a heartbeat to the server fails.

        Args:
            error: Optional error message
        """
        self.consecutive_failures += 1

        logger.warning(
            f"Heartbeat failed ({self.consecutive_failures}/{self.max_failures_before_offline}): {error}"
        )

        if self.consecutive_failures >= self.max_failures_before_offline:
            self._set_mode(
                NetworkMode.OFFLINE,
                f"Connection lost after {self.consecutive_failures} failures"
            )

    # ==================== Callbacks ====================

    def _subscribe(self, callbacks: List[Callable], callback: Callable) -> Callable[[], None]:
        callbacks.append(callback)

        def unsubscribe():
            if callback in callbacks:
                callbacks.remove(callback)

        return unsubscribe

    def on_mode_change(self, callback: Callable) -> Callable[[], None]:
        """
        Register a callback for mode changes.

        Callback signature: (old_mode: NetworkMode, new_mode: NetworkMode, reason: str)
        """
        return self._subscribe(self._on_mode_change_callbacks, callback)

    def on_reconnect(self, callback: Callable) -> Callable[[], None]:
        """Register a no-argument callback for when connection is restored."""
        return self._subscribe(self._on_reconnect_callbacks, callback)

    def on_disconnect(self, callback: Callable) -> Callable[[], None]:
        """Register a no-argument callback for when connection is lost."""
        return self._subscribe(self._on_disconnect_callbacks, callback)

    # ==================== Status Report ====================

    def get_status(self) -> dict:
        return {
            "mode": self.current_mode.value,
            "is_online": self.is_online(),
            "last_online_at": self.last_online_at.isoformat() if self.last_online_at else None,
            "consecutive_failures": self.consecutive_failures,
        }
