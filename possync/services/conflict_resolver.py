"""
conflict_resolver.py - Pluggable conflict-resolution slot

When the server answers an order push with its own diverging copy, the
resolver decides which version wins. It only decides; the sync manager
enacts the decision.
"""

import logging
from typing import Any, Callable, Dict, Optional

from .models import ConflictResolution, ConflictStrategy

logger = logging.getLogger("ConflictResolver")

DEFAULT_RESOLUTION = ConflictResolution(
    strategy=ConflictStrategy.SERVER_WINS,
    reason="server data preferred",
)

ResolverFn = Callable[[Dict[str, Any], Dict[str, Any]], ConflictResolution]


class ConflictResolver:
    """Stateless strategy slot; defaults to SERVER_WINS."""

    def __init__(self, resolver: Optional[ResolverFn] = None):
        self._resolver = resolver

    def set_resolver(self, resolver: Optional[ResolverFn]):
        """Install a custom resolver, or None to restore the default."""
        self._resolver = resolver

    @property
    def has_custom_resolver(self) -> bool:
        return self._resolver is not None

    def resolve(self, local_data: Dict[str, Any], server_data: Dict[str, Any]) -> ConflictResolution:
        if self._resolver is None:
            return DEFAULT_RESOLUTION

        try:
            resolution = self._resolver(local_data, server_data)
        except Exception as e:
            logger.error(f"Custom conflict resolver failed, using default: {e}")
            return DEFAULT_RESOLUTION

        if not isinstance(resolution, ConflictResolution):
            logger.error(f"Custom conflict resolver returned {type(resolution).__name__}, using default")
            return DEFAULT_RESOLUTION

        return resolution


def merge_payloads(local_data: Dict[str, Any], server_data: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow merge where local fields override the server's."""
    return {**server_data, **local_data}
