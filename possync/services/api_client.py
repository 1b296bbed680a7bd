"""
api_client.py - Remote POS API transport

Thin aiohttp client for the calls the sync core makes. HTTP status codes
come back as results; network failures and timeouts propagate as
exceptions so callers can count them as failed deliveries.
"""

import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from .exceptions import MenuFetchError

logger = logging.getLogger("PosApiClient")


class PosApiClient:
    """Async client for the remote POS API."""

    def __init__(self, base_url: str, api_token: str = "", timeout: float = 30.0):
        self.base_url = base_url.rstrip('/')
        self.api_token = api_token
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Send a request and normalise the response.

        Returns:
            Dict with ``ok``, ``status`` and the decoded JSON body as ``data``
        """
        url = f"{self.base_url}{path}"
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.timeout)

        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.request(
                method,
                url,
                json=payload,
                headers=self._headers(),
            ) as response:
                text = await response.text()
                try:
                    data = json.loads(text) if text else None
                except ValueError:
                    data = None

                ok = 200 <= response.status < 300
                if not ok:
                    logger.warning(f"{method} {path} failed with status {response.status}")

                return {"ok": ok, "status": response.status, "data": data}

    # ==================== Orders ====================

    async def post_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Create an order; the server treats the order id as an idempotency key."""
        return await self._request("POST", "/orders", payload)

    async def update_order(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/orders/{payload['id']}", payload)

    async def update_order_status(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        order_id = payload.get("order_id") or payload["id"]
        return await self._request("PATCH", f"/orders/{order_id}/status", payload)

    # ==================== Payments ====================

    async def create_payment(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/payments", payload)

    # ==================== Menu ====================

    async def get_menu(self) -> Dict[str, Any]:
        """
        Fetch the full menu graph.

        Raises:
            MenuFetchError: on a non-success response
        """
        result = await self._request("GET", "/menu/ordering")
        if not result["ok"]:
            raise MenuFetchError(f"Failed to fetch menu: {result['status']}", status=result["status"])
        return result["data"] or {}

    # ==================== Health ====================

    async def heartbeat(self) -> bool:
        """Lightweight reachability check; never raises."""
        try:
            result = await self._request("GET", "/health", timeout=5)
            return result["ok"]
        except Exception as e:
            logger.debug(f"Heartbeat error: {e}")
            return False
