"""
Relay Client
============

HTTP client for the producer side of the relay.

All calls are blocking `requests` calls pushed onto worker threads, so the
event loop (throttle decisions, detector ticks) never waits on the network.
Every call has a bounded timeout; failures surface as RelayError.
"""

import asyncio
import logging
from typing import Optional

import requests


logger = logging.getLogger(__name__)


class RelayError(Exception):
    """Raised when the relay rejects a request or cannot be reached."""
    pass


class RelayClient:
    """
    Client for the relay's ingress and violation endpoints.

    Attributes:
        base_url: Relay base URL (e.g. http://192.168.1.100:3000)
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        base_url: str = "http://localhost:3000",
        timeout: float = 5.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def update_base_url(self, base_url: str) -> None:
        self.base_url = base_url.rstrip("/")
        logger.info(f"Relay URL updated to: {self.base_url}")

    async def send_frame(self, jpeg: bytes) -> int:
        """
        Upload one JPEG frame.

        Returns:
            Frame sequence number assigned by the relay

        Raises:
            RelayError: On network failure or non-200 response
        """
        data = await self._post(
            "/api/frame",
            data=jpeg,
            headers={"Content-Type": "image/jpeg"},
        )
        try:
            return int(data["frameId"])
        except (KeyError, TypeError, ValueError) as e:
            raise RelayError(f"Malformed frame response: {e}")

    async def send_violation(self, category: str, message: str, timestamp: int) -> None:
        """Report a raised violation to the relay."""
        await self._post(
            "/api/violation",
            json={"category": category, "message": message, "timestamp": timestamp},
        )

    async def clear_violation(self) -> None:
        """Tell the relay all violations are cleared."""
        await self._post("/api/violation/clear", json={})

    def close(self) -> None:
        self._session.close()

    async def _post(self, path: str, **kwargs) -> dict:
        return await asyncio.to_thread(self._post_sync, path, **kwargs)

    def _post_sync(self, path: str, **kwargs) -> dict:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.post(url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise RelayError(str(e)) from e

        if response.status_code != 200:
            raise RelayError(f"HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise RelayError(f"Invalid JSON from relay: {e}") from e
