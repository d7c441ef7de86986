"""
Bus client - aiohttp client for the coordinator's one-shot bus
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://127.0.0.1:8765"


class BusError(Exception):
    """The coordinator answered {ok: false} or could not be reached"""


def to_ws_url(base_url: str, path: str) -> str:
    base = base_url.rstrip("/")
    if base.startswith("https://"):
        base = "wss://" + base[len("https://") :]
    elif base.startswith("http://"):
        base = "ws://" + base[len("http://") :]
    return base + path


class BusClient:
    """Sends bus messages as the given tab; use as an async context manager"""

    def __init__(self, base_url: str = DEFAULT_BASE_URL, tab_id: Optional[int] = None, timeout_seconds: float = 15.0):
        self.base_url = base_url.rstrip("/")
        self.tab_id = tab_id
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("BusClient is not open")
        return self._session

    async def open(self) -> "BusClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> "BusClient":
        return await self.open()

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def request(self, message: dict[str, Any]) -> dict[str, Any]:
        """Send one message and return the payload of an {ok: true} reply"""
        headers = {"X-Tab-Id": str(self.tab_id)} if self.tab_id is not None else {}
        try:
            async with self.session.post(f"{self.base_url}/api/bus", json=message, headers=headers) as response:
                if response.status != 200:
                    text = await response.text()
                    raise BusError(f"Bus request failed ({response.status}): {text[:200]}")
                data = await response.json()
        except aiohttp.ClientError as e:
            raise BusError(f"Bus unreachable: {e}") from e

        if not isinstance(data, dict) or not data.get("ok"):
            error = data.get("error") if isinstance(data, dict) else None
            raise BusError(error or "Unknown error")
        return data
