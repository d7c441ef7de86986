"""
Tab observer runtime - Scan loops and the coordinator control link
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Protocol

import aiohttp
from pydantic import ValidationError

from models.tab_state import ProblemContext, TabState

from .bus_client import BusClient, BusError, to_ws_url
from .page import PageQuery, PageSnapshot, SnapshotPage
from .pipeline import capture_code
from .publisher import Bus, ContextPublisher

logger = logging.getLogger(__name__)

SCAN_INTERVAL = 1.6
URL_INTERVAL = 0.9
MUTATION_DEBOUNCE = 0.5
RECONNECT_DELAY = 2.0


class PageUnavailable(Exception):
    """The page snapshot could not be read"""


OBSERVER_ERRORS = (BusError, PageUnavailable)


class PageSource(Protocol):
    async def load(self) -> PageQuery: ...


class SnapshotFileSource:
    """Page snapshots written to a JSON file by the in-page bridge.

    The parsed page is reused until the file changes, so a new page object
    means the page mutated.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._mtime: Optional[float] = None
        self._page: Optional[SnapshotPage] = None

    def _read(self) -> tuple[float, str]:
        stat = self.path.stat()
        if self._mtime == stat.st_mtime:
            return stat.st_mtime, ""
        return stat.st_mtime, self.path.read_text(encoding="utf-8")

    async def load(self) -> SnapshotPage:
        try:
            mtime, text = await asyncio.to_thread(self._read)
        except OSError as e:
            raise PageUnavailable(f"Cannot read {self.path}: {e}") from e
        if self._page is not None and mtime == self._mtime:
            return self._page
        try:
            snapshot = PageSnapshot.model_validate(json.loads(text))
        except (json.JSONDecodeError, ValidationError) as e:
            raise PageUnavailable(f"Malformed page snapshot in {self.path}: {e}") from e
        self._mtime = mtime
        self._page = SnapshotPage(snapshot)
        return self._page


class TabObserver:
    """Keeps the coordinator's view of one tab current"""

    def __init__(
        self,
        bus: Bus,
        source: PageSource,
        tab_id: int,
        scan_interval: float = SCAN_INTERVAL,
        url_interval: float = URL_INTERVAL,
        debounce: float = MUTATION_DEBOUNCE,
    ):
        self.tab_id = tab_id
        self.publisher = ContextPublisher(bus)
        self.scan_interval = scan_interval
        self.url_interval = url_interval
        self.debounce = debounce
        self._bus = bus
        self._source = source
        self._last_url: Optional[str] = None
        self._last_page: Optional[PageQuery] = None
        self._debounce_task: Optional[asyncio.Task] = None

    async def bootstrap(self) -> None:
        """Hydrate from the coordinator, then force one context and code publish"""
        response = await self._bus.request({"type": "GET_TAB_STATE", "tabId": self.tab_id})
        self.publisher.hydrate(TabState.from_stored(response.get("state")))

        page = await self._source.load()
        self._last_page = page
        self._last_url = page.url
        await self.publisher.publish_context(page, force=True)
        await self.publisher.publish_code(capture_code(page))

    async def _load(self) -> PageQuery:
        page = await self._source.load()
        if self._last_page is not None and page is not self._last_page:
            self.notify_mutation()
        self._last_page = page
        return page

    def notify_mutation(self) -> None:
        """Debounced context publish after the page changed"""
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._publish_after_debounce())

    async def _publish_after_debounce(self) -> None:
        await asyncio.sleep(self.debounce)
        try:
            await self.publisher.publish_context(await self._source.load(), force=False)
        except OBSERVER_ERRORS as e:
            logger.warning("[Observer] Context publish failed: %s", e)

    async def scan_once(self) -> bool:
        page = await self._load()
        return await self.publisher.publish_code(capture_code(page))

    async def check_url(self) -> bool:
        """Navigation forces a context publish"""
        page = await self._load()
        if page.url == self._last_url:
            return False
        self._last_url = page.url
        await self.publisher.publish_context(page, force=True)
        return True

    async def handle_rescan(self, command: dict[str, Any]) -> dict[str, Any]:
        context: Optional[ProblemContext]
        try:
            context = await self.publisher.publish_context(await self._source.load(), force=True)
        except OBSERVER_ERRORS as e:
            logger.warning("[Observer] Rescan failed: %s", e)
            context = None
        return {
            "type": "RESCAN_RESULT",
            "commandId": command.get("commandId"),
            "context": context.to_wire() if context else None,
        }

    async def _every(self, interval: float, step: Callable[[], Awaitable[Any]]) -> None:
        while True:
            try:
                await step()
            except OBSERVER_ERRORS as e:
                logger.warning("[Observer] %s failed: %s", step.__name__, e)
            await asyncio.sleep(interval)

    async def _control_link(self, bus: BusClient) -> None:
        url = to_ws_url(bus.base_url, f"/ws/tabs/{self.tab_id}")
        while True:
            try:
                async with bus.session.ws_connect(url, heartbeat=30) as ws:
                    logger.info("[Observer] Control link open for tab %s", self.tab_id)
                    async for message in ws:
                        if message.type == aiohttp.WSMsgType.ERROR:
                            break
                        if message.type != aiohttp.WSMsgType.TEXT:
                            continue
                        try:
                            data = json.loads(message.data)
                        except json.JSONDecodeError:
                            continue
                        if isinstance(data, dict) and data.get("type") == "RESCAN_CONTEXT":
                            await ws.send_json(await self.handle_rescan(data))
            except aiohttp.ClientError as e:
                logger.warning("[Observer] Control link failed: %s", e)
            await asyncio.sleep(RECONNECT_DELAY)

    async def run(self, stop: Optional[asyncio.Event] = None) -> None:
        """Bootstrap, then scan until `stop` is set"""
        await self.bootstrap()
        tasks = [
            asyncio.create_task(self._every(self.scan_interval, self.scan_once)),
            asyncio.create_task(self._every(self.url_interval, self.check_url)),
        ]
        if isinstance(self._bus, BusClient):
            tasks.append(asyncio.create_task(self._control_link(self._bus)))
        try:
            await (stop or asyncio.Event()).wait()
        finally:
            for task in tasks:
                task.cancel()
            if self._debounce_task is not None:
                self._debounce_task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
