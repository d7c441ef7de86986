"""
Session Manager - Streaming request lifecycle per tab

One completion stream per live (tab, request) pair. Events for a session go
out in order: STREAM_START, any number of STREAM_CHUNK, then exactly one of
STREAM_DONE or STREAM_ERROR.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterator, Optional, Protocol

from pydantic import ValidationError

from models.chat import ChatHistoryItem, StreamEvent, StreamEventType, StreamRequest
from models.settings import Settings
from models.tab_state import CodeSnapshot, ProblemContext, coerce_snapshot

from .config_manager import ConfigManager
from .errors import AssistantError, Canceled, EmptyInput, InvalidTab, MissingCredential, ProviderFailure, SessionBusy
from .llm_service import CompletionFactory, CompletionStream
from .prompt_builder import build_messages, build_system_prompt
from .tab_state import HistoryStore, TabStateStore

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Destination of one client's stream events"""

    async def send(self, event: StreamEvent) -> None: ...


@dataclass(eq=False)
class StreamSession:
    """A live request: the abort flag plus the task reading the provider stream"""

    tab_id: int
    request_id: str
    aborted: bool = False
    reader: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def key(self) -> tuple[int, str]:
        return (self.tab_id, self.request_id)

    def abort(self) -> None:
        self.aborted = True
        if self.reader is not None and not self.reader.done():
            self.reader.cancel()


class SessionRegistry:
    """Live sessions keyed by (tab id, request id)"""

    def __init__(self):
        self._sessions: dict[tuple[int, str], StreamSession] = {}

    def register(self, session: StreamSession) -> None:
        self._sessions[session.key] = session

    def get(self, tab_id: int, request_id: str) -> Optional[StreamSession]:
        return self._sessions.get((tab_id, request_id))

    def remove(self, session: StreamSession) -> None:
        if self._sessions.get(session.key) is session:
            del self._sessions[session.key]

    def for_tab(self, tab_id: int) -> list[StreamSession]:
        return [session for session in self._sessions.values() if session.tab_id == tab_id]

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: object) -> bool:
        return key in self._sessions

    def __iter__(self) -> Iterator[StreamSession]:
        return iter(list(self._sessions.values()))


class SessionManager:
    """Start, stream, persist and cancel chat completions"""

    def __init__(
        self,
        config_manager: ConfigManager,
        tab_states: TabStateStore,
        history: HistoryStore,
        registry: SessionRegistry,
        completion_factory: CompletionFactory,
    ):
        self._config = config_manager
        self._tab_states = tab_states
        self._history = history
        self._registry = registry
        self._completions = completion_factory
        self._tasks: set[asyncio.Task] = set()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    # ========== Lifecycle ==========

    async def start(self, request: StreamRequest, sink: EventSink) -> None:
        """Run one session to its terminal event.

        Precondition failures raise before anything is registered or emitted.
        Everything after registration ends in exactly one terminal event.
        """
        user_text = (request.text or "").strip()
        if not user_text:
            raise EmptyInput()
        if request.tab_id is None:
            raise InvalidTab()
        if not request.request_id:
            raise InvalidTab("Invalid stream session.")

        settings = await self._config.get_settings()
        if not settings.has_credential:
            raise MissingCredential()
        if self._registry.for_tab(request.tab_id):
            raise SessionBusy()

        session = StreamSession(tab_id=request.tab_id, request_id=request.request_id)
        self._registry.register(session)
        logger.info("[SessionManager] Session started (tab=%s, request=%s)", session.tab_id, session.request_id)

        try:
            terminal = await self._run(session, request, user_text, settings, sink)
        except asyncio.CancelledError:
            if not session.aborted:
                raise
            terminal = StreamEvent.failed(session.request_id, Canceled.default_message)
        except AssistantError as e:
            terminal = StreamEvent.failed(session.request_id, e.message)
        except Exception as e:
            logger.exception("[SessionManager] Session failed (tab=%s, request=%s)", session.tab_id, session.request_id)
            terminal = StreamEvent.failed(session.request_id, ProviderFailure(str(e) or None).message)
        finally:
            self._registry.remove(session)

        if terminal.type == StreamEventType.ERROR:
            logger.info("[SessionManager] Session ended with error (request=%s): %s", session.request_id, terminal.error)
        await sink.send(terminal)

    async def _run(
        self,
        session: StreamSession,
        request: StreamRequest,
        user_text: str,
        settings: Settings,
        sink: EventSink,
    ) -> StreamEvent:
        await sink.send(StreamEvent.start(session.request_id))

        context, snapshot = await self._resolve_prompt_material(session.tab_id, request)
        history = await self._history.get(session.tab_id)
        system_prompt = build_system_prompt(settings, context, snapshot, request.persona_mode)
        messages = build_messages(history, user_text)

        if session.aborted:
            raise Canceled()

        stream = self._completions(settings).stream(system_prompt, messages)
        session.reader = asyncio.create_task(self._read(stream, session.request_id, sink))
        text = await session.reader

        # An abort that lands after the last chunk still wins over persistence.
        if session.aborted:
            raise Canceled()

        response = text.strip()
        if not response:
            raise ProviderFailure("The model returned an empty response.")

        updated = await self._history.append_exchange(
            session.tab_id,
            ChatHistoryItem(role="user", content=user_text),
            ChatHistoryItem(role="assistant", content=response),
        )
        await self._record_usage(stream)
        logger.info(
            "[SessionManager] Session done (tab=%s, request=%s, history=%d)",
            session.tab_id,
            session.request_id,
            len(updated),
        )
        return StreamEvent.done(session.request_id, updated, response)

    async def _read(self, stream: CompletionStream, request_id: str, sink: EventSink) -> str:
        """Forward each increment as one chunk event and return the whole text"""
        parts: list[str] = []
        async for chunk in stream:
            parts.append(chunk)
            await sink.send(StreamEvent.delta(request_id, chunk))
        return "".join(parts)

    async def _resolve_prompt_material(
        self,
        tab_id: int,
        request: StreamRequest,
    ) -> tuple[Optional[ProblemContext], Optional[CodeSnapshot]]:
        """Request hints first, then whatever the tab last published"""
        try:
            snapshot = coerce_snapshot(request.code_snapshot)
        except ValidationError:
            logger.warning("[SessionManager] Ignoring malformed code snapshot hint (tab=%s)", tab_id)
            snapshot = None

        context = request.context
        if context is None or snapshot is None:
            state = await self._tab_states.get(tab_id)
            context = context or state.context
            snapshot = snapshot or state.code_snapshot
        return context, snapshot

    async def _record_usage(self, stream: CompletionStream) -> None:
        usage = getattr(stream, "usage", None)
        if usage is None:
            return
        try:
            await self._config.record_usage(usage)
        except (OSError, RuntimeError) as e:
            # History is already persisted; a lost counter update is not a failed turn.
            logger.warning("[SessionManager] Failed to record token usage: %s", e)

    # ========== Cancellation ==========

    def cancel(self, tab_id: Optional[int], request_id: Optional[str]) -> bool:
        """Abort a live session; unknown pairs are ignored"""
        if tab_id is None or not request_id:
            return False
        session = self._registry.get(tab_id, request_id)
        if session is None:
            return False
        logger.info("[SessionManager] Cancel requested (tab=%s, request=%s)", tab_id, request_id)
        session.abort()
        return True

    async def close_tab(self, tab_id: int) -> None:
        """Abort the tab's live sessions, then drop its history and state"""
        for session in self._registry.for_tab(tab_id):
            session.abort()
        await self._history.clear(tab_id)
        self._history.forget(tab_id)
        await self._tab_states.clear(tab_id)
        logger.info("[SessionManager] Tab %s closed", tab_id)

    # ========== Task Ownership ==========

    def launch(self, request: StreamRequest, sink: EventSink) -> asyncio.Task:
        """Run `start` in the background, answering refused requests on the sink"""
        task = asyncio.create_task(self._start_or_refuse(request, sink))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _start_or_refuse(self, request: StreamRequest, sink: EventSink) -> None:
        try:
            await self.start(request, sink)
        except AssistantError as e:
            logger.info("[SessionManager] Request refused (request=%s): %s", request.request_id, e.message)
            await sink.send(StreamEvent.failed(request.request_id or None, e.message))

    async def shutdown(self) -> None:
        """Abort live sessions and wait for launched tasks to settle"""
        for session in self._registry:
            session.abort()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
