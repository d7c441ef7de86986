import asyncio

import pytest

from fakes import FakeCompletions, RecordingSink
from models.chat import ChatHistoryItem, StreamRequest
from services.config_manager import ConfigManager
from services.errors import EmptyInput, InvalidTab, MissingCredential, ProviderFailure, SessionBusy
from services.session_manager import SessionManager, SessionRegistry
from services.tab_state import HistoryStore, TabStateStore, history_key, tab_state_key


def build_manager(store, completions):
    config = ConfigManager(store)
    tab_states = TabStateStore(store)
    history = HistoryStore(store)
    manager = SessionManager(config, tab_states, history, SessionRegistry(), completions)
    return manager, config, tab_states, history


async def with_key(store):
    await ConfigManager(store).save_settings({"apiKey": "sk-test-123456"})


def request(text="How do I start?", tab_id=7, request_id="r1", **extra):
    return StreamRequest(tab_id=tab_id, request_id=request_id, text=text, **extra)


async def wait_for(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_successful_session_streams_chunks_and_persists(store, completions, sink):
    await with_key(store)
    manager, _, _, history = build_manager(store, completions)

    await manager.start(request(), sink)

    assert sink.types == ["STREAM_START", "STREAM_CHUNK", "STREAM_CHUNK", "STREAM_DONE"]
    assert [event.chunk for event in sink.events[1:3]] == ["Hello", " there"]
    done = sink.events[-1]
    assert done.response == "Hello there"
    assert [(item.role, item.content) for item in done.history] == [
        ("user", "How do I start?"),
        ("assistant", "Hello there"),
    ]
    assert len(await history.get(7)) == 2
    assert len(manager.registry) == 0


@pytest.mark.asyncio
async def test_every_event_carries_the_request_id(store, completions, sink):
    await with_key(store)
    manager, *_ = build_manager(store, completions)

    await manager.start(request(request_id="abc"), sink)

    assert {event.request_id for event in sink.events} == {"abc"}


@pytest.mark.asyncio
async def test_blank_text_raises_before_start(store, completions, sink):
    await with_key(store)
    manager, *_ = build_manager(store, completions)

    with pytest.raises(EmptyInput):
        await manager.start(request(text="   \n"), sink)

    assert sink.events == []
    assert len(manager.registry) == 0
    assert completions.calls == []


@pytest.mark.asyncio
async def test_missing_tab_and_request_id_are_invalid(store, completions, sink):
    await with_key(store)
    manager, *_ = build_manager(store, completions)

    with pytest.raises(InvalidTab):
        await manager.start(request(tab_id=None), sink)
    with pytest.raises(InvalidTab, match="Invalid stream session."):
        await manager.start(request(request_id=""), sink)
    assert sink.events == []


@pytest.mark.asyncio
async def test_missing_credential_raises(store, completions, sink):
    manager, *_ = build_manager(store, completions)

    with pytest.raises(MissingCredential, match="Missing API key"):
        await manager.start(request(), sink)
    assert sink.events == []


@pytest.mark.asyncio
async def test_history_is_capped_at_thirty(store, completions, sink):
    await with_key(store)
    manager, _, _, history = build_manager(store, completions)
    seeded = [ChatHistoryItem(role="user" if i % 2 == 0 else "assistant", content=f"m{i}") for i in range(29)]
    await store.set(history_key(7), [item.to_wire() for item in seeded])

    await manager.start(request(text="newest"), sink)

    stored = await history.get(7)
    assert len(stored) == 30
    assert [item.content for item in stored[-2:]] == ["newest", "Hello there"]
    assert stored[0].content == "m1"


@pytest.mark.asyncio
async def test_cancel_mid_stream_leaves_history_untouched(store, sink):
    await with_key(store)
    block = asyncio.Event()
    completions = FakeCompletions(chunks=["partial"], block=block)
    manager, _, _, _ = build_manager(store, completions)
    await store.set(history_key(7), [{"role": "user", "content": "old", "ts": 1}])
    before = await store.get(history_key(7))

    task = asyncio.create_task(manager.start(request(), sink))
    await wait_for(lambda: "STREAM_CHUNK" in sink.types)
    assert manager.cancel(7, "r1") is True
    await task

    assert sink.types == ["STREAM_START", "STREAM_CHUNK", "STREAM_ERROR"]
    assert sink.events[-1].error == "Request canceled."
    assert await store.get(history_key(7)) == before
    assert len(manager.registry) == 0


@pytest.mark.asyncio
async def test_cancel_is_idempotent_and_ignores_unknown_sessions(store, sink):
    await with_key(store)
    block = asyncio.Event()
    manager, *_ = build_manager(store, FakeCompletions(chunks=["x"], block=block))

    assert manager.cancel(7, "nope") is False
    assert manager.cancel(None, "r1") is False

    task = asyncio.create_task(manager.start(request(), sink))
    await wait_for(lambda: "STREAM_CHUNK" in sink.types)
    manager.cancel(7, "r1")
    manager.cancel(7, "r1")
    await task
    assert manager.cancel(7, "r1") is False

    assert sink.types.count("STREAM_ERROR") == 1


@pytest.mark.asyncio
async def test_second_session_on_same_tab_is_busy(store, sink):
    await with_key(store)
    block = asyncio.Event()
    manager, *_ = build_manager(store, FakeCompletions(chunks=["x"], block=block))

    first = asyncio.create_task(manager.start(request(request_id="r1"), sink))
    await wait_for(lambda: len(manager.registry) == 1)

    other = RecordingSink()
    with pytest.raises(SessionBusy):
        await manager.start(request(request_id="r2"), other)
    assert other.events == []

    block.set()
    await first
    assert sink.types[-1] == "STREAM_DONE"


@pytest.mark.asyncio
async def test_provider_failure_becomes_stream_error(store, sink):
    await with_key(store)
    completions = FakeCompletions(chunks=["half"], error=ProviderFailure("openai network error: boom"))
    manager, _, _, history = build_manager(store, completions)

    await manager.start(request(), sink)

    assert sink.types == ["STREAM_START", "STREAM_CHUNK", "STREAM_ERROR"]
    assert sink.events[-1].error == "openai network error: boom"
    assert await history.get(7) == []


@pytest.mark.asyncio
async def test_empty_response_is_a_failure(store, sink):
    await with_key(store)
    manager, _, _, history = build_manager(store, FakeCompletions(chunks=["  ", "\n"]))

    await manager.start(request(), sink)

    assert sink.types[-1] == "STREAM_ERROR"
    assert await history.get(7) == []


@pytest.mark.asyncio
async def test_long_provider_messages_are_truncated(store, sink):
    await with_key(store)
    manager, *_ = build_manager(store, FakeCompletions(chunks=[], error=ProviderFailure("x" * 2000)))

    await manager.start(request(), sink)

    assert len(sink.events[-1].error) == 500


@pytest.mark.asyncio
async def test_request_hints_win_over_stored_state(store, completions, sink):
    await with_key(store)
    manager, _, tab_states, _ = build_manager(store, completions)
    await tab_states.merge(
        7,
        {
            "context": {"title": "Stored Problem", "url": "https://x"},
            "codeSnapshot": {"source": "monaco", "code": "stored_code()"},
        },
    )

    await manager.start(
        request(
            context={"title": "Hinted Problem", "url": "https://y"},
            code_snapshot={"source": "textarea", "code": "   "},
        ),
        sink,
    )

    prompt = completions.calls[0]["system_prompt"]
    assert "Title: Hinted Problem" in prompt
    assert "Stored Problem" not in prompt
    # A blank code hint counts as absent, so the stored snapshot is used.
    assert "stored_code()" in prompt


@pytest.mark.asyncio
async def test_persona_mode_overrides_coaching_style(store, completions, sink):
    await with_key(store)
    manager, *_ = build_manager(store, completions)

    await manager.start(request(persona_mode="collaborator"), sink)

    assert completions.calls[0]["system_prompt"].startswith("You are a collaborative coding partner.")


@pytest.mark.asyncio
async def test_prior_history_is_sent_before_the_new_turn(store, completions, sink):
    await with_key(store)
    manager, *_ = build_manager(store, completions)
    await store.set(
        history_key(7),
        [{"role": "user", "content": "q1", "ts": 1}, {"role": "assistant", "content": "a1", "ts": 2}],
    )

    await manager.start(request(text="q2"), sink)

    assert completions.calls[0]["messages"] == [
        {"role": "user", "content": "q1"},
        {"role": "assistant", "content": "a1"},
        {"role": "user", "content": "q2"},
    ]


@pytest.mark.asyncio
async def test_token_usage_is_recorded(store, completions, sink):
    await with_key(store)
    manager, config, *_ = build_manager(store, completions)

    await manager.start(request(), sink)

    counter = (await config.get_settings()).token_counter
    assert (counter.prompt_tokens, counter.completion_tokens, counter.total_tokens) == (10, 5, 15)


@pytest.mark.asyncio
async def test_close_tab_mid_stream_removes_keys_and_later_cancel_is_silent(store, sink):
    await with_key(store)
    block = asyncio.Event()
    manager, _, tab_states, history = build_manager(store, FakeCompletions(chunks=["x"], block=block))
    await tab_states.merge(7, {"context": {"title": "Two Sum"}})
    await store.set(history_key(7), [{"role": "user", "content": "old", "ts": 1}])

    task = asyncio.create_task(manager.start(request(), sink))
    await wait_for(lambda: "STREAM_CHUNK" in sink.types)
    await manager.close_tab(7)
    await task

    assert sink.events[-1].error == "Request canceled."
    assert await store.get(history_key(7)) is None
    assert await store.get(tab_state_key(7)) is None
    assert manager.cancel(7, "r1") is False
    assert 7 not in history._locks


@pytest.mark.asyncio
async def test_launch_reports_refusals_on_the_sink(store, completions, sink):
    manager, *_ = build_manager(store, completions)

    await manager.launch(request(), sink)

    assert sink.types == ["STREAM_ERROR"]
    assert sink.events[0].error == "Missing API key. Add it in Settings."
    assert sink.events[0].request_id == "r1"


@pytest.mark.asyncio
async def test_shutdown_cancels_launched_sessions(store, sink):
    await with_key(store)
    block = asyncio.Event()
    manager, *_ = build_manager(store, FakeCompletions(chunks=["x"], block=block))

    manager.launch(request(), sink)
    await wait_for(lambda: "STREAM_CHUNK" in sink.types)
    await manager.shutdown()

    assert sink.types[-1] == "STREAM_ERROR"
    assert len(manager.registry) == 0


class CancelingSink(RecordingSink):
    """Fires a cancel for the session when the given event type goes out"""

    def __init__(self, manager, on_type, deferred=False):
        super().__init__()
        self.manager = manager
        self.on_type = on_type
        self.deferred = deferred

    async def send(self, event):
        await super().send(event)
        if event.type.value != self.on_type:
            return
        if self.deferred:
            asyncio.get_running_loop().call_soon(self.manager.cancel, 7, event.request_id)
        else:
            self.manager.cancel(7, event.request_id)


@pytest.mark.asyncio
async def test_cancel_before_provider_call_skips_the_stream(store, completions):
    await with_key(store)
    manager, *_ = build_manager(store, completions)
    await store.set(history_key(7), [{"role": "user", "content": "old", "ts": 1}])
    before = await store.get(history_key(7))
    sink = CancelingSink(manager, "STREAM_START")

    await manager.start(request(), sink)

    assert sink.types == ["STREAM_START", "STREAM_ERROR"]
    assert sink.events[-1].error == "Request canceled."
    assert completions.calls == []
    assert await store.get(history_key(7)) == before


@pytest.mark.asyncio
async def test_cancel_after_last_chunk_is_not_persisted(store):
    await with_key(store)
    manager, *_ = build_manager(store, FakeCompletions(chunks=["only chunk"]))
    # Lands after the reader has finished but before the result is saved.
    sink = CancelingSink(manager, "STREAM_CHUNK", deferred=True)

    await manager.start(request(), sink)

    assert sink.types == ["STREAM_START", "STREAM_CHUNK", "STREAM_ERROR"]
    assert sink.events[-1].error == "Request canceled."
    assert await store.get(history_key(7)) is None
    assert len(manager.registry) == 0
