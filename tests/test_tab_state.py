import asyncio
import json

import pytest
from pydantic import ValidationError

from models.chat import ChatHistoryItem
from models.tab_state import CodeSnapshot, ProblemContext, SelectionRange, TabState, coerce_snapshot
from services.storage import JsonFileStore, MemoryStore
from services.tab_state import HistoryStore, TabStateStore, history_key, tab_state_key

LONG_DESCRIPTION = "Given an array of integers nums and an integer target, return indices. " * 3


def test_confidence_is_recomputed_from_fields():
    context = ProblemContext(
        title="Two Sum",
        description=LONG_DESCRIPTION,
        constraints="2 <= nums.length <= 10^4",
        examples="Input: nums = [2,7,11,15]",
        confidence=0.01,
    )
    assert context.confidence == 1.0

    partial = ProblemContext.model_validate({"title": "Two Sum", "confidence": 0.99})
    assert partial.confidence == 0.3


def test_blank_code_is_not_a_snapshot():
    with pytest.raises(ValidationError):
        CodeSnapshot(source="monaco", code="  \n\t")

    assert coerce_snapshot({"source": "monaco", "code": "   "}) is None
    assert coerce_snapshot(None) is None
    assert coerce_snapshot({"source": "ace", "code": "x = 1"}).code == "x = 1"


def test_selection_must_be_ordered():
    with pytest.raises(ValidationError):
        SelectionRange(start=5, end=2)
    with pytest.raises(ValidationError):
        SelectionRange(start=-1, end=2)
    assert SelectionRange(start=2, end=2).end == 2


def test_tab_state_from_malformed_storage_is_empty():
    assert TabState.from_stored(None) == TabState()
    assert TabState.from_stored({"codeSnapshot": {"source": "vim", "code": "x"}}) == TabState()


@pytest.mark.asyncio
async def test_merge_replaces_only_present_fields(store):
    states = TabStateStore(store)
    await states.merge(3, {"context": {"title": "Two Sum"}})

    state = await states.merge(3, {"codeSnapshot": CodeSnapshot(source="textarea", code="print(1)")})

    assert state.context.title == "Two Sum"
    assert state.code_snapshot.code == "print(1)"
    stored = await store.get(tab_state_key(3))
    assert stored["codeSnapshot"]["source"] == "textarea"


@pytest.mark.asyncio
async def test_merge_with_null_clears_the_field(store):
    states = TabStateStore(store)
    await states.merge(3, {"context": {"title": "Two Sum"}})

    state = await states.merge(3, {"context": None})

    assert state.context is None


@pytest.mark.asyncio
async def test_history_skips_malformed_entries(store):
    await store.set(history_key(1), [{"role": "user", "content": "hi", "ts": 1}, {"role": "system"}, "junk"])

    items = await HistoryStore(store).get(1)

    assert [item.content for item in items] == ["hi"]


@pytest.mark.asyncio
async def test_concurrent_appends_do_not_lose_turns(store):
    history = HistoryStore(store, limit=30)

    await asyncio.gather(
        *[
            history.append_exchange(
                2,
                ChatHistoryItem(role="user", content=f"q{i}"),
                ChatHistoryItem(role="assistant", content=f"a{i}"),
            )
            for i in range(5)
        ]
    )

    assert len(await history.get(2)) == 10


@pytest.mark.asyncio
async def test_clear_removes_history(store):
    history = HistoryStore(store)
    await history.append_exchange(4, ChatHistoryItem(role="user", content="q"), ChatHistoryItem(role="assistant", content="a"))

    await history.clear(4)

    assert await history.get(4) == []


@pytest.mark.asyncio
async def test_forget_drops_only_idle_locks(store):
    history = HistoryStore(store)
    await history.clear(4)

    async with history._lock(5):
        history.forget(5)
        assert 5 in history._locks
    history.forget(4)

    assert 4 not in history._locks


@pytest.mark.asyncio
async def test_memory_store_copies_values():
    store = MemoryStore()
    value = {"a": [1]}
    await store.set("k", value)
    value["a"].append(2)

    loaded = await store.get("k")
    loaded["a"].append(3)

    assert await store.get("k") == {"a": [1]}


@pytest.mark.asyncio
async def test_json_file_store_persists_across_instances(tmp_path):
    path = tmp_path / "store.json"
    first = JsonFileStore(path)
    await first.set("coach:settings", {"model": "gpt-4o"})
    await first.set("coach:history:1", [])
    await first.remove("coach:history:1")

    second = JsonFileStore(path)

    assert await second.get("coach:settings") == {"model": "gpt-4o"}
    assert await second.get("coach:history:1") is None
    assert json.loads(path.read_text(encoding="utf-8")) == {"coach:settings": {"model": "gpt-4o"}}


def test_json_file_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")

    store = JsonFileStore(path)

    assert store.path == path
    assert asyncio.run(store.get("coach:settings")) is None
