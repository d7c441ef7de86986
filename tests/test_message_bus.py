import asyncio

import pytest

from services.app_config import AppConfig
from services.container import build_services
from services.tab_state import history_key, tab_state_key


@pytest.fixture
def services(store, completions, tmp_path):
    config = AppConfig(data_dir=tmp_path, store="memory", rescan_timeout=0.2)
    return build_services(config, store=store, completion_factory=completions)


@pytest.mark.asyncio
async def test_settings_round_trip_is_normalized(services):
    saved = await services.bus.dispatch({"type": "SAVE_SETTINGS", "settings": {"temperature": 5, "apiKey": " k "}})
    loaded = await services.bus.dispatch({"type": "GET_SETTINGS"})

    assert saved["ok"] is True
    assert saved["settings"]["temperature"] == 1.0
    assert loaded["settings"]["apiKey"] == "k"


@pytest.mark.asyncio
async def test_unknown_type_is_reported(services):
    response = await services.bus.dispatch({"type": "LAUNCH_ROCKET"})

    assert response == {"ok": False, "error": "Unknown message type: LAUNCH_ROCKET"}


@pytest.mark.asyncio
async def test_context_update_requires_sender_tab(services):
    response = await services.bus.dispatch({"type": "CONTEXT_UPDATE", "context": {"title": "Two Sum"}})

    assert response == {"ok": False, "error": "Context update without tab."}


@pytest.mark.asyncio
async def test_context_update_persists_with_recomputed_confidence(services):
    response = await services.bus.dispatch(
        {"type": "CONTEXT_UPDATE", "context": {"title": "Two Sum", "confidence": 1}},
        sender_tab_id=5,
    )
    state = await services.bus.dispatch({"type": "GET_TAB_STATE"}, sender_tab_id=5)

    assert response["tabId"] == 5
    assert response["context"]["confidence"] == 0.3
    assert state["state"]["context"]["title"] == "Two Sum"


@pytest.mark.asyncio
async def test_blank_code_snapshot_keeps_the_stored_one(services):
    await services.bus.dispatch(
        {"type": "CODE_SNAPSHOT_UPDATE", "snapshot": {"source": "monaco", "code": "x = 1"}},
        sender_tab_id=5,
    )

    response = await services.bus.dispatch(
        {"type": "CODE_SNAPSHOT_UPDATE", "snapshot": {"source": "monaco", "code": "   "}},
        sender_tab_id=5,
    )

    assert response["ok"] is True
    assert response["snapshot"]["code"] == "x = 1"


@pytest.mark.asyncio
async def test_invalid_snapshot_is_a_validation_error(services):
    response = await services.bus.dispatch(
        {"type": "CODE_SNAPSHOT_UPDATE", "snapshot": {"source": "notepad", "code": "x"}},
        sender_tab_id=5,
    )

    assert response["ok"] is False
    assert response["error"].startswith("Invalid message")


@pytest.mark.asyncio
async def test_get_tab_state_without_tab(services):
    response = await services.bus.dispatch({"type": "GET_TAB_STATE"})

    assert response == {"ok": True, "tabId": None, "state": {"context": None, "codeSnapshot": None}}


@pytest.mark.asyncio
async def test_history_get_and_clear(services, store):
    await store.set(history_key(9), [{"role": "user", "content": "hi", "ts": 1}])

    history = await services.bus.dispatch({"type": "GET_CHAT_HISTORY", "tabId": 9})
    cleared = await services.bus.dispatch({"type": "CLEAR_CHAT_HISTORY", "tabId": 9})

    assert [item["content"] for item in history["history"]] == ["hi"]
    assert cleared == {"ok": True, "tabId": 9, "history": []}
    assert await store.get(history_key(9)) is None


@pytest.mark.asyncio
async def test_get_sender_tab(services):
    assert await services.bus.dispatch({"type": "GET_SENDER_TAB"}, sender_tab_id=12) == {"ok": True, "tabId": 12}


@pytest.mark.asyncio
async def test_tab_closed_removes_tab_keys(services, store):
    await services.bus.dispatch({"type": "CONTEXT_UPDATE", "context": {"title": "Two Sum"}}, sender_tab_id=3)
    await store.set(history_key(3), [{"role": "user", "content": "hi", "ts": 1}])

    response = await services.bus.dispatch({"type": "TAB_CLOSED", "tabId": 3})

    assert response == {"ok": True, "tabId": 3}
    assert await store.get(history_key(3)) is None
    assert await store.get(tab_state_key(3)) is None


@pytest.mark.asyncio
async def test_rescan_without_observer_fails(services):
    response = await services.bus.dispatch({"type": "RESCAN_CONTEXT", "tabId": 4})

    assert response["ok"] is False
    assert "No observer" in response["error"]


@pytest.mark.asyncio
async def test_rescan_forwards_to_observer_and_returns_its_context(services):
    sent = []

    async def send_json(message):
        sent.append(message)
        asyncio.get_running_loop().call_soon(
            services.observers.resolve,
            {"type": "RESCAN_RESULT", "commandId": message["commandId"], "context": {"title": "Fresh"}},
        )

    services.observers.connect(4, send_json)

    response = await services.bus.dispatch({"type": "RESCAN_CONTEXT"}, sender_tab_id=4)

    assert sent[0]["type"] == "RESCAN_CONTEXT"
    assert response["ok"] is True
    assert response["context"]["title"] == "Fresh"


@pytest.mark.asyncio
async def test_rescan_times_out(services):
    async def send_json(message):
        return None

    services.observers.connect(4, send_json)

    response = await services.bus.dispatch({"type": "RESCAN_CONTEXT", "tabId": 4})

    assert response["ok"] is False
    assert "did not answer" in response["error"]


@pytest.mark.asyncio
async def test_context_update_with_wrong_field_types_is_a_validation_error(services):
    response = await services.bus.dispatch(
        {"type": "CONTEXT_UPDATE", "context": {"title": 123, "description": ["x"]}},
        sender_tab_id=5,
    )

    assert response["ok"] is False
    assert response["error"].startswith("Invalid message")
    assert "context.title" in response["error"]


@pytest.mark.asyncio
async def test_rescan_result_with_wrong_field_types_fails_the_rescan(services):
    async def send_json(message):
        asyncio.get_running_loop().call_soon(
            services.observers.resolve,
            {"type": "RESCAN_RESULT", "commandId": message["commandId"], "context": {"title": 123}},
        )

    services.observers.connect(4, send_json)

    response = await services.bus.dispatch({"type": "RESCAN_CONTEXT", "tabId": 4})

    assert response == {"ok": False, "error": "Invalid message: title: Input should be a valid string"}
