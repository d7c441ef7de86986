import json

import pytest

from models.tab_state import CodeSnapshot, ProblemContext, TabState
from observer.page import SnapshotPage
from observer.publisher import ContextPublisher
from observer.runner import PageUnavailable, SnapshotFileSource, TabObserver

DESCRIPTION = "Return the length of the longest substring without repeating characters. " * 3


class FakeBus:
    def __init__(self, state=None):
        self.sent = []
        self.state = state or {"context": None, "codeSnapshot": None}

    async def request(self, message):
        self.sent.append(message)
        if message["type"] == "GET_TAB_STATE":
            return {"ok": True, "tabId": message.get("tabId"), "state": self.state}
        return {"ok": True}

    def of_type(self, message_type):
        return [message for message in self.sent if message["type"] == message_type]


class MutablePageSource:
    def __init__(self, page):
        self.page = page

    async def load(self):
        return self.page


def problem_page(url="https://leetcode.com/problems/longest/", title="Longest Substring", textarea=""):
    html = f"<h1>{title}</h1><main>{DESCRIPTION}</main>"
    if textarea:
        html += f"<textarea>{textarea}</textarea>"
    return SnapshotPage.from_html(html, url=url)


@pytest.mark.asyncio
async def test_unchanged_signature_is_suppressed():
    bus = FakeBus()
    publisher = ContextPublisher(bus)

    await publisher.publish_context(problem_page())
    await publisher.publish_context(problem_page())

    assert len(bus.of_type("CONTEXT_UPDATE")) == 1
    assert publisher.status_text == "Ready"


@pytest.mark.asyncio
async def test_force_publishes_even_when_unchanged():
    bus = FakeBus()
    publisher = ContextPublisher(bus)

    await publisher.publish_context(problem_page())
    await publisher.publish_context(problem_page(), force=True)

    assert len(bus.of_type("CONTEXT_UPDATE")) == 2


@pytest.mark.asyncio
async def test_changed_title_publishes():
    bus = FakeBus()
    publisher = ContextPublisher(bus)

    await publisher.publish_context(problem_page())
    await publisher.publish_context(problem_page(title="Longest Substring II"))

    assert len(bus.of_type("CONTEXT_UPDATE")) == 2


@pytest.mark.asyncio
async def test_hydration_seeds_the_signature():
    stored = ProblemContext(
        site="leetcode",
        url="https://leetcode.com/problems/longest/",
        title="Longest Substring",
        description=DESCRIPTION.strip(),
    )
    bus = FakeBus()
    publisher = ContextPublisher(bus)
    publisher.hydrate(TabState(context=stored))

    await publisher.publish_context(problem_page())

    assert bus.of_type("CONTEXT_UPDATE") == []


@pytest.mark.asyncio
async def test_no_context_keeps_previous_and_sets_status():
    bus = FakeBus()
    publisher = ContextPublisher(bus)

    result = await publisher.publish_context(SnapshotPage.from_html("<div></div>", url="https://www.hackerrank.com/x", title=""))

    assert result is None
    assert publisher.status_text == "No problem context found"
    assert bus.sent == []


@pytest.mark.asyncio
async def test_code_publish_skips_blank_and_duplicates():
    bus = FakeBus()
    publisher = ContextPublisher(bus)
    snapshot = CodeSnapshot(source="monaco", code="x = 1")

    assert await publisher.publish_code(None) is False
    assert await publisher.publish_code(snapshot) is True
    assert await publisher.publish_code(CodeSnapshot(source="monaco", code="x = 1")) is False
    assert await publisher.publish_code(CodeSnapshot(source="ace", code="x = 1")) is True

    assert len(bus.of_type("CODE_SNAPSHOT_UPDATE")) == 2


@pytest.mark.asyncio
async def test_manual_snapshot_is_held_until_released():
    bus = FakeBus()
    publisher = ContextPublisher(bus)

    assert await publisher.set_manual("my manual code") is True
    assert await publisher.publish_code(CodeSnapshot(source="monaco", code="auto")) is False
    assert publisher.code_snapshot.source.value == "manual"

    publisher.release_manual()
    assert await publisher.publish_code(CodeSnapshot(source="monaco", code="auto")) is True
    assert await publisher.set_manual("   ") is False


@pytest.mark.asyncio
async def test_hydrated_manual_snapshot_stays_pinned():
    publisher = ContextPublisher(FakeBus())
    publisher.hydrate(TabState(code_snapshot=CodeSnapshot(source="manual", code="pinned")))

    assert await publisher.publish_code(CodeSnapshot(source="textarea", code="scanned text")) is False


@pytest.mark.asyncio
async def test_observer_bootstrap_hydrates_and_force_publishes():
    bus = FakeBus()
    source = MutablePageSource(problem_page(textarea="for c in s: seen.add(c)"))
    observer = TabObserver(bus, source, tab_id=8)

    await observer.bootstrap()

    assert bus.sent[0] == {"type": "GET_TAB_STATE", "tabId": 8}
    assert len(bus.of_type("CONTEXT_UPDATE")) == 1
    assert bus.of_type("CODE_SNAPSHOT_UPDATE")[0]["snapshot"]["source"] == "textarea"


@pytest.mark.asyncio
async def test_url_change_forces_context_publish():
    bus = FakeBus()
    source = MutablePageSource(problem_page())
    observer = TabObserver(bus, source, tab_id=8, debounce=60)
    await observer.bootstrap()

    assert await observer.check_url() is False
    source.page = problem_page(url="https://leetcode.com/problems/longest/?tab=solutions")
    assert await observer.check_url() is True
    observer._debounce_task.cancel()

    assert len(bus.of_type("CONTEXT_UPDATE")) == 2


@pytest.mark.asyncio
async def test_rescan_answers_with_forced_context():
    bus = FakeBus()
    observer = TabObserver(bus, MutablePageSource(problem_page()), tab_id=8)

    result = await observer.handle_rescan({"type": "RESCAN_CONTEXT", "commandId": "c1"})

    assert result["type"] == "RESCAN_RESULT"
    assert result["commandId"] == "c1"
    assert result["context"]["title"] == "Longest Substring"
    assert len(bus.of_type("CONTEXT_UPDATE")) == 1


@pytest.mark.asyncio
async def test_snapshot_file_source_reuses_page_until_file_changes(tmp_path):
    path = tmp_path / "page.json"
    path.write_text(json.dumps({"url": "https://a", "title": "A", "html": "<h1>A</h1>"}), encoding="utf-8")
    source = SnapshotFileSource(path)

    first = await source.load()
    second = await source.load()

    assert first is second
    assert first.url == "https://a"


@pytest.mark.asyncio
async def test_snapshot_file_source_reports_unreadable_files(tmp_path):
    source = SnapshotFileSource(tmp_path / "missing.json")
    with pytest.raises(PageUnavailable):
        await source.load()

    broken = tmp_path / "broken.json"
    broken.write_text("{", encoding="utf-8")
    with pytest.raises(PageUnavailable):
        await SnapshotFileSource(broken).load()
