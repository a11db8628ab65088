import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone

import pytest

from chatcore.domain.search import exceptions, models, schemas
from chatcore.domain.search.service import MessageSearchService
from chatcore.obs import logging as obs_logging
from chatcore.settings import settings

BASE = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _message(idx: int, content: str, *, conversation_id="c1", sender="alice", offset_seconds=None) -> models.ChatMessage:
    seconds = idx * 60 if offset_seconds is None else offset_seconds
    return models.ChatMessage(
        id=f"m{idx}",
        conversation_id=conversation_id,
        sender_id=f"id-{sender}",
        sender_username=sender,
        content=content,
        timestamp=BASE + timedelta(seconds=seconds),
    )


class StubAccess:
    def __init__(self, allowed=True, error: Exception | None = None) -> None:
        self.allowed = allowed
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def has_user_access(self, user_id, conversation_id):
        self.calls.append((user_id, conversation_id))
        if self.error is not None:
            raise self.error
        return self.allowed


class StubStore:
    """Message store that records calls; text results and failures are scripted."""

    def __init__(self, messages=(), *, text_error: Exception | None = None, text_delay: float = 0.0) -> None:
        self.messages = list(messages)
        self.text_error = text_error
        self.text_delay = text_delay
        self.pattern_error: Exception | None = None
        self.calls: list[tuple] = []

    def _newest_first(self, rows):
        return sorted(rows, key=lambda m: m.timestamp, reverse=True)

    async def _text(self, query):
        if self.text_delay:
            await asyncio.sleep(self.text_delay)
        if self.text_error is not None:
            raise self.text_error
        terms = query.lower().split()
        return self._newest_first(m for m in self.messages if any(t in m.content.lower().split() for t in terms))

    def _pattern(self, pattern):
        import re

        compiled = re.compile(pattern, re.IGNORECASE)
        return self._newest_first(m for m in self.messages if compiled.search(m.content))

    async def text_search(self, conversation_id, query, *, page):
        self.calls.append(("text_search", query, page))
        rows = await self._text(query)
        return rows[page.offset : page.offset + page.size]

    async def count_text_search(self, conversation_id, query):
        self.calls.append(("count_text_search", query))
        return len(await self._text(query))

    async def pattern_search(self, conversation_id, pattern, *, page):
        self.calls.append(("pattern_search", pattern, page))
        if self.pattern_error is not None:
            raise self.pattern_error
        rows = self._pattern(pattern)
        return rows[page.offset : page.offset + page.size]

    async def count_pattern_search(self, conversation_id, pattern):
        self.calls.append(("count_pattern_search", pattern))
        return len(self._pattern(pattern))

    async def get_message(self, message_id):
        self.calls.append(("get_message", message_id))
        return next((m for m in self.messages if m.id == message_id), None)

    async def list_between(self, conversation_id, start, end):
        self.calls.append(("list_between", start, end))
        rows = [m for m in self.messages if m.conversation_id == conversation_id and start <= m.timestamp <= end]
        return sorted(rows, key=lambda m: m.timestamp)

    async def delete_conversation_messages(self, conversation_id):
        return 0


@pytest.mark.asyncio
async def test_access_denied_returns_empty_page_without_store_calls():
    store = StubStore([_message(1, "hello")])
    service = MessageSearchService(store=store, access=StubAccess(allowed=False))

    result = await service.search_messages("c1", "hello", "mallory", page=1, size=10)

    assert result.messages == []
    assert result.total_count == 0
    assert (result.current_page, result.page_size) == (1, 10)
    assert result.has_more is False
    assert store.calls == []


@pytest.mark.asyncio
async def test_access_check_failure_is_treated_as_denied():
    store = StubStore([_message(1, "hello")])
    service = MessageSearchService(store=store, access=StubAccess(error=RuntimeError("directory down")))

    result = await service.search_messages("c1", "hello", "alice")

    assert result.is_empty()
    assert store.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("query", [None, "", "   ", "\"'\\"])
async def test_blank_queries_return_empty_page(query):
    store = StubStore([_message(1, "hello")])
    service = MessageSearchService(store=store, access=StubAccess())

    result = await service.search_messages("c1", query, "alice")

    assert result.is_empty()
    assert result.query == ""
    assert store.calls == []


@pytest.mark.asyncio
async def test_primary_strategy_serves_and_highlights():
    store = StubStore([_message(1, "Hello there"), _message(2, "nothing"), _message(3, "well hello again")])
    service = MessageSearchService(store=store, access=StubAccess())

    result = await service.search_messages("c1", '  hello"  ', "alice")

    assert result.query == "hello"
    assert result.strategy == models.STRATEGY_TEXT
    assert [m.id for m in result.messages] == ["m3", "m1"]
    assert result.total_count == 2
    assert result.messages[0].highlighted_content == "well <mark>hello</mark> again"
    assert result.messages[1].highlighted_content == "<mark>Hello</mark> there"
    assert all(m.has_highlighting for m in result.messages)
    assert [call[0] for call in store.calls] == ["text_search", "count_text_search"]


@pytest.mark.asyncio
async def test_pagination_is_clamped_and_reports_more():
    store = StubStore([_message(i, "report ready") for i in range(1, 6)])
    service = MessageSearchService(store=store, access=StubAccess())

    first = await service.search_messages("c1", "report", "alice", page=-1, size=2)
    last = await service.search_messages("c1", "report", "alice", page=2, size=2)
    wide = await service.search_messages("c1", "report", "alice", page=0, size=500)

    assert (first.current_page, first.page_size) == (0, 2)
    assert first.has_more is True and first.next_page == 1
    assert [m.id for m in first.messages] == ["m5", "m4"]
    assert last.has_more is False and last.next_page is None
    assert [m.id for m in last.messages] == ["m1"]
    assert wide.page_size == 100


@pytest.mark.asyncio
async def test_primary_failure_falls_back_to_escaped_pattern():
    store = StubStore(
        [_message(1, "price is $5.00 today"), _message(2, "price is $5x00")],
        text_error=exceptions.IndexUnavailableError(),
    )
    service = MessageSearchService(store=store, access=StubAccess())

    result = await service.search_messages("c1", "$5.00", "alice")

    assert result.strategy == models.STRATEGY_PATTERN
    assert [m.id for m in result.messages] == ["m1"]
    assert result.total_count == 1
    pattern_calls = [call for call in store.calls if call[0] == "pattern_search"]
    assert pattern_calls[0][1] == r"\$5\.00"
    assert ("count_pattern_search", r"\$5\.00") in store.calls
    assert result.messages[0].highlighted_content == "price is <mark>$5.00</mark> today"


@pytest.mark.asyncio
async def test_slow_primary_times_out_into_fallback(monkeypatch):
    monkeypatch.setattr(settings, "search_store_timeout_seconds", 0.01)
    store = StubStore([_message(1, "deadline soon")], text_delay=0.5)
    service = MessageSearchService(store=store, access=StubAccess())

    result = await service.search_messages("c1", "deadline", "alice")

    assert result.strategy == models.STRATEGY_PATTERN
    assert [m.id for m in result.messages] == ["m1"]


@pytest.mark.asyncio
async def test_fallback_failure_yields_empty_page():
    store = StubStore([_message(1, "hello")], text_error=RuntimeError("boom"))
    store.pattern_error = RuntimeError("also boom")
    service = MessageSearchService(store=store, access=StubAccess())

    result = await service.search_messages("c1", "hello", "alice", page=0, size=5)

    assert result.is_empty()
    assert result.strategy is None
    assert result.query == "hello"
    assert result.page_size == 5


@pytest.mark.asyncio
async def test_filtered_search_narrows_by_sender_and_inclusive_date():
    messages = [
        _message(1, "lunch plans", sender="Alice"),
        _message(2, "lunch again", sender="bob"),
        _message(3, "lunch tomorrow", sender="alice", offset_seconds=2 * 86400),
    ]
    store = StubStore(messages)
    service = MessageSearchService(store=store, access=StubAccess())
    request = schemas.MessageSearchRequest(
        query="lunch",
        sender_username="ALI",
        date_to=BASE.replace(hour=0),
    )

    result = await service.search_messages_filtered("c1", request, "alice")

    assert [m.id for m in result.messages] == ["m1"]
    assert result.total_count == 1
    scan = store.calls[0][2]
    assert scan.size == settings.search_filtered_scan_limit


@pytest.mark.asyncio
async def test_filtered_search_without_filters_matches_plain_search():
    store = StubStore([_message(1, "hello"), _message(2, "hello world")])
    service = MessageSearchService(store=store, access=StubAccess())

    filtered = await service.search_messages_filtered("c1", schemas.MessageSearchRequest(query="hello", size=1), "alice")
    plain = await service.search_messages("c1", "hello", "alice", size=1)

    assert filtered.model_dump() == plain.model_dump()


@pytest.mark.asyncio
async def test_context_returns_window_around_anchor():
    messages = [_message(i, f"message {i}") for i in range(10)]
    messages.append(_message(99, "far away", offset_seconds=3600))
    store = StubStore(messages)
    service = MessageSearchService(store=store, access=StubAccess())

    context = await service.get_message_context("m5", "alice", context_size=4)

    assert [m.id for m in context] == ["m3", "m4", "m5", "m6", "m7"]
    assert all(not m.has_highlighting for m in context)
    start, end = store.calls[-1][1:]
    anchor = BASE + timedelta(seconds=300)
    assert end - anchor == timedelta(seconds=settings.search_context_window_seconds)
    assert anchor - start == timedelta(seconds=settings.search_context_window_seconds)


@pytest.mark.asyncio
async def test_context_near_edges_and_zero_size():
    store = StubStore([_message(i, f"message {i}") for i in range(3)])
    service = MessageSearchService(store=store, access=StubAccess())

    assert [m.id for m in await service.get_message_context("m0", "alice", context_size=4)] == ["m0", "m1", "m2"]
    assert [m.id for m in await service.get_message_context("m1", "alice", context_size=0)] == ["m1"]


@pytest.mark.asyncio
async def test_context_missing_message_or_no_access():
    store = StubStore([_message(1, "hello")])
    access = StubAccess(allowed=False)
    service = MessageSearchService(store=store, access=access)

    assert await service.get_message_context("missing", "alice") == []
    assert access.calls == []

    assert await service.get_message_context("m1", "mallory") == []
    assert access.calls == [("mallory", "c1")]
    assert [call[0] for call in store.calls] == ["get_message", "get_message"]


def test_request_dates_are_normalized_to_utc():
    request = schemas.MessageSearchRequest(query="lunch", date_from="2024-04-30", date_to="2024-05-01T02:00:00+02:00")

    assert request.date_from == datetime(2024, 4, 30, tzinfo=timezone.utc)
    assert request.date_to == datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_date_only_filter_is_served_by_primary_strategy():
    store = StubStore([_message(1, "lunch plans"), _message(2, "lunch earlier", offset_seconds=-3 * 86400)])
    service = MessageSearchService(store=store, access=StubAccess())
    request = schemas.MessageSearchRequest(query="lunch", date_from="2024-04-30")

    result = await service.search_messages_filtered("c1", request, "alice")

    assert result.strategy == models.STRATEGY_TEXT
    assert result.total_count == 1
    assert [m.id for m in result.messages] == ["m1"]
    assert [call[0] for call in store.calls] == ["text_search"]


def test_naive_filter_dates_compare_against_aware_timestamps():
    filters = models.MessageFilters(date_from=datetime(2024, 5, 1), date_to=datetime(2024, 5, 1))

    assert filters.matches(_message(1, "x"))
    assert not filters.matches(_message(2, "x", offset_seconds=-86400))


def test_search_result_serializes_display_username():
    result = schemas.MessageSearchResult.from_message(_message(1, "hello", sender="alice"))

    dumped = result.model_dump()

    assert dumped["display_username"] == "alice"
    assert '"display_username":"alice"' in result.model_dump_json()


class _JSONCapture(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.setFormatter(obs_logging.JSONLogFormatter())
        self.payloads: list[dict] = []

    def emit(self, record):
        self.payloads.append(json.loads(self.format(record)))


@pytest.mark.asyncio
async def test_search_logs_carry_actor_and_conversation():
    store = StubStore([_message(1, "hello")], text_error=RuntimeError("boom"))
    service = MessageSearchService(store=store, access=StubAccess())
    capture = _JSONCapture()
    search_logger = logging.getLogger("chatcore.domain.search.service")
    search_logger.addHandler(capture)
    try:
        await service.search_messages("c1", "hello", "alice")
    finally:
        search_logger.removeHandler(capture)

    failure = next(p for p in capture.payloads if p["msg"] == "search.primary_failed")
    assert failure["user_id"] == "alice"
    assert failure["conversation_id"] == "c1"
