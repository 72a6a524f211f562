from __future__ import annotations

import asyncio

import pytest

from chat_sync.application.dto.page import Page
from chat_sync.services.pagination import PaginationCursorEngine
from tests.conftest import FakeHistory, make_message


def _history(count: int) -> FakeHistory:
    return FakeHistory(messages=[make_message(f"m{i:03d}", minute=i) for i in range(count)])


@pytest.mark.asyncio
async def test_initial_state_means_not_fetched(direct):
    engine = PaginationCursorEngine(_history(5), direct, limit=20)

    assert engine.state.cursor is None
    assert engine.has_more is True
    assert engine.state.loaded is False


@pytest.mark.asyncio
async def test_two_pages_concatenate_in_order(direct):
    engine = PaginationCursorEngine(_history(50), direct, limit=20)

    first = await engine.fetch_latest()
    assert len(first.messages) == 20
    assert first.has_more is True

    second = await engine.fetch_older()
    combined = second.messages + first.messages

    assert len(combined) == 40
    assert len({m.id for m in combined}) == 40
    stamps = [m.created_at for m in combined]
    assert stamps == sorted(stamps)
    assert all(a < b for a, b in zip(stamps, stamps[1:]))


@pytest.mark.asyncio
async def test_stops_when_exhausted(direct):
    history = _history(25)
    engine = PaginationCursorEngine(history, direct, limit=20)

    await engine.fetch_latest()
    second = await engine.fetch_older()
    third = await engine.fetch_older()

    assert len(second.messages) == 5
    assert engine.has_more is False
    assert third is None
    assert len(history.calls) == 2


@pytest.mark.asyncio
async def test_overlapping_fetch_is_rejected(direct):
    history = _history(50)
    engine = PaginationCursorEngine(history, direct, limit=20)
    await engine.fetch_latest()

    history.gate = asyncio.Event()
    first = asyncio.create_task(engine.fetch_older())
    await asyncio.sleep(0)
    assert engine.in_flight is True

    assert await engine.fetch_older() is None

    history.gate.set()
    page = await first
    assert len(page.messages) == 20
    assert engine.in_flight is False
    assert len(history.calls) == 2


@pytest.mark.asyncio
async def test_fetch_older_before_initial_loads_latest(direct):
    history = _history(30)
    engine = PaginationCursorEngine(history, direct, limit=20)

    page = await engine.fetch_older()

    assert history.calls == [(direct.key, None, 20)]
    assert page.messages[-1].id == "m029"


@pytest.mark.asyncio
async def test_catch_up_fetch_keeps_existing_cursor(direct):
    history = _history(60)
    engine = PaginationCursorEngine(history, direct, limit=20)
    await engine.fetch_latest()
    await engine.fetch_older()
    cursor = engine.state.cursor

    await engine.fetch_latest()

    assert engine.state.cursor == cursor


@pytest.mark.asyncio
async def test_has_more_without_cursor_is_treated_as_exhausted(direct):
    class BrokenHistory(FakeHistory):
        async def fetch_page(self, conversation, cursor, limit):
            return Page(messages=[make_message("x")], next_cursor=None, has_more=True)

    engine = PaginationCursorEngine(BrokenHistory(), direct)

    await engine.fetch_latest()

    assert engine.has_more is False
    assert await engine.fetch_older() is None
