"""Backward cursor pagination over a conversation's history."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from chat_sync.application.dto.page import Page
from chat_sync.application.ports.history import HistoryApi
from chat_sync.domain.entities.conversation import ConversationRef

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CursorState:
    """``cursor=None`` with ``has_more=True`` means nothing fetched yet."""

    cursor: str | None = None
    has_more: bool = True
    in_flight: bool = False
    loaded: bool = False


class PaginationCursorEngine:
    def __init__(self, history: HistoryApi, conversation: ConversationRef, limit: int = 20) -> None:
        self._history = history
        self._conversation = conversation
        self._limit = limit
        self._state = CursorState()

    @property
    def state(self) -> CursorState:
        return self._state

    @property
    def has_more(self) -> bool:
        return self._state.has_more

    @property
    def in_flight(self) -> bool:
        return self._state.in_flight

    async def fetch_latest(self) -> Page:
        """Most recent page. Adopts its cursor only if nothing was loaded yet.

        Used for the initial open and for catching up after a reconnect; the
        latter must not move a cursor that already points further back.
        """
        state = self._state
        initial = not state.loaded
        if initial:
            state.in_flight = True
        try:
            page = await self._history.fetch_page(self._conversation, None, self._limit)
        finally:
            if initial:
                state.in_flight = False
        if not state.loaded:
            self._adopt(page)
        return page

    async def fetch_older(self) -> Page | None:
        """Next older page, or None when exhausted or a fetch is in flight."""
        state = self._state
        if state.in_flight:
            return None
        if not state.loaded:
            return await self.fetch_latest()
        if not state.has_more:
            return None
        state.in_flight = True
        try:
            page = await self._history.fetch_page(self._conversation, state.cursor, self._limit)
        finally:
            state.in_flight = False
        self._adopt(page)
        return page

    def _adopt(self, page: Page) -> None:
        state = self._state
        state.loaded = True
        state.cursor = page.next_cursor
        state.has_more = page.has_more
        if page.has_more and page.next_cursor is None:
            logger.warning(
                "History for %s reported has_more without a cursor; treating as exhausted",
                self._conversation.key,
            )
            state.has_more = False
