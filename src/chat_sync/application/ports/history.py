from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.page import Page
from chat_sync.domain.entities.conversation import ConversationRef


class HistoryApi(Protocol):
    async def fetch_page(
        self,
        conversation: ConversationRef,
        cursor: str | None,
        limit: int,
    ) -> Page:
        """Return up to ``limit`` messages older than ``cursor`` (latest when None)."""
        ...

    async def list_group_ids(self) -> list[str]: ...
