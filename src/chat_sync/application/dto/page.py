from __future__ import annotations

from dataclasses import dataclass, field

from chat_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class Page:
    """One history page, ordered oldest -> newest."""

    messages: list[Message] = field(default_factory=list)
    next_cursor: str | None = None
    has_more: bool = False
