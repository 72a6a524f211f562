"""Ordered, id-unique message list for one conversation."""
from __future__ import annotations

import bisect
from typing import Iterable, Iterator

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import SyncState


def _reconcile(existing: Message, incoming: Message) -> Message:
    """Last write wins, except that tombstones and delivery progress are sticky."""
    merged = incoming
    if existing.deleted and not merged.deleted:
        merged = merged.tombstoned()
    if existing.delivery.rank > merged.delivery.rank:
        merged = merged.with_delivery(existing.delivered, existing.read)
    return merged


class Timeline:
    """Messages kept sorted by ``created_at``; ties keep arrival order."""

    def __init__(self) -> None:
        self._items: list[Message] = []

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._items)

    def __contains__(self, message_id: object) -> bool:
        return self.index_of(str(message_id)) >= 0

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._items)

    def index_of(self, message_id: str) -> int:
        for i, m in enumerate(self._items):
            if m.id == message_id:
                return i
        return -1

    def get(self, message_id: str) -> Message | None:
        idx = self.index_of(message_id)
        return self._items[idx] if idx >= 0 else None

    def find_by_correlation(self, client_msg_id: str) -> Message | None:
        for m in self._items:
            if m.client_msg_id == client_msg_id and m.sync != SyncState.CONFIRMED:
                return m
        return None

    def first_pending(self, sender_id: str, content: str) -> Message | None:
        for m in self._items:
            if m.is_pending and m.sender_id == sender_id and m.content == content:
                return m
        return None

    def upsert(self, message: Message) -> bool:
        """Insert or replace by id. Returns True when the id was new."""
        idx = self.index_of(message.id)
        if idx < 0:
            self._insert(message)
            return True
        existing = self._items[idx]
        merged = _reconcile(existing, message)
        if merged.created_at == existing.created_at:
            self._items[idx] = merged
        else:
            del self._items[idx]
            self._insert(merged)
        return False

    def merge(self, messages: Iterable[Message]) -> int:
        """Upsert a batch (e.g. a history page). Returns how many were new."""
        return sum(1 for m in messages if self.upsert(m))

    def replace(self, old_id: str, message: Message) -> None:
        """Swap an entry for one with a (possibly) different id."""
        idx = self.index_of(old_id)
        if idx >= 0:
            del self._items[idx]
        if message.id in self:
            self.upsert(message)
        else:
            self._insert(message)

    def remove(self, message_id: str) -> None:
        idx = self.index_of(message_id)
        if idx >= 0:
            del self._items[idx]

    def _insert(self, message: Message) -> None:
        pos = bisect.bisect_right(self._items, message.created_at, key=lambda m: m.created_at)
        self._items.insert(pos, message)
