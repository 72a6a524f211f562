from __future__ import annotations

from enum import StrEnum


class ConversationKind(StrEnum):
    DIRECT = "direct"
    GROUP = "group"


class ContentKind(StrEnum):
    TEXT = "text"
    PHOTO = "photo"
    VOICE = "voice"
    POST = "post"


class DeliveryState(StrEnum):
    """Ordered: a message only ever moves forward through these."""

    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return list(DeliveryState).index(self)


class SyncState(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
