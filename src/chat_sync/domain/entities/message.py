from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime

from chat_sync.domain.entities.conversation import ConversationRef
from chat_sync.domain.value_objects.content import MessageContent, decode
from chat_sync.domain.value_objects.enums import ContentKind, DeliveryState, SyncState

TOMBSTONE_CONTENT = "This message was deleted"


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    sender_id: str
    conversation: ConversationRef
    content: str
    created_at: datetime
    edited: bool = False
    deleted: bool = False
    delivery: DeliveryState = DeliveryState.SENT
    sync: SyncState = SyncState.CONFIRMED
    client_msg_id: str | None = None
    sender_username: str | None = None

    @property
    def body(self) -> MessageContent:
        return decode(self.content)

    @property
    def kind(self) -> ContentKind:
        return self.body.kind

    @property
    def delivered(self) -> bool:
        return self.delivery.rank >= DeliveryState.DELIVERED.rank

    @property
    def read(self) -> bool:
        return self.delivery == DeliveryState.READ

    @property
    def is_pending(self) -> bool:
        return self.sync == SyncState.PENDING

    def edited_to(self, content: str) -> Message:
        return replace(self, content=content, edited=True)

    def tombstoned(self) -> Message:
        return replace(self, content=TOMBSTONE_CONTENT, deleted=True)

    def with_sync(self, sync: SyncState) -> Message:
        return replace(self, sync=sync)

    def with_delivery(self, delivered: bool, read: bool) -> Message:
        """Advance delivery state; never moves backwards. ``read`` implies delivered."""
        if read:
            target = DeliveryState.READ
        elif delivered:
            target = DeliveryState.DELIVERED
        else:
            target = DeliveryState.SENT
        if target.rank <= self.delivery.rank:
            return self
        return replace(self, delivery=target)
