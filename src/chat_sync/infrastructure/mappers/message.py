from __future__ import annotations

from datetime import timezone

from chat_sync.domain.entities.conversation import ConversationRef
from chat_sync.domain.entities.message import TOMBSTONE_CONTENT, Message
from chat_sync.domain.value_objects.enums import DeliveryState
from chat_sync.infrastructure.ws.protocol import WireMessage


def _delivery(wire: WireMessage) -> DeliveryState:
    if wire.is_read:
        return DeliveryState.READ
    if wire.is_delivered:
        return DeliveryState.DELIVERED
    return DeliveryState.SENT


def wire_to_entity(wire: WireMessage, conversation: ConversationRef) -> Message:
    created_at = wire.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return Message(
        id=wire.id,
        sender_id=wire.sender_id,
        conversation=conversation,
        content=TOMBSTONE_CONTENT if wire.is_deleted else wire.content,
        created_at=created_at,
        edited=wire.is_edited,
        deleted=wire.is_deleted,
        delivery=_delivery(wire),
        client_msg_id=wire.client_msg_id,
        sender_username=wire.sender.username if wire.sender else None,
    )
