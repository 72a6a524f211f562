"""WebSocket frame envelope and event payload models.

Every frame is ``{"event": <name>, "data": {...}}``; payload keys are camelCase.
"""
from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from chat_sync.domain.entities.conversation import ConversationRef


class ClientEvent(StrEnum):
    """Client -> Server."""

    JOIN = "join"
    JOIN_GROUP_CHANNELS = "joinGroupChannels"
    SEND_MESSAGE = "sendMessage"
    EDIT_MESSAGE = "editMessage"
    DELETE_MESSAGE = "deleteMessage"
    TYPING = "typing"
    MARK_AS_READ = "markAsRead"


class ServerEvent(StrEnum):
    """Server -> Client."""

    NEW_DIRECT_MESSAGE = "newDirectMessage"
    NEW_GROUP_MESSAGE = "newGroupMessage"
    MESSAGE_SENT_ACK = "messageSentAck"
    MESSAGE_STATUS_UPDATE = "messageStatusUpdate"
    USER_TYPING = "userTyping"
    MESSAGE_EDITED = "messageEdited"
    MESSAGE_DELETED = "messageDeleted"


class WsFrame(BaseModel):
    event: str
    data: dict[str, Any] = {}


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
        extra="ignore",
    )

    def dump(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class SenderInfo(WireModel):
    id: str
    username: str | None = None


class WireMessage(WireModel):
    id: str
    sender_id: str
    receiver_id: str | None = None
    group_id: str | None = None
    content: str = ""
    created_at: datetime
    is_edited: bool = False
    is_deleted: bool = False
    is_delivered: bool = False
    is_read: bool = False
    client_msg_id: str | None = None
    sender: SenderInfo | None = None


class PageResponse(WireModel):
    messages: list[WireMessage] = []
    next_cursor: str | None = None
    has_more: bool = False


class JoinPayload(WireModel):
    user_id: str


class JoinGroupChannelsPayload(WireModel):
    group_ids: list[str]


class SendMessagePayload(WireModel):
    sender_id: str
    content: str
    client_msg_id: str
    receiver_id: str | None = None
    group_id: str | None = None


class EditMessagePayload(WireModel):
    message_id: str
    sender_id: str
    content: str
    receiver_id: str | None = None
    group_id: str | None = None


class DeleteMessagePayload(WireModel):
    message_id: str
    sender_id: str
    receiver_id: str | None = None
    group_id: str | None = None


class TypingPayload(WireModel):
    sender_id: str
    username: str
    is_typing: bool
    receiver_id: str | None = None
    group_id: str | None = None


class MarkAsReadPayload(WireModel):
    message_id: str
    sender_id: str


class StatusUpdatePayload(WireModel):
    message_id: str
    is_delivered: bool = False
    is_read: bool = False


class UserTypingPayload(WireModel):
    sender_id: str
    username: str = ""
    is_typing: bool
    receiver_id: str | None = None
    group_id: str | None = None


def encode_frame(event: str, data: dict[str, Any]) -> str:
    return WsFrame(event=event, data=data).model_dump_json()


def decode_frame(raw: str | bytes) -> WsFrame:
    return WsFrame.model_validate_json(raw)


def route_event(data: dict[str, Any], self_id: str) -> ConversationRef | None:
    """Conversation an inbound payload belongs to, seen from ``self_id``.

    Returns None for payloads that carry no addressing (status updates); those
    are offered to every direct conversation.
    """
    group_id = data.get("groupId")
    if group_id is not None:
        return ConversationRef.group(str(group_id))
    sender = data.get("senderId")
    if sender is None:
        return None
    peer = data.get("receiverId") if str(sender) == self_id else sender
    if peer is None:
        return None
    return ConversationRef.direct(str(peer))
