"""Typed realtime events delivered by the channel to conversation listeners."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from chat_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class MessageReceived:
    """``newDirectMessage`` / ``newGroupMessage``."""

    message: Message


@dataclass(frozen=True, slots=True)
class MessageAcknowledged:
    """``messageSentAck``: echo of our own direct send."""

    message: Message


@dataclass(frozen=True, slots=True)
class MessageEdited:
    message: Message


@dataclass(frozen=True, slots=True)
class MessageDeleted:
    message: Message


@dataclass(frozen=True, slots=True)
class StatusUpdated:
    message_id: str
    delivered: bool
    read: bool


@dataclass(frozen=True, slots=True)
class TypingChanged:
    sender_id: str
    username: str
    is_typing: bool


ChannelEvent = Union[
    MessageReceived,
    MessageAcknowledged,
    MessageEdited,
    MessageDeleted,
    StatusUpdated,
    TypingChanged,
]
