"""Rendering helpers: date separators and delivery badges for a timeline."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterable, Union

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import SyncState


@dataclass(frozen=True, slots=True)
class DateSeparator:
    label: str


@dataclass(frozen=True, slots=True)
class MessageRow:
    message: Message
    mine: bool
    badge: str | None


Row = Union[DateSeparator, MessageRow]


def _local_date(ts: datetime, tz: tzinfo | None) -> date:
    return ts.astimezone(tz).date()


def date_label(day: date, today: date) -> str:
    if day == today:
        return "Today"
    if day == today - timedelta(days=1):
        return "Yesterday"
    return f"{day.day} {day:%b %Y}"


def delivery_badge(message: Message, self_id: str) -> str | None:
    """Status shown under own messages; receipts exist only for direct chats."""
    if message.sender_id != self_id:
        return None
    if message.sync != SyncState.CONFIRMED:
        return message.sync.value
    if message.conversation.is_group:
        return None
    return message.delivery.value


def build_rows(
    messages: Iterable[Message],
    self_id: str,
    today: date,
    tz: tzinfo | None = None,
) -> list[Row]:
    rows: list[Row] = []
    previous: date | None = None
    for message in messages:
        day = _local_date(message.created_at, tz)
        if day != previous:
            rows.append(DateSeparator(label=date_label(day, today)))
            previous = day
        rows.append(
            MessageRow(
                message=message,
                mine=message.sender_id == self_id,
                badge=delivery_badge(message, self_id),
            )
        )
    return rows
