"""Shared test fixtures."""
from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from chat_sync.application.dto.identity import Identity
from chat_sync.application.dto.page import Page
from chat_sync.application.exceptions import AuthorizationError, TransportError, UploadError
from chat_sync.application.ports.realtime import ChannelListener
from chat_sync.domain.entities.conversation import ConversationRef
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import DeliveryState, SyncState

ME = "u1"
PEER = "u2"
GROUP = "g1"
T0 = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def identity() -> Identity:
    return Identity(user_id=ME, token="token", username="alice")


@pytest.fixture
def direct() -> ConversationRef:
    return ConversationRef.direct(PEER)


@pytest.fixture
def group() -> ConversationRef:
    return ConversationRef.group(GROUP)


def make_message(
    message_id: str,
    *,
    conversation: ConversationRef | None = None,
    sender_id: str = PEER,
    content: str = "hello",
    minute: int = 0,
    client_msg_id: str | None = None,
    delivery: DeliveryState = DeliveryState.SENT,
    sync: SyncState = SyncState.CONFIRMED,
) -> Message:
    return Message(
        id=message_id,
        sender_id=sender_id,
        conversation=conversation or ConversationRef.direct(PEER),
        content=content,
        created_at=T0 + timedelta(minutes=minute),
        delivery=delivery,
        sync=sync,
        client_msg_id=client_msg_id,
    )


def wire_message(
    message_id: str,
    *,
    sender_id: str = PEER,
    receiver_id: str | None = ME,
    group_id: str | None = None,
    content: str = "hello",
    minute: int = 0,
    client_msg_id: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": message_id,
        "senderId": sender_id,
        "content": content,
        "createdAt": (T0 + timedelta(minutes=minute)).isoformat(),
        **extra,
    }
    if group_id is not None:
        data["groupId"] = group_id
    elif receiver_id is not None:
        data["receiverId"] = receiver_id
    if client_msg_id is not None:
        data["clientMsgId"] = client_msg_id
    return data


class TickingClock:
    """Returns T0 + n * step on the n-th call."""

    def __init__(self, start: datetime = T0 + timedelta(hours=1), step: timedelta = timedelta(seconds=1)) -> None:
        self._next = start
        self._step = step

    def now(self) -> datetime:
        value = self._next
        self._next += self._step
        return value


@dataclass
class _ManualTimer:
    when: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualScheduler:
    """Deterministic Scheduler: timers fire only from ``advance``."""

    now: float = 0.0
    _timers: list[_ManualTimer] = field(default_factory=list)

    def call_later(self, delay: float, callback: Callable[[], None]) -> _ManualTimer:
        timer = _ManualTimer(self.now + delay, callback)
        self._timers.append(timer)
        return timer

    @property
    def active(self) -> list[_ManualTimer]:
        return [t for t in self._timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.active if t.when <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self._timers.remove(timer)
            self.now = timer.when
            timer.callback()
        self.now = target


@dataclass
class FakeChannel:
    """In-memory RealtimeChannelPort recording emitted events."""

    connected: bool = True
    emitted: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    listeners: dict[str, ChannelListener] = field(default_factory=dict)

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        if not self.connected:
            raise TransportError("offline")
        self.emitted.append((str(event), payload))

    def add_listener(self, conversation: ConversationRef, listener: ChannelListener) -> None:
        self.listeners[conversation.key] = listener

    def remove_listener(self, conversation: ConversationRef, listener: ChannelListener) -> None:
        if self.listeners.get(conversation.key) is listener:
            del self.listeners[conversation.key]

    def events(self, name: str) -> list[dict[str, Any]]:
        return [payload for event, payload in self.emitted if event == name]


@dataclass
class FakeHistory:
    """History backend over a fixed, time-ordered message list.

    Cursors are the index of the oldest message already returned.
    """

    messages: list[Message] = field(default_factory=list)
    denied: bool = False
    offline: bool = False
    gate: asyncio.Event | None = None
    calls: list[tuple[str, str | None, int]] = field(default_factory=list)
    groups: list[str] = field(default_factory=list)

    async def fetch_page(self, conversation: ConversationRef, cursor: str | None, limit: int) -> Page:
        self.calls.append((conversation.key, cursor, limit))
        if self.gate is not None:
            await self.gate.wait()
        if self.denied:
            raise AuthorizationError("not a member")
        if self.offline:
            raise TransportError("offline")
        end = int(cursor) if cursor is not None else len(self.messages)
        start = max(0, end - limit)
        return Page(
            messages=list(self.messages[start:end]),
            next_cursor=str(start) if start > 0 else None,
            has_more=start > 0,
        )

    async def list_group_ids(self) -> list[str]:
        if self.denied:
            raise AuthorizationError("groups unavailable")
        if self.offline:
            raise TransportError("offline")
        return list(self.groups)


@dataclass
class FakeUploader:
    url: str = "https://cdn.example/img.png"
    fail: bool = False
    uploads: list[tuple[str, str | None]] = field(default_factory=list)

    async def upload(self, data: bytes, filename: str, content_type: str | None = None) -> str:
        self.uploads.append((filename, content_type))
        if self.fail:
            raise UploadError("storage unavailable")
        return self.url


class FakeTransport:
    """RealtimeTransport backed by an asyncio queue of inbound frames."""

    def __init__(self, connect_failures: int = 0) -> None:
        self.connect_failures = connect_failures
        self.connects = 0
        self.sent: list[dict[str, Any]] = []
        self.is_open = False
        self._inbox: asyncio.Queue[str | None] = asyncio.Queue()

    async def connect(self) -> None:
        if self.connect_failures:
            self.connect_failures -= 1
            raise TransportError("connection refused")
        self.connects += 1
        self.is_open = True
        self._inbox = asyncio.Queue()

    async def send(self, raw: str) -> None:
        if not self.is_open:
            raise TransportError("closed")
        self.sent.append(json.loads(raw))

    async def receive(self) -> str | None:
        item = await self._inbox.get()
        if item is None:
            self.is_open = False
        return item

    async def close(self) -> None:
        if self.is_open:
            self.is_open = False
            self._inbox.put_nowait(None)

    def push(self, event: str, data: dict[str, Any]) -> None:
        self._inbox.put_nowait(json.dumps({"event": event, "data": data}))

    def push_raw(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        self._inbox.put_nowait(None)

    def sent_events(self, name: str) -> list[dict[str, Any]]:
        return [f["data"] for f in self.sent if f["event"] == name]


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.001)


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)
