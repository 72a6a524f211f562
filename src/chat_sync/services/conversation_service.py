"""Per-conversation state: history pages, live events and optimistic writes
merged into one ordered, de-duplicated timeline.

All timeline mutations go through ``_mutate`` which serializes them behind a
single lock and drops anything that resolves after ``close()``.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, TypeVar

from chat_sync.application.dto.events import (
    ChannelEvent,
    MessageAcknowledged,
    MessageDeleted,
    MessageEdited,
    MessageReceived,
    StatusUpdated,
    TypingChanged,
)
from chat_sync.application.dto.identity import Identity
from chat_sync.application.dto.page import Page
from chat_sync.application.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateAckError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from chat_sync.application.ports.clock import Clock, LoopScheduler, Scheduler, SystemClock
from chat_sync.application.ports.history import HistoryApi
from chat_sync.application.ports.realtime import RealtimeChannelPort
from chat_sync.domain.entities.conversation import ConversationRef
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.content import MessageContent, encode
from chat_sync.domain.value_objects.enums import SyncState
from chat_sync.domain.value_objects.ids import local_message_id
from chat_sync.infrastructure.ws.protocol import (
    ClientEvent,
    DeleteMessagePayload,
    EditMessagePayload,
    MarkAsReadPayload,
    SendMessagePayload,
    TypingPayload,
)
from chat_sync.services.outbox import Outbox
from chat_sync.services.pagination import PaginationCursorEngine
from chat_sync.services.timeline import Timeline
from chat_sync.services.typing import TypingAggregator, TypingEmitter

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class ConversationSnapshot:
    """Everything a rendering layer needs for one frame."""

    conversation: ConversationRef
    messages: tuple[Message, ...]
    typing: frozenset[str]
    has_more: bool
    loading_more: bool
    connected: bool
    editing_id: str | None
    denied: bool


ChangeListener = Callable[[ConversationSnapshot], None]


def _edit_key(message_id: str) -> str:
    return f"edit:{message_id}"


def _delete_key(message_id: str) -> str:
    return f"delete:{message_id}"


class ConversationStateMachine:
    def __init__(
        self,
        conversation: ConversationRef,
        identity: Identity,
        channel: RealtimeChannelPort,
        history: HistoryApi,
        *,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        page_limit: int = 20,
        typing_idle_seconds: float = 3.0,
        typing_expiry_seconds: float = 3.0,
        outbox_max_attempts: int = 5,
    ) -> None:
        self.conversation = conversation
        self._identity = identity
        self._channel = channel
        self._clock = clock or SystemClock()
        scheduler = scheduler or LoopScheduler()

        self._timeline = Timeline()
        self._pager = PaginationCursorEngine(history, conversation, page_limit)
        self._outbox = Outbox(channel.emit, max_attempts=outbox_max_attempts)
        self._typing_in = TypingAggregator(
            scheduler, identity.user_id, typing_expiry_seconds, on_change=self._notify,
        )
        self._typing_out = TypingEmitter(scheduler, self._emit_typing, typing_idle_seconds)

        self._lock = asyncio.Lock()
        self._closed = False
        self._denied = False
        self._editing_id: str | None = None
        self._acked: dict[str, str] = {}
        self._listeners: list[ChangeListener] = []
        self._tasks: set[asyncio.Task[Any]] = set()
        self._handlers: dict[type, Callable[[Any], None]] = {
            MessageReceived: self._on_message,
            MessageAcknowledged: self._on_ack,
            MessageEdited: self._on_edited,
            MessageDeleted: self._on_deleted,
            StatusUpdated: self._on_status,
            TypingChanged: self._on_typing,
        }

    # -- lifecycle ---------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def messages(self) -> tuple[Message, ...]:
        return self._timeline.snapshot()

    @property
    def outbox(self) -> Outbox:
        return self._outbox

    @property
    def editing_id(self) -> str | None:
        return self._editing_id

    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            conversation=self.conversation,
            messages=self._timeline.snapshot(),
            typing=self._typing_in.users,
            has_more=self._pager.has_more,
            loading_more=self._pager.in_flight,
            connected=self._channel.connected,
            editing_id=self._editing_id,
            denied=self._denied,
        )

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def open(self) -> None:
        """Attach to the channel and load the latest page."""
        self._channel.add_listener(self.conversation, self)
        await self.load_initial()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel.remove_listener(self.conversation, self)
        self._typing_out.reset()
        self._typing_in.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._listeners.clear()
        logger.debug("Conversation %s closed", self.conversation.key)

    # -- history -----------------------------------------------------------

    async def load_initial(self) -> None:
        page = await self._guarded_fetch(self._pager.fetch_latest)
        if page is not None:
            await self._mutate(lambda: self._ingest_page(page))

    async def load_older(self) -> bool:
        """Prepend the next older page. Returns False if nothing was fetched."""
        page = await self._guarded_fetch(self._pager.fetch_older)
        if page is None:
            return False
        await self._mutate(lambda: self._ingest_page(page))
        return True

    async def refresh_latest(self) -> None:
        """Re-fetch the newest page to recover events missed while offline."""
        try:
            page = await self._guarded_fetch(self._pager.fetch_latest)
        except TransportError as exc:
            logger.warning("Catch-up fetch for %s failed: %s", self.conversation.key, exc.detail)
            return
        except AuthorizationError as exc:
            logger.info("Catch-up fetch for %s refused: %s", self.conversation.key, exc.detail)
            return
        if page is not None:
            await self._mutate(lambda: self._ingest_page(page))

    async def _guarded_fetch(self, fetch: Callable[[], Awaitable[Page | None]]) -> Page | None:
        if self._closed:
            return None
        try:
            page = await fetch()
        except AuthorizationError:
            logger.warning("Access to %s denied, closing conversation", self.conversation.key)
            self._denied = True
            self._notify()
            await self.close()
            raise
        if self._closed:
            logger.debug("Discarding page for closed conversation %s", self.conversation.key)
            return None
        return page

    def _ingest_page(self, page: Page) -> None:
        for message in page.messages:
            self._ingest(message)

    # -- local writes ------------------------------------------------------

    async def send(self, content: str | MessageContent) -> Message:
        """Optimistically append and emit ``sendMessage``."""
        self._ensure_open()
        text = self._encode(content)
        correlation_id = uuid.uuid4().hex
        message = Message(
            id=local_message_id(correlation_id),
            sender_id=self._identity.user_id,
            conversation=self.conversation,
            content=text,
            created_at=self._clock.now(),
            sync=SyncState.PENDING,
            client_msg_id=correlation_id,
            sender_username=self._identity.username,
        )
        await self._mutate(lambda: self._timeline.upsert(message))
        self._queue_send(message)
        self._typing_out.stop()
        await self.flush()
        return message

    async def retry(self, message_id: str) -> Message:
        """Re-queue a failed send under its original correlation id."""
        failed = self._failed(message_id)
        message = failed.with_sync(SyncState.PENDING)
        await self._mutate(lambda: self._timeline.upsert(message))
        self._queue_send(message)
        await self.flush()
        return message

    async def discard(self, message_id: str) -> None:
        """Drop a failed send from the timeline."""
        failed = self._failed(message_id)
        await self._mutate(lambda: self._timeline.remove(failed.id))

    def _queue_send(self, message: Message) -> None:
        payload = SendMessagePayload(
            sender_id=self._identity.user_id,
            content=message.content,
            client_msg_id=message.client_msg_id,
            **self.conversation.target(),
        )
        self._outbox.add(ClientEvent.SEND_MESSAGE, payload.dump(), ack_key=message.client_msg_id)

    def begin_edit(self, message_id: str) -> Message:
        message = self._editable(message_id)
        self._editing_id = message.id
        self._notify()
        return message

    def cancel_edit(self) -> None:
        if self._editing_id is not None:
            self._editing_id = None
            self._notify()

    async def submit(self, text: str) -> Message | None:
        """Composer action: edits while in edit mode, sends otherwise."""
        if self._editing_id is not None:
            message_id = self._editing_id
            await self.edit(message_id, text)
            return None
        return await self.send(text)

    async def edit(self, message_id: str, content: str | MessageContent) -> None:
        """Emit ``editMessage``; the timeline changes when the echo arrives."""
        message = self._editable(message_id)
        text = self._encode(content)
        payload = EditMessagePayload(
            message_id=message.id,
            sender_id=self._identity.user_id,
            content=text,
            **self.conversation.target(),
        )
        self._outbox.add(ClientEvent.EDIT_MESSAGE, payload.dump(), ack_key=_edit_key(message.id))
        if self._editing_id == message.id:
            self._editing_id = None
            self._notify()
        await self.flush()

    async def delete(self, message_id: str) -> None:
        """Emit ``deleteMessage``; the tombstone is applied on the echo."""
        message = self._editable(message_id)
        payload = DeleteMessagePayload(
            message_id=message.id,
            sender_id=self._identity.user_id,
            **self.conversation.target(),
        )
        self._outbox.add(ClientEvent.DELETE_MESSAGE, payload.dump(), ack_key=_delete_key(message.id))
        if self._editing_id == message.id:
            self._editing_id = None
            self._notify()
        await self.flush()

    async def mark_read(self, message_id: str, sender_id: str) -> None:
        payload = MarkAsReadPayload(message_id=message_id, sender_id=sender_id)
        self._outbox.add(ClientEvent.MARK_AS_READ, payload.dump())
        await self.flush()

    def set_typing(self, is_typing: bool) -> None:
        self._typing_out.set_typing(is_typing)

    async def receive_status_update(self, message_id: str, delivered: bool, read: bool) -> None:
        await self._mutate(lambda: self._apply_status(message_id, delivered, read))

    async def flush(self, *, resend: bool = False) -> None:
        exhausted = await self._outbox.flush(resend=resend)
        failed = [r.ack_key for r in exhausted if r.event == ClientEvent.SEND_MESSAGE and r.ack_key]
        if failed:
            await self._mutate(lambda: self._mark_failed(failed))

    def _encode(self, content: str | MessageContent) -> str:
        if isinstance(content, str):
            text = content
        else:
            try:
                text = encode(content)
            except ValueError as exc:
                raise ValidationError(str(exc)) from exc
        if not text.strip():
            raise ValidationError("message is empty")
        return text

    def _editable(self, message_id: str) -> Message:
        self._ensure_open()
        message = self._timeline.get(message_id)
        if message is None:
            raise NotFoundError(f"message {message_id} not found")
        if message.deleted:
            raise ConflictError(f"message {message_id} is deleted")
        if message.sync != SyncState.CONFIRMED:
            raise ConflictError(f"message {message_id} is not confirmed yet")
        return message

    def _failed(self, message_id: str) -> Message:
        self._ensure_open()
        message = self._timeline.get(message_id)
        if message is None:
            raise NotFoundError(f"message {message_id} not found")
        if message.sync != SyncState.FAILED:
            raise ConflictError(f"message {message_id} has not failed")
        return message

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConflictError(f"conversation {self.conversation.key} is closed")

    def _mark_failed(self, correlation_ids: list[str]) -> None:
        for cid in correlation_ids:
            pending = self._timeline.find_by_correlation(cid)
            if pending is not None:
                self._timeline.upsert(pending.with_sync(SyncState.FAILED))

    def _emit_typing(self, is_typing: bool) -> None:
        if self._closed:
            return
        payload = TypingPayload(
            sender_id=self._identity.user_id,
            username=self._identity.username or self._identity.user_id,
            is_typing=is_typing,
            **self.conversation.target(),
        )
        self._spawn(self._send_typing(payload.dump()))

    async def _send_typing(self, payload: dict[str, Any]) -> None:
        # typing signals are ephemeral and never queued
        try:
            await self._channel.emit(ClientEvent.TYPING, payload)
        except TransportError as exc:
            logger.debug("Typing signal dropped: %s", exc.detail)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # -- channel listener --------------------------------------------------

    async def on_event(self, event: ChannelEvent) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug("Ignoring unhandled event %s", type(event).__name__)
            return
        try:
            await self._mutate(lambda: handler(event))
        except DuplicateAckError as exc:
            logger.warning("Dropped duplicate acknowledgement: %s", exc.detail)
        if isinstance(event, MessageReceived):
            await self._maybe_mark_read(event.message)

    async def on_connected(self, reconnected: bool) -> None:
        if self._closed:
            return
        self._notify()
        await self.flush(resend=True)
        if reconnected:
            await self.refresh_latest()

    async def on_disconnected(self) -> None:
        self._typing_in.clear()
        self._typing_out.reset()
        self._notify()

    def _on_message(self, event: MessageReceived) -> None:
        message = event.message
        if message.sender_id == self._identity.user_id:
            self._reconcile_own(message)
        else:
            self._ingest(message)

    def _on_ack(self, event: MessageAcknowledged) -> None:
        self._reconcile_own(event.message)

    def _on_edited(self, event: MessageEdited) -> None:
        incoming = event.message
        self._outbox.ack(_edit_key(incoming.id))
        existing = self._timeline.get(incoming.id)
        if existing is None:
            logger.debug("Edit for unknown message %s ignored", incoming.id)
            return
        if existing.deleted:
            logger.debug("Edit for deleted message %s ignored", incoming.id)
            return
        # last write wins; no version check between devices
        self._timeline.upsert(existing.edited_to(incoming.content))

    def _on_deleted(self, event: MessageDeleted) -> None:
        incoming = event.message
        self._outbox.ack(_delete_key(incoming.id))
        existing = self._timeline.get(incoming.id)
        if existing is None:
            logger.debug("Delete for unknown message %s ignored", incoming.id)
            return
        self._timeline.upsert(existing.tombstoned())
        if self._editing_id == incoming.id:
            self._editing_id = None

    def _on_status(self, event: StatusUpdated) -> None:
        self._apply_status(event.message_id, event.delivered, event.read)

    def _on_typing(self, event: TypingChanged) -> None:
        self._typing_in.apply(event.sender_id, event.username, event.is_typing)

    def _apply_status(self, message_id: str, delivered: bool, read: bool) -> None:
        if self.conversation.is_group:
            return
        existing = self._timeline.get(message_id)
        if existing is not None:
            self._timeline.upsert(existing.with_delivery(delivered, read))

    def _ingest(self, message: Message) -> None:
        """Apply a server-issued message, folding in any matching optimistic entry."""
        cid = message.client_msg_id
        if cid and message.sender_id == self._identity.user_id:
            pending = self._timeline.find_by_correlation(cid)
            if pending is not None:
                self._acked[cid] = message.id
                self._outbox.ack(cid)
                self._timeline.replace(pending.id, message)
                return
        self._timeline.upsert(message)

    def _reconcile_own(self, message: Message) -> None:
        cid = message.client_msg_id
        if cid is None:
            pending = self._timeline.first_pending(message.sender_id, message.content)
            if pending is not None and pending.client_msg_id is not None:
                cid = pending.client_msg_id
                message = replace(message, client_msg_id=cid)
        if cid is None:
            self._timeline.upsert(message)
            return
        acked_id = self._acked.get(cid)
        if acked_id is not None and acked_id != message.id:
            raise DuplicateAckError(
                f"correlation id {cid} acknowledged as {acked_id} and {message.id}"
            )
        self._ingest(message)
        self._acked[cid] = message.id
        self._outbox.ack(cid)

    async def _maybe_mark_read(self, message: Message) -> None:
        if self._closed or self.conversation.is_group:
            return
        if message.sender_id != self.conversation.peer_id or message.read:
            return
        await self.mark_read(message.id, message.sender_id)

    # -- serialization -----------------------------------------------------

    async def _mutate(self, fn: Callable[[], T]) -> T | None:
        async with self._lock:
            if self._closed:
                logger.debug("Discarding mutation on closed conversation %s", self.conversation.key)
                return None
            result = fn()
        self._notify()
        return result

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Conversation listener failed")
