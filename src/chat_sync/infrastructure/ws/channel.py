"""Session-wide realtime channel: one connection, many room subscriptions."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from pydantic import ValidationError as PydanticValidationError

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
from chat_sync.application.exceptions import TransportError
from chat_sync.application.ports.realtime import ChannelListener, RealtimeTransport
from chat_sync.domain.entities.conversation import ConversationRef
from chat_sync.infrastructure.mappers.message import wire_to_entity
from chat_sync.infrastructure.ws.protocol import (
    ClientEvent,
    JoinGroupChannelsPayload,
    JoinPayload,
    ServerEvent,
    StatusUpdatePayload,
    UserTypingPayload,
    WireMessage,
    decode_frame,
    encode_frame,
    route_event,
)

logger = logging.getLogger(__name__)

BASE_DELAY_SECONDS = 0.5
MAX_DELAY_SECONDS = 30.0


def calc_backoff(
    attempts: int,
    base: float = BASE_DELAY_SECONDS,
    maximum: float = MAX_DELAY_SECONDS,
) -> float:
    return min(base * (2 ** attempts), maximum)


_MESSAGE_EVENTS: dict[str, Callable[[Any], ChannelEvent]] = {
    ServerEvent.NEW_DIRECT_MESSAGE: MessageReceived,
    ServerEvent.NEW_GROUP_MESSAGE: MessageReceived,
    ServerEvent.MESSAGE_SENT_ACK: MessageAcknowledged,
    ServerEvent.MESSAGE_EDITED: MessageEdited,
    ServerEvent.MESSAGE_DELETED: MessageDeleted,
}


def parse_event(
    event: str,
    data: dict[str, Any],
    conversation: ConversationRef,
) -> ChannelEvent | None:
    """Translate a wire payload into a typed event for ``conversation``."""
    factory = _MESSAGE_EVENTS.get(event)
    if factory is not None:
        wire = WireMessage.model_validate(data)
        return factory(wire_to_entity(wire, conversation))
    if event == ServerEvent.MESSAGE_STATUS_UPDATE:
        status = StatusUpdatePayload.model_validate(data)
        return StatusUpdated(
            message_id=status.message_id,
            delivered=status.is_delivered,
            read=status.is_read,
        )
    if event == ServerEvent.USER_TYPING:
        typing = UserTypingPayload.model_validate(data)
        return TypingChanged(
            sender_id=typing.sender_id,
            username=typing.username or typing.sender_id,
            is_typing=typing.is_typing,
        )
    return None


class RealtimeChannel:
    """Owns the transport and fans inbound events out to conversation listeners.

    Lifecycle: ``connect()`` starts a background loop that (re)connects with
    exponential backoff; ``disconnect()`` stops it. Room memberships are
    cleared whenever the connection drops and re-joined on the next open.
    """

    def __init__(
        self,
        transport: RealtimeTransport,
        identity: Identity,
        *,
        reconnect_base_delay: float = BASE_DELAY_SECONDS,
        reconnect_max_delay: float = MAX_DELAY_SECONDS,
    ) -> None:
        self._transport = transport
        self._identity = identity
        self._base_delay = reconnect_base_delay
        self._max_delay = reconnect_max_delay
        self._listeners: dict[str, tuple[ConversationRef, ChannelListener]] = {}
        self._wanted_groups: set[str] = set()
        self._joined_groups: set[str] = set()
        self._connected = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._closing = False
        self._has_connected = False
        self._frames_received = 0

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    @property
    def joined_groups(self) -> frozenset[str]:
        return frozenset(self._joined_groups)

    @property
    def subscribed_groups(self) -> frozenset[str]:
        return frozenset(self._wanted_groups)

    async def connect(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.create_task(self._run(), name="realtime-channel")
        logger.info("Realtime channel started for user %s", self._identity.user_id)

    async def wait_connected(self, timeout: float | None = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def disconnect(self) -> None:
        """Close the connection for good; room memberships are forgotten."""
        self._closing = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self._transport.close()
        if self.connected:
            await self._handle_close()
        self._wanted_groups.clear()
        logger.info("Realtime channel stopped")

    # -- subscriptions -----------------------------------------------------

    async def subscribe(self, group_id: str) -> None:
        """Join a group room. Idempotent; remembered across reconnects."""
        group_id = str(group_id)
        self._wanted_groups.add(group_id)
        if self.connected and group_id not in self._joined_groups:
            await self._join_groups([group_id])

    def unsubscribe(self, group_id: str) -> None:
        group_id = str(group_id)
        self._wanted_groups.discard(group_id)
        self._joined_groups.discard(group_id)

    def add_listener(self, conversation: ConversationRef, listener: ChannelListener) -> None:
        self._listeners[conversation.key] = (conversation, listener)

    def remove_listener(self, conversation: ConversationRef, listener: ChannelListener) -> None:
        entry = self._listeners.get(conversation.key)
        if entry is not None and entry[1] is listener:
            del self._listeners[conversation.key]

    # -- outbound ----------------------------------------------------------

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        if not self.connected:
            raise TransportError("realtime channel is not connected")
        await self._transport.send(encode_frame(event, payload))

    async def _join_groups(self, group_ids: list[str]) -> None:
        payload = JoinGroupChannelsPayload(group_ids=sorted(group_ids))
        await self.emit(ClientEvent.JOIN_GROUP_CHANNELS, payload.dump())
        self._joined_groups.update(group_ids)

    # -- connection loop ---------------------------------------------------

    async def _run(self) -> None:
        attempts = 0
        while not self._closing:
            try:
                await self._transport.connect()
            except TransportError as exc:
                delay = calc_backoff(attempts, self._base_delay, self._max_delay)
                attempts += 1
                logger.warning("Realtime connect failed (%s), retrying in %.1fs", exc.detail, delay)
                await asyncio.sleep(delay)
                continue

            loop = asyncio.get_running_loop()
            opened_at = loop.time()
            self._frames_received = 0
            try:
                await self._handle_open()
                await self._read_loop()
            except TransportError as exc:
                logger.warning("Realtime connection lost: %s", exc.detail)
            finally:
                if self.connected:
                    await self._handle_close()

            # a connection that drops before delivering anything counts as a failed attempt
            if self._frames_received or loop.time() - opened_at >= self._max_delay:
                attempts = 0
            if not self._closing:
                delay = calc_backoff(attempts, self._base_delay, self._max_delay)
                attempts += 1
                logger.info("Reconnecting realtime channel in %.1fs", delay)
                await asyncio.sleep(delay)

    async def _handle_open(self) -> None:
        reconnected = self._has_connected
        self._has_connected = True
        self._connected.set()
        await self.emit(ClientEvent.JOIN, JoinPayload(user_id=self._identity.user_id).dump())
        if self._wanted_groups:
            await self._join_groups(list(self._wanted_groups))
        logger.info(
            "Realtime channel %s (groups=%d)",
            "reconnected" if reconnected else "connected",
            len(self._joined_groups),
        )
        for _ref, listener in list(self._listeners.values()):
            try:
                await listener.on_connected(reconnected)
            except Exception:
                logger.exception("Listener failed handling connect")

    async def _handle_close(self) -> None:
        self._connected.clear()
        self._joined_groups.clear()
        for _ref, listener in list(self._listeners.values()):
            try:
                await listener.on_disconnected()
            except Exception:
                logger.exception("Listener failed handling disconnect")

    async def _read_loop(self) -> None:
        while True:
            raw = await self._transport.receive()
            if raw is None:
                return
            self._frames_received += 1
            try:
                await self.dispatch(raw)
            except Exception:
                logger.exception("Error processing realtime frame")

    async def dispatch(self, raw: str | bytes) -> None:
        """Decode one frame and hand it to the owning conversation, in order."""
        try:
            frame = decode_frame(raw)
        except PydanticValidationError:
            logger.warning("Skipping malformed realtime frame")
            return

        ref = route_event(frame.data, self._identity.user_id)
        if ref is None:
            targets = [(r, l) for r, l in self._listeners.values() if not r.is_group]
        else:
            entry = self._listeners.get(ref.key)
            targets = [entry] if entry is not None else []
        if not targets:
            logger.debug("No listener for %s (%s)", frame.event, ref.key if ref else "-")
            return

        for conversation, listener in targets:
            event = parse_event(frame.event, frame.data, conversation)
            if event is None:
                logger.debug("Ignoring unknown event %s", frame.event)
                return
            await listener.on_event(event)
