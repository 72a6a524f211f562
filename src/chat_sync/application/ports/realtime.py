from __future__ import annotations

from typing import Any, Protocol

from chat_sync.application.dto.events import ChannelEvent
from chat_sync.domain.entities.conversation import ConversationRef


class RealtimeTransport(Protocol):
    """Raw bidirectional text connection (one per session)."""

    async def connect(self) -> None: ...

    async def send(self, raw: str) -> None: ...

    async def receive(self) -> str | None:
        """Next text frame, or None once the connection is closed."""
        ...

    async def close(self) -> None: ...


class ChannelListener(Protocol):
    async def on_event(self, event: ChannelEvent) -> None: ...

    async def on_connected(self, reconnected: bool) -> None: ...

    async def on_disconnected(self) -> None: ...


class RealtimeChannelPort(Protocol):
    @property
    def connected(self) -> bool: ...

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        """Write one event. Raises TransportError when the channel is down."""
        ...

    def add_listener(self, conversation: ConversationRef, listener: ChannelListener) -> None: ...

    def remove_listener(self, conversation: ConversationRef, listener: ChannelListener) -> None: ...
