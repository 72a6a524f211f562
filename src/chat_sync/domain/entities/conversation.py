from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import ConversationKind


@dataclass(frozen=True, slots=True)
class ConversationRef:
    """A direct conversation (peer user) or a group conversation, never both."""

    peer_id: str | None = None
    group_id: str | None = None

    def __post_init__(self) -> None:
        if (self.peer_id is None) == (self.group_id is None):
            raise ValueError("exactly one of peer_id or group_id must be set")

    @classmethod
    def direct(cls, peer_id: str) -> ConversationRef:
        return cls(peer_id=str(peer_id))

    @classmethod
    def group(cls, group_id: str) -> ConversationRef:
        return cls(group_id=str(group_id))

    @property
    def kind(self) -> ConversationKind:
        return ConversationKind.GROUP if self.group_id is not None else ConversationKind.DIRECT

    @property
    def is_group(self) -> bool:
        return self.group_id is not None

    @property
    def key(self) -> str:
        """Stable routing key, also used as the channel listener key."""
        if self.group_id is not None:
            return f"group:{self.group_id}"
        return f"user:{self.peer_id}"

    def target(self) -> dict[str, str]:
        """Addressing fields for outgoing realtime payloads."""
        if self.group_id is not None:
            return {"group_id": self.group_id}
        return {"receiver_id": self.peer_id or ""}
