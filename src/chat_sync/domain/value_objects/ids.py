from __future__ import annotations

from typing import NewType

MessageId = NewType("MessageId", str)

LOCAL_ID_PREFIX = "local-"


def local_message_id(correlation_id: str) -> MessageId:
    """Provisional id for an optimistic message, replaced by the server id on ack."""
    return MessageId(f"{LOCAL_ID_PREFIX}{correlation_id}")
