"""Session-scoped outbox for realtime writes.

Delivery is at-least-once: records stay queued while the channel is down and
are flushed in order on reconnect. A record with an ``ack_key`` is retired
only when its echo arrives; the server de-duplicates resends by correlation
id. Records without one are retired once written.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from chat_sync.application.exceptions import TransportError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class OutboxRecord:
    event: str
    payload: dict[str, Any]
    ack_key: str | None = None
    attempts: int = 0
    written: bool = False


SendFn = Callable[[str, dict[str, Any]], Awaitable[None]]


class Outbox:
    def __init__(self, send: SendFn, max_attempts: int = 5) -> None:
        self._send = send
        self._max_attempts = max_attempts
        self._records: list[OutboxRecord] = []
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    @property
    def records(self) -> tuple[OutboxRecord, ...]:
        return tuple(self._records)

    def add(self, event: str, payload: dict[str, Any], ack_key: str | None = None) -> OutboxRecord:
        record = OutboxRecord(event=event, payload=payload, ack_key=ack_key)
        self._records.append(record)
        return record

    def ack(self, ack_key: str) -> bool:
        for i, record in enumerate(self._records):
            if record.ack_key == ack_key:
                del self._records[i]
                return True
        return False

    def clear(self) -> None:
        self._records.clear()

    async def flush(self, *, resend: bool = False) -> list[OutboxRecord]:
        """Write queued records in order; stop at the first transport failure.

        Records already written and awaiting their echo are only written
        again when ``resend`` is set (after a reconnect). Returns the records
        dropped for exceeding ``max_attempts``.
        """
        exhausted: list[OutboxRecord] = []
        async with self._lock:
            for record in list(self._records):
                if record.written and not resend:
                    continue
                if record.attempts >= self._max_attempts:
                    logger.warning(
                        "Outbox record %s (%s) exceeded max attempts, dropping",
                        record.ack_key, record.event,
                    )
                    self._records.remove(record)
                    exhausted.append(record)
                    continue
                try:
                    await self._send(record.event, record.payload)
                except TransportError as exc:
                    logger.info("Outbox flush paused: %s", exc.detail)
                    break
                record.attempts += 1
                record.written = True
                if record.ack_key is None:
                    self._records.remove(record)
        return exhausted
