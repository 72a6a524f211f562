"""Typing indicators: debounced local emitter and expiring remote aggregator."""
from __future__ import annotations

import logging
from typing import Callable

from chat_sync.application.ports.clock import Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class TypingEmitter:
    """Turns keystrokes into at most one start and one trailing stop signal.

    A single idle timer is reset on every keystroke; the stop signal fires
    ``idle_seconds`` after the last one.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        emit: Callable[[bool], None],
        idle_seconds: float = 3.0,
    ) -> None:
        self._scheduler = scheduler
        self._emit = emit
        self._idle = idle_seconds
        self._typing = False
        self._timer: TimerHandle | None = None

    @property
    def is_typing(self) -> bool:
        return self._typing

    def set_typing(self, is_typing: bool) -> None:
        if not is_typing:
            self.stop()
            return
        if not self._typing:
            self._typing = True
            self._emit(True)
        self._cancel_timer()
        self._timer = self._scheduler.call_later(self._idle, self._on_idle)

    def stop(self) -> None:
        """Emit the stop signal now (e.g. the message was sent)."""
        self._cancel_timer()
        if self._typing:
            self._typing = False
            self._emit(False)

    def reset(self) -> None:
        """Forget local typing state without signalling (channel went down)."""
        self._cancel_timer()
        self._typing = False

    def _on_idle(self) -> None:
        self._timer = None
        if self._typing:
            self._typing = False
            self._emit(False)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class TypingAggregator:
    """Usernames currently typing in one conversation.

    Every entry expires ``expiry_seconds`` after its last start signal, so a
    lost stop event never leaves a stale indicator behind.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        self_id: str,
        expiry_seconds: float = 3.0,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._self_id = self_id
        self._expiry = expiry_seconds
        self._on_change = on_change
        self._timers: dict[str, TimerHandle] = {}

    @property
    def users(self) -> frozenset[str]:
        return frozenset(self._timers)

    def is_typing(self, username: str) -> bool:
        return username in self._timers

    def apply(self, sender_id: str, username: str, is_typing: bool) -> bool:
        """Record a remote signal. Returns True if the visible set changed."""
        if sender_id == self._self_id:
            return False
        previous = self._timers.pop(username, None)
        if previous is not None:
            previous.cancel()
        if is_typing:
            self._timers[username] = self._scheduler.call_later(
                self._expiry, lambda: self._expire(username)
            )
            return previous is None
        return previous is not None

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def _expire(self, username: str) -> None:
        if self._timers.pop(username, None) is None:
            return
        logger.debug("Typing indicator for %s expired", username)
        if self._on_change is not None:
            self._on_change()
