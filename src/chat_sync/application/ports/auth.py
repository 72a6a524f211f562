from __future__ import annotations

from typing import Protocol

from chat_sync.application.dto.identity import Identity


class IdentityProvider(Protocol):
    def identify(self, token: str) -> Identity: ...
