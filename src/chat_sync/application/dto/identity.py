from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Identity:
    """Authenticated caller identity extracted from the bearer token."""

    user_id: str
    token: str
    username: str | None = None

    @property
    def authorization(self) -> str:
        return f"Bearer {self.token}"
