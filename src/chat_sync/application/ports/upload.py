from __future__ import annotations

from typing import Protocol


class Uploader(Protocol):
    async def upload(self, data: bytes, filename: str, content_type: str | None = None) -> str:
        """Store a binary asset and return its public URL."""
        ...
