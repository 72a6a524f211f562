from __future__ import annotations

import asyncio
import logging
import mimetypes

import aiohttp

from chat_sync.application.dto.identity import Identity
from chat_sync.application.exceptions import UploadError

logger = logging.getLogger(__name__)

UPLOAD_PATH = "/api/posts"


class HttpUploadClient:
    """Implements application.ports.upload.Uploader via the posts endpoint."""

    def __init__(self, base_url: str, identity: Identity, session: aiohttp.ClientSession) -> None:
        self._url = f"{base_url.rstrip('/')}{UPLOAD_PATH}"
        self._identity = identity
        self._session = session

    async def upload(self, data: bytes, filename: str, content_type: str | None = None) -> str:
        content_type = content_type or mimetypes.guess_type(filename)[0] or "application/octet-stream"
        form = aiohttp.FormData()
        form.add_field("image", data, filename=filename, content_type=content_type)
        headers = {"Authorization": self._identity.authorization}
        try:
            async with self._session.post(self._url, data=form, headers=headers) as resp:
                resp.raise_for_status()
                body = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise UploadError(f"upload of {filename} failed: {exc}") from exc

        url = body.get("imageUrl") if isinstance(body, dict) else None
        if not url:
            raise UploadError(f"upload of {filename} returned no URL")
        logger.debug("Uploaded %s (%d bytes)", filename, len(data))
        return str(url)
