from __future__ import annotations

import asyncio
import logging
from typing import Any

import aiohttp
from pydantic import ValidationError as PydanticValidationError

from chat_sync.application.dto.identity import Identity
from chat_sync.application.dto.page import Page
from chat_sync.application.exceptions import AuthorizationError, TransportError
from chat_sync.domain.entities.conversation import ConversationRef
from chat_sync.infrastructure.mappers.message import wire_to_entity
from chat_sync.infrastructure.ws.protocol import PageResponse

logger = logging.getLogger(__name__)


class HttpHistoryClient:
    """Implements application.ports.history.HistoryApi over the REST backend."""

    def __init__(self, base_url: str, identity: Identity, session: aiohttp.ClientSession) -> None:
        self._base_url = base_url.rstrip("/")
        self._identity = identity
        self._session = session

    def route(self, conversation: ConversationRef) -> str:
        if conversation.group_id is not None:
            return f"/api/messages/group/{conversation.group_id}"
        return f"/api/messages/{self._identity.user_id}/{conversation.peer_id}"

    async def fetch_page(
        self,
        conversation: ConversationRef,
        cursor: str | None,
        limit: int,
    ) -> Page:
        params: dict[str, Any] = {"limit": limit}
        if cursor is not None:
            params["cursor"] = cursor
        body = await self._get_json(self.route(conversation), params)
        try:
            parsed = PageResponse.model_validate(body)
        except PydanticValidationError as exc:
            raise TransportError(f"malformed history page: {exc.error_count()} errors") from exc
        messages = [wire_to_entity(m, conversation) for m in parsed.messages]
        messages.sort(key=lambda m: m.created_at)
        logger.debug(
            "Fetched %d messages for %s (has_more=%s)",
            len(messages), conversation.key, parsed.has_more,
        )
        return Page(messages=messages, next_cursor=parsed.next_cursor, has_more=parsed.has_more)

    async def list_group_ids(self) -> list[str]:
        body = await self._get_json("/api/groups/my-groups", {})
        groups = body.get("groups", body) if isinstance(body, dict) else body
        return [str(g["id"]) for g in groups if isinstance(g, dict) and "id" in g]

    async def _get_json(self, path: str, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        headers = {"Authorization": self._identity.authorization}
        try:
            async with self._session.get(url, params=params, headers=headers) as resp:
                if resp.status == 403:
                    raise AuthorizationError(f"access denied: {path}")
                resp.raise_for_status()
                return await resp.json()
        except aiohttp.ClientResponseError as exc:
            raise TransportError(f"GET {path} failed with {exc.status}") from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise TransportError(f"GET {path} failed: {exc}") from exc
