from __future__ import annotations

import asyncio
import logging
import uuid

import aiohttp

from chat_sync.application.dto.identity import Identity
from chat_sync.application.exceptions import AuthorizationError, TransportError, ValidationError
from chat_sync.application.ports.auth import IdentityProvider
from chat_sync.application.ports.clock import Clock, Scheduler
from chat_sync.application.ports.history import HistoryApi
from chat_sync.application.ports.upload import Uploader
from chat_sync.config import Settings, settings
from chat_sync.domain.entities.conversation import ConversationRef
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.content import (
    PhotoContent,
    PostShareContent,
    VoiceContent,
    encode,
)
from chat_sync.infrastructure.auth.token_identity import JwtIdentityProvider
from chat_sync.infrastructure.http.history_client import HttpHistoryClient
from chat_sync.infrastructure.http.upload_client import HttpUploadClient
from chat_sync.infrastructure.ws.aiohttp_transport import AiohttpWsTransport
from chat_sync.infrastructure.ws.channel import RealtimeChannel
from chat_sync.infrastructure.ws.protocol import ClientEvent, SendMessagePayload
from chat_sync.services.conversation_service import ConversationStateMachine

logger = logging.getLogger(__name__)


class ChatSession:
    """Session-scoped owner of the identity, the shared channel and the open view.

    At most one conversation is open at a time; opening another tears the
    previous one down first.
    """

    def __init__(
        self,
        identity: Identity,
        channel: RealtimeChannel,
        history: HistoryApi,
        uploader: Uploader,
        *,
        config: Settings = settings,
        clock: Clock | None = None,
        scheduler: Scheduler | None = None,
        http: aiohttp.ClientSession | None = None,
    ) -> None:
        self.identity = identity
        self.channel = channel
        self._history = history
        self._uploader = uploader
        self._config = config
        self._clock = clock
        self._scheduler = scheduler
        self._http = http
        self._current: ConversationStateMachine | None = None

    @property
    def current(self) -> ConversationStateMachine | None:
        return self._current

    async def start(self, group_ids: list[str] | None = None) -> None:
        """Join the user channel and every group room, then connect."""
        if group_ids is None:
            try:
                group_ids = await self._history.list_group_ids()
            except (TransportError, AuthorizationError) as exc:
                logger.warning("Could not list groups, joining none: %s", exc.detail)
                group_ids = []
        for group_id in group_ids:
            await self.channel.subscribe(group_id)
        await self.channel.connect()

    async def open_conversation(self, conversation: ConversationRef) -> ConversationStateMachine:
        await self.close_conversation()
        if conversation.group_id is not None:
            await self.channel.subscribe(conversation.group_id)
        state = ConversationStateMachine(
            conversation,
            self.identity,
            self.channel,
            self._history,
            clock=self._clock,
            scheduler=self._scheduler,
            page_limit=self._config.PAGE_LIMIT,
            typing_idle_seconds=self._config.TYPING_IDLE_SECONDS,
            typing_expiry_seconds=self._config.TYPING_EXPIRY_SECONDS,
            outbox_max_attempts=self._config.OUTBOX_MAX_ATTEMPTS,
        )
        self._current = state
        logger.info("Opening conversation %s", conversation.key)
        try:
            await state.open()
        except AuthorizationError:
            if self._current is state:
                self._current = None
            raise
        return state

    async def close_conversation(self) -> None:
        state, self._current = self._current, None
        if state is not None:
            await state.close()

    async def send_photo(self, data: bytes, filename: str, content_type: str | None = None) -> Message:
        state = self._require_current()
        url = await self._upload(data, filename, content_type)
        return await state.send(PhotoContent(image_url=url))

    async def send_voice(self, data: bytes, filename: str, content_type: str | None = None) -> Message:
        state = self._require_current()
        url = await self._upload(data, filename, content_type)
        return await state.send(VoiceContent(audio_url=url))

    async def share_post(
        self,
        conversation: ConversationRef,
        post_id: str,
        image_url: str,
        caption: str = "",
    ) -> Message | None:
        """Share a post into any conversation, open or not.

        Returns the optimistic message when the target is the open
        conversation; otherwise the send is fire-and-forget and raises
        TransportError while offline.
        """
        content = PostShareContent(post_id=post_id, image_url=image_url, caption=caption)
        current = self._current
        if current is not None and not current.closed and current.conversation == conversation:
            return await current.send(content)
        try:
            text = encode(content)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        payload = SendMessagePayload(
            sender_id=self.identity.user_id,
            content=text,
            client_msg_id=uuid.uuid4().hex,
            **conversation.target(),
        )
        await self.channel.emit(ClientEvent.SEND_MESSAGE, payload.dump())
        return None

    async def close(self) -> None:
        await self.close_conversation()
        await self.channel.disconnect()
        if self._http is not None:
            await self._http.close()

    async def _upload(self, data: bytes, filename: str, content_type: str | None) -> str:
        # once started an upload runs to completion even if the caller goes away
        return await asyncio.shield(self._uploader.upload(data, filename, content_type))

    def _require_current(self) -> ConversationStateMachine:
        if self._current is None or self._current.closed:
            raise ValidationError("no conversation is open")
        return self._current


async def create_session(
    config: Settings = settings,
    token: str | None = None,
    identity_provider: IdentityProvider | None = None,
) -> ChatSession:
    provider = identity_provider or JwtIdentityProvider(config.JWT_SECRET, config.JWT_ALGORITHM)
    identity = provider.identify(token or config.AUTH_TOKEN)
    http = aiohttp.ClientSession(
        timeout=aiohttp.ClientTimeout(total=config.HTTP_TIMEOUT_SECONDS),
    )
    transport = AiohttpWsTransport(
        config.ws_url, identity.token, http, heartbeat=config.WS_HEARTBEAT_SECONDS,
    )
    channel = RealtimeChannel(
        transport,
        identity,
        reconnect_base_delay=config.RECONNECT_BASE_DELAY,
        reconnect_max_delay=config.RECONNECT_MAX_DELAY,
    )
    return ChatSession(
        identity,
        channel,
        HttpHistoryClient(config.API_URL, identity, http),
        HttpUploadClient(config.API_URL, identity, http),
        config=config,
        http=http,
    )
