from __future__ import annotations

import logging

import aiohttp

from chat_sync.application.exceptions import TransportError

logger = logging.getLogger(__name__)


class AiohttpWsTransport:
    """Implements application.ports.realtime.RealtimeTransport over aiohttp."""

    def __init__(
        self,
        url: str,
        token: str,
        session: aiohttp.ClientSession,
        *,
        heartbeat: float = 20.0,
    ) -> None:
        self._url = url
        self._token = token
        self._session = session
        self._heartbeat = heartbeat
        self._ws: aiohttp.ClientWebSocketResponse | None = None

    async def connect(self) -> None:
        await self.close()
        try:
            self._ws = await self._session.ws_connect(
                self._url,
                heartbeat=self._heartbeat,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except (aiohttp.ClientError, OSError) as exc:
            raise TransportError(f"cannot connect to {self._url}: {exc}") from exc
        logger.debug("WS connected: %s", self._url)

    async def send(self, raw: str) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            raise TransportError("websocket is closed")
        try:
            await ws.send_str(raw)
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise TransportError(f"send failed: {exc}") from exc

    async def receive(self) -> str | None:
        ws = self._ws
        if ws is None or ws.closed:
            return None
        while True:
            msg = await ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                return msg.data.decode("utf-8", errors="replace")
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                logger.debug("WS closed by peer (code=%s)", ws.close_code)
                return None
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise TransportError(f"websocket error: {ws.exception()}")

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()
