from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol
from urllib.parse import urlencode, urlsplit

import aiohttp

from realchat.core.errors import TransportAuthRejected, TransportError
from realchat.realtime.state import NORMAL_CLOSURE

logger = logging.getLogger(__name__)

ABNORMAL_CLOSURE = 1006
AUTH_REJECTED_STATUSES = (401, 403)


class Transport(Protocol):
    close_code: int | None
    close_reason: str

    async def send_text(self, data: str) -> None: ...

    async def receive_text(self) -> str | bytes | None: ...

    async def close(self, *, code: int = NORMAL_CLOSURE, reason: str = "") -> None: ...


TransportFactory = Callable[[str], Awaitable[Transport]]


def build_ws_url(api_base_url: str, ws_path: str, *, token: str, language: str) -> str:
    parts = urlsplit(api_base_url)
    scheme = "wss" if parts.scheme == "https" else "ws"
    path = f"{parts.path.rstrip('/')}/{ws_path.lstrip('/')}"
    query = urlencode({"token": token, "lang": language})
    return f"{scheme}://{parts.netloc}{path}?{query}"


class AiohttpTransport:
    def __init__(
        self,
        session: aiohttp.ClientSession,
        websocket: aiohttp.ClientWebSocketResponse,
        *,
        owns_session: bool,
    ) -> None:
        self._session = session
        self._websocket = websocket
        self._owns_session = owns_session
        self.close_code: int | None = None
        self.close_reason = ""

    @classmethod
    async def open(
        cls,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        heartbeat: float | None = None,
    ) -> AiohttpTransport:
        owns_session = session is None
        client_session = session or aiohttp.ClientSession()
        try:
            websocket = await client_session.ws_connect(url, heartbeat=heartbeat, autoclose=True, autoping=True)
        except aiohttp.WSServerHandshakeError as exc:
            if owns_session:
                await client_session.close()
            if exc.status in AUTH_REJECTED_STATUSES:
                raise TransportAuthRejected(exc.status, exc.message) from exc
            raise TransportError(f"WebSocket handshake failed with HTTP {exc.status}") from exc
        except (aiohttp.ClientError, OSError, asyncio.TimeoutError) as exc:
            if owns_session:
                await client_session.close()
            raise TransportError(str(exc) or exc.__class__.__name__) from exc
        logger.debug("WebSocket transport opened")
        return cls(client_session, websocket, owns_session=owns_session)

    async def send_text(self, data: str) -> None:
        try:
            await self._websocket.send_str(data)
        except (aiohttp.ClientError, ConnectionError, RuntimeError) as exc:
            raise TransportError(f"WebSocket send failed: {exc}") from exc

    async def receive_text(self) -> str | bytes | None:
        while True:
            message = await self._websocket.receive()
            if message.type == aiohttp.WSMsgType.TEXT:
                return message.data
            if message.type == aiohttp.WSMsgType.BINARY:
                return message.data
            if message.type == aiohttp.WSMsgType.CLOSE:
                self.close_code = message.data
                self.close_reason = message.extra or ""
                await self._release()
                return None
            if message.type in (aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                if self.close_code is None:
                    self.close_code = self._websocket.close_code or ABNORMAL_CLOSURE
                await self._release()
                return None
            if message.type == aiohttp.WSMsgType.ERROR:
                await self._release()
                raise TransportError(f"WebSocket error: {self._websocket.exception()}")

    async def close(self, *, code: int = NORMAL_CLOSURE, reason: str = "") -> None:
        if not self._websocket.closed:
            await self._websocket.close(code=code, message=reason.encode("utf-8"))
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
        await self._release()

    async def _release(self) -> None:
        if self._owns_session and not self._session.closed:
            await self._session.close()
