from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

from realchat.core.errors import ProtocolError, TransportAuthRejected, TransportError
from realchat.core.settings import Settings
from realchat.realtime.protocol import InboundFrame, OutboundFrame, encode_frame, parse_frame
from realchat.realtime.state import (
    AUTH_FAILED_ATTEMPT_SENTINEL,
    AUTH_FAILURE_CLOSE,
    NORMAL_CLOSURE,
    ConnectionStatus,
    SessionState,
    is_auth_failure,
    reconnect_delay,
)
from realchat.realtime.transport import Transport, TransportFactory, build_ws_url
from realchat.schemas.users import UserIdentity

logger = logging.getLogger(__name__)

WRITER_FAILURE_CLOSE = 1011


class Credentials(Protocol):
    @property
    def is_authenticated(self) -> bool: ...

    @property
    def token(self) -> str | None: ...

    @property
    def user(self) -> UserIdentity | None: ...


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], TimerHandle]
FrameHandler = Callable[[InboundFrame], None]
StatusListener = Callable[[ConnectionStatus], None]


def loop_scheduler(delay_sec: float, callback: Callable[[], None]) -> TimerHandle:
    return asyncio.get_running_loop().call_later(delay_sec, callback)


class SessionManager:
    def __init__(
        self,
        *,
        credentials: Credentials,
        transport_factory: TransportFactory,
        settings: Settings,
        frame_handler: FrameHandler | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._credentials = credentials
        self._transport_factory = transport_factory
        self._settings = settings
        self._frame_handler = frame_handler
        self._scheduler = scheduler or loop_scheduler
        self._state = SessionState()
        self._transport: Transport | None = None
        self._connection_task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._writer_error: TransportError | None = None
        self._outgoing: asyncio.Queue[str] | None = None
        self._reconnect_timer: TimerHandle | None = None
        self._closing = False
        self._listeners: list[StatusListener] = []

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def reconnect_attempt(self) -> int:
        return self._state.reconnect_attempt

    @property
    def is_connected(self) -> bool:
        return self._state.status == ConnectionStatus.CONNECTED and self._transport is not None

    @property
    def has_pending_reconnect(self) -> bool:
        return self._reconnect_timer is not None

    def set_frame_handler(self, handler: FrameHandler | None) -> None:
        self._frame_handler = handler

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_status(self, target: ConnectionStatus) -> None:
        if not self._state.transition(target):
            return
        for listener in list(self._listeners):
            try:
                listener(target)
            except Exception:
                logger.exception("Status listener failed listener=%r", listener)

    def connect(self) -> bool:
        token = self._credentials.token
        user = self._credentials.user
        if not self._credentials.is_authenticated or not token or user is None:
            logger.debug("Connect skipped: no authenticated user")
            return False
        if self._transport is not None or self._state.status in (
            ConnectionStatus.CONNECTING,
            ConnectionStatus.CONNECTED,
        ):
            logger.debug("Connect skipped: connection already open or in progress")
            return False
        if self._state.status == ConnectionStatus.AUTH_FAILED:
            logger.warning("Connect refused: previous connection failed authentication")
            return False

        self._cancel_reconnect_timer()
        self._closing = False
        url = build_ws_url(
            self._settings.api_base_url,
            self._settings.ws_path,
            token=token,
            language=self._settings.language,
        )
        self._set_status(ConnectionStatus.CONNECTING)
        logger.info("Opening WebSocket connection user_id=%s attempt=%s", user.id, self._state.reconnect_attempt)
        self._connection_task = asyncio.get_running_loop().create_task(self._run_connection(url))
        return True

    async def disconnect(self) -> None:
        self._closing = True
        self._cancel_reconnect_timer()

        transport = self._transport
        self._transport = None
        if transport is not None:
            try:
                await transport.close(code=NORMAL_CLOSURE, reason="Manual disconnect")
            except TransportError as exc:
                logger.debug("WebSocket already closed error=%s", exc)

        task = self._connection_task
        self._connection_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        await self._stop_writer()
        self._outgoing = None
        self._state.reconnect_attempt = 0
        self._set_status(ConnectionStatus.DISCONNECTED)

    async def join(self) -> None:
        task = self._connection_task
        if task is None or task is asyncio.current_task():
            return
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            if not task.cancelled():
                raise

    def schedule_reconnect(self) -> None:
        if self._state.status == ConnectionStatus.AUTH_FAILED:
            logger.debug("Reconnect suppressed after authentication failure")
            return
        if not self._credentials.is_authenticated or self._credentials.user is None:
            logger.info("User no longer authenticated - stopping reconnection")
            self._cancel_reconnect_timer()
            self._set_status(ConnectionStatus.DISCONNECTED)
            return
        if self._state.reconnect_attempt >= self._settings.reconnect_max_attempts:
            logger.warning("Max reconnection attempts reached attempts=%s", self._state.reconnect_attempt)
            self._set_status(ConnectionStatus.FAILED)
            return

        delay_ms = reconnect_delay(
            self._state.reconnect_attempt,
            base_ms=self._settings.reconnect_base_delay_ms,
            max_ms=self._settings.reconnect_max_delay_ms,
        )
        self._state.reconnect_attempt += 1
        self._cancel_reconnect_timer()
        self._set_status(ConnectionStatus.RECONNECTING)
        logger.info(
            "Scheduling WebSocket reconnection attempt=%s delay_ms=%s",
            self._state.reconnect_attempt,
            delay_ms,
        )
        self._reconnect_timer = self._scheduler(delay_ms / 1000.0, self._on_reconnect_timer)

    def send_frame(self, frame: OutboundFrame) -> bool:
        if not self.is_connected or self._outgoing is None:
            logger.warning("Cannot send frame type=%s: not connected", frame.type)
            return False
        try:
            self._outgoing.put_nowait(encode_frame(frame))
        except asyncio.QueueFull:
            logger.warning("Outgoing queue full, frame type=%s rejected", frame.type)
            return False
        logger.debug("Frame queued type=%s", frame.type)
        return True

    def send_typing_indicator(self, conversation_id: str, is_typing: bool) -> bool:
        if not self.is_connected:
            return False
        logger.info(
            "Typing indicator: %s typing conversation_id=%s",
            "start" if is_typing else "stop",
            conversation_id,
        )
        return True

    def _on_reconnect_timer(self) -> None:
        self._reconnect_timer = None
        if not self.connect() and self._state.status == ConnectionStatus.RECONNECTING:
            self._set_status(ConnectionStatus.DISCONNECTED)

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    async def _run_connection(self, url: str) -> None:
        try:
            transport = await self._transport_factory(url)
        except TransportAuthRejected as exc:
            logger.warning("WebSocket handshake rejected status=%s", exc.status)
            self._handle_close(AUTH_FAILURE_CLOSE, "auth rejected")
            return
        except TransportError as exc:
            self._handle_transport_error(exc)
            return

        if self._closing:
            await transport.close(code=NORMAL_CLOSURE, reason="Manual disconnect")
            return

        self._transport = transport
        self._writer_error = None
        self._outgoing = asyncio.Queue(maxsize=self._settings.outgoing_queue_size)
        self._state.reconnect_attempt = 0
        self._set_status(ConnectionStatus.CONNECTED)
        logger.info("WebSocket connected")
        self._writer_task = asyncio.get_running_loop().create_task(self._writer_loop(transport, self._outgoing))

        read_error: TransportError | None = None
        try:
            while True:
                raw = await transport.receive_text()
                if raw is None:
                    break
                self._dispatch(raw)
        except TransportError as exc:
            read_error = exc

        await self._stop_writer()
        if self._transport is transport:
            self._transport = None
        self._outgoing = None
        if self._closing:
            return

        error = read_error or self._writer_error
        if error is not None:
            self._handle_transport_error(error)
            return
        self._handle_close(transport.close_code, transport.close_reason)

    async def _writer_loop(self, transport: Transport, queue: asyncio.Queue[str]) -> None:
        while True:
            data = await queue.get()
            try:
                await transport.send_text(data)
            except TransportError as exc:
                logger.warning("WebSocket writer failed error=%s", exc)
                self._writer_error = exc
                try:
                    await transport.close(code=WRITER_FAILURE_CLOSE, reason="writer failure")
                except TransportError:
                    logger.debug("WebSocket already closed after writer failure")
                return

    async def _stop_writer(self) -> None:
        task = self._writer_task
        self._writer_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _dispatch(self, raw: str | bytes) -> None:
        try:
            frame = parse_frame(raw)
        except ProtocolError as exc:
            logger.warning("Dropping malformed frame code=%s message=%s", exc.code, exc.message)
            return

        if self._frame_handler is None:
            logger.debug("No frame handler registered, dropping frame type=%s", frame.type)
            return
        try:
            self._frame_handler(frame)
        except Exception:
            logger.exception("Frame handler failed type=%s", frame.type)

    def _handle_transport_error(self, exc: TransportError) -> None:
        logger.warning("WebSocket transport error: %s", exc)
        self._set_status(ConnectionStatus.ERROR)
        self.schedule_reconnect()

    def _handle_close(self, code: int | None, reason: str | None) -> None:
        logger.info("WebSocket closed code=%s reason=%s", code, reason)
        if is_auth_failure(code, reason):
            logger.warning("WebSocket closed due to authentication failure - not reconnecting")
            self._cancel_reconnect_timer()
            self._state.reconnect_attempt = AUTH_FAILED_ATTEMPT_SENTINEL
            self._set_status(ConnectionStatus.AUTH_FAILED)
            return
        if code == NORMAL_CLOSURE:
            self._set_status(ConnectionStatus.DISCONNECTED)
            return
        self.schedule_reconnect()
