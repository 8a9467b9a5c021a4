"""Realtime channel with bounded automatic reconnection.

States: DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED.

An unexpected close, an error, or a failed open counts one attempt. While
the count stays below ``max_reconnect_attempts`` a reconnect is scheduled
``reconnect_interval_seconds`` later; otherwise ConnectionUnavailableError is
published on ``unavailable`` and the channel stays DISCONNECTED until the
next explicit ``connect()``. ``disconnect()`` never reconnects.

Outbound sends are at-most-once: when not CONNECTED they are dropped, never
queued or replayed. Public methods do not raise.
"""

import asyncio
import json
from typing import Awaitable, Callable, Optional, Protocol
from urllib.parse import urlencode

import aiohttp
import structlog
from pydantic import ValidationError

from freework.config import Settings, get_settings
from freework.exceptions import ConnectionUnavailableError
from freework.models.message import (
    Message,
    MessageNotification,
    ReadReceipt,
    TypingIndicator,
)
from freework.models.realtime import (
    ConnectionState,
    MessageFrame,
    NotificationFrame,
    ReadReceiptFrame,
    TypingFrame,
    inbound_frame_adapter,
)
from freework.services.broadcast import Broadcast, StateBroadcast
from freework.services.clock import Clock, TimerHandle

logger = structlog.get_logger(__name__)

INBOUND_TYPES = {"MESSAGE", "TYPING", "NOTIFICATION", "READ_RECEIPT"}


class RealtimeConnection(Protocol):
    """An open bidirectional text connection."""

    async def send_str(self, data: str) -> None: ...

    async def receive_str(self) -> Optional[str]:
        """Next text frame, or None once the peer has closed."""
        ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[RealtimeConnection]]


class AiohttpConnection:
    """RealtimeConnection over an aiohttp websocket."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse):
        self._ws = ws

    async def send_str(self, data: str) -> None:
        await self._ws.send_str(data)

    async def receive_str(self) -> Optional[str]:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                return msg.data
            if msg.type == aiohttp.WSMsgType.BINARY:
                try:
                    return msg.data.decode("utf-8")
                except UnicodeDecodeError:
                    logger.warning("realtime_frame_not_utf8", size=len(msg.data))
                    continue
            if msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionError(f"Websocket error: {self._ws.exception()}")
            if msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                return None

    async def close(self) -> None:
        await self._ws.close()


class AiohttpConnector:
    """Opens websockets on a lazily created ``aiohttp.ClientSession``."""

    def __init__(self, heartbeat: Optional[float] = 20.0):
        self.heartbeat = heartbeat
        self._session: Optional[aiohttp.ClientSession] = None

    async def __call__(self, url: str) -> RealtimeConnection:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        ws = await self._session.ws_connect(url, heartbeat=self.heartbeat)
        return AiohttpConnection(ws)

    async def aclose(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None


class RealtimeChannel:
    """Persistent connection demultiplexed into typed event streams."""

    def __init__(
        self,
        connector: Connector,
        clock: Clock,
        settings: Optional[Settings] = None,
    ):
        self.connector = connector
        self.clock = clock
        self.settings = settings or get_settings()

        self.messages: Broadcast[Message] = Broadcast("messages")
        self.typing: Broadcast[TypingIndicator] = Broadcast("typing")
        self.notifications: Broadcast[MessageNotification] = Broadcast("notifications")
        self.read_receipts: Broadcast[ReadReceipt] = Broadcast("read_receipts")
        self.connected: StateBroadcast[bool] = StateBroadcast("connected", False)
        self.unavailable: Broadcast[ConnectionUnavailableError] = Broadcast("unavailable")

        self._state = ConnectionState.DISCONNECTED
        self._attempts = 0
        self._token: Optional[str] = None
        self._connection: Optional[RealtimeConnection] = None
        self._reader: Optional[asyncio.Task] = None
        self._reconnect_timer: Optional[TimerHandle] = None
        self._closing = False
        self._exhausted = False
        # Bumped by connect()/disconnect() so a stale open cannot install itself
        self._epoch = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._attempts

    @property
    def exhausted(self) -> bool:
        """True once the reconnect budget is spent, until the next ``connect()``."""
        return self._exhausted

    @property
    def has_pending_reconnect(self) -> bool:
        return self._reconnect_timer is not None

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def update_token(self, token: str) -> None:
        """Use ``token`` for every later (re)connect."""
        self._token = token

    # -- connection lifecycle --------------------------------------------------

    async def connect(self, token: str) -> None:
        """Open the connection, starting a fresh reconnect budget.

        No-op while CONNECTED or CONNECTING.
        """
        if self._state != ConnectionState.DISCONNECTED:
            logger.debug("realtime_connect_ignored", state=self._state.value)
            return

        self._token = token
        self._epoch += 1
        self._closing = False
        self._exhausted = False
        self._attempts = 0
        self._cancel_reconnect()
        await self._open()

    async def disconnect(self) -> None:
        """Close the connection on purpose; no reconnection follows."""
        self._closing = True
        self._epoch += 1
        self._cancel_reconnect()

        connection, self._connection = self._connection, None
        reader, self._reader = self._reader, None

        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        if connection is not None:
            await self._safe_close(connection)

        was_open = self._state != ConnectionState.DISCONNECTED
        self._set_state(ConnectionState.DISCONNECTED)
        if was_open:
            logger.info("realtime_disconnected")

    async def aclose(self) -> None:
        """Disconnect and release the connector's resources."""
        await self.disconnect()
        close = getattr(self.connector, "aclose", None)
        if close is not None:
            await close()

    async def _open(self) -> None:
        if self._closing or self._token is None:
            return
        if self._state != ConnectionState.DISCONNECTED:
            return

        epoch = self._epoch
        self._set_state(ConnectionState.CONNECTING)
        try:
            connection = await self.connector(self._build_url(self._token))
        except Exception as e:
            logger.warning(
                "realtime_connect_failed",
                error=str(e),
                error_type=type(e).__name__,
                attempt=self._attempts,
            )
            if epoch == self._epoch:
                self._handle_drop()
            return

        if self._closing or epoch != self._epoch:
            # disconnect() ran while the socket was opening
            await self._safe_close(connection)
            return

        self._connection = connection
        self._attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        self._reader = asyncio.create_task(self._read_loop(connection))
        logger.info("realtime_connected")

    async def _read_loop(self, connection: RealtimeConnection) -> None:
        try:
            while True:
                data = await connection.receive_str()
                if data is None:
                    break
                self._dispatch(data)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("realtime_receive_failed", error=str(e), error_type=type(e).__name__)

        if self._connection is connection:
            self._connection = None
            self._reader = None
            await self._safe_close(connection)
            logger.info("realtime_connection_dropped")
            self._handle_drop()

    def _handle_drop(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        if self._closing:
            return

        self._attempts += 1
        max_attempts = self.settings.max_reconnect_attempts
        if self._attempts < max_attempts:
            delay = self.settings.reconnect_interval_seconds
            logger.info(
                "realtime_reconnect_scheduled",
                attempt=self._attempts,
                max_attempts=max_attempts,
                delay_seconds=delay,
            )
            self._reconnect_timer = self.clock.call_later(delay, self._reconnect)
        else:
            self._exhausted = True
            logger.error("realtime_reconnect_exhausted", attempts=self._attempts)
            self.unavailable.publish(ConnectionUnavailableError(self._attempts))

    async def _reconnect(self) -> None:
        self._reconnect_timer = None
        await self._open()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_timer is not None:
            self._reconnect_timer.cancel()
            self._reconnect_timer = None

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        self._state = state
        is_connected = state == ConnectionState.CONNECTED
        if self.connected.value != is_connected:
            self.connected.publish(is_connected)

    def _build_url(self, token: str) -> str:
        separator = "&" if "?" in self.settings.ws_url else "?"
        return f"{self.settings.ws_url}{separator}{urlencode({'token': token})}"

    @staticmethod
    async def _safe_close(connection: RealtimeConnection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.debug("realtime_close_failed", error=str(e))

    # -- inbound -----------------------------------------------------------------

    def _dispatch(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("realtime_frame_not_json", preview=raw[:200])
            return

        frame_type = data.get("type") if isinstance(data, dict) else None
        if frame_type not in INBOUND_TYPES:
            logger.info("realtime_frame_unknown_type", type=frame_type)
            return

        try:
            frame = inbound_frame_adapter.validate_python(data)
        except ValidationError as e:
            logger.warning(
                "realtime_frame_invalid",
                type=frame_type,
                error_count=e.error_count(),
            )
            return

        if isinstance(frame, MessageFrame):
            self.messages.publish(frame.message)
        elif isinstance(frame, TypingFrame):
            self.typing.publish(frame.typing)
        elif isinstance(frame, NotificationFrame):
            self.notifications.publish(frame.notification)
        elif isinstance(frame, ReadReceiptFrame):
            self.read_receipts.publish(frame.receipt)

    # -- outbound ----------------------------------------------------------------

    async def send(self, payload: dict) -> bool:
        """Write one frame if connected.

        Returns:
            True if the frame was written, False if it was dropped
        """
        connection = self._connection
        if self._state != ConnectionState.CONNECTED or connection is None:
            logger.warning(
                "realtime_send_dropped",
                type=payload.get("type"),
                state=self._state.value,
            )
            return False

        try:
            await connection.send_str(json.dumps(payload, default=str))
        except Exception as e:
            logger.warning(
                "realtime_send_failed",
                type=payload.get("type"),
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True

    async def send_typing(self, conversation_id: str, is_typing: bool) -> bool:
        return await self.send(
            {"type": "TYPING", "conversationId": conversation_id, "isTyping": is_typing}
        )

    async def mark_read(self, conversation_id: str) -> bool:
        return await self.send({"type": "MARK_READ", "conversationId": conversation_id})
