"""Unit tests for RealtimeChannel connection lifecycle and frame routing."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

from freework.exceptions import ConnectionUnavailableError
from freework.models.realtime import ConnectionState
from freework.services.realtime_channel import AiohttpConnection, RealtimeChannel
from tests.fakes import FakeConnection, message_payload, settle


@pytest.fixture
def limited_channel(connector, clock, settings):
    """Channel that gives up after three attempts."""
    return RealtimeChannel(
        connector, clock, settings.model_copy(update={"max_reconnect_attempts": 3})
    )


async def _fail_three_times(channel, connector, clock):
    connector.fail = True
    await channel.connect("token-1")
    await clock.advance(3)
    await clock.advance(3)


# ---------------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------------

class TestConnect:
    """Tests for connect."""

    async def test_connect_passes_token_in_url(self, channel, connector):
        await channel.connect("abc.def")

        assert connector.urls == ["ws://realtime.test/ws?token=abc.def"]
        assert channel.state == ConnectionState.CONNECTED
        assert channel.is_connected() is True
        assert channel.connected.value is True

    async def test_connect_while_connected_is_noop(self, channel, connector):
        await channel.connect("t1")
        await channel.connect("t1")

        assert len(connector.urls) == 1

    async def test_existing_query_string_is_extended(self, connector, clock, settings):
        channel = RealtimeChannel(
            connector, clock, settings.model_copy(update={"ws_url": "ws://realtime.test/ws?v=2"})
        )

        await channel.connect("t1")

        assert connector.urls == ["ws://realtime.test/ws?v=2&token=t1"]
        await channel.disconnect()

    async def test_updated_token_used_on_reconnect(self, channel, connector, clock):
        await channel.connect("t1")
        channel.update_token("t2")
        connector.last.drop()
        await settle()

        await clock.advance(3)

        assert connector.urls[-1].endswith("token=t2")

    async def test_connected_stream_tracks_state(self, channel):
        states = []
        channel.connected.subscribe(states.append)

        await channel.connect("t1")
        await channel.disconnect()

        assert states == [False, True, False]


# ---------------------------------------------------------------------------
# Reconnect
# ---------------------------------------------------------------------------

class TestReconnect:
    """Tests for bounded automatic reconnection."""

    async def test_drop_schedules_reconnect(self, channel, connector, clock):
        await channel.connect("t1")
        connector.last.drop()
        await settle()

        assert channel.state == ConnectionState.DISCONNECTED
        assert channel.reconnect_attempts == 1
        assert channel.has_pending_reconnect is True

        await clock.advance(3)

        assert len(connector.urls) == 2
        assert channel.is_connected() is True
        assert channel.reconnect_attempts == 0

    async def test_reconnect_waits_for_interval(self, channel, connector, clock):
        await channel.connect("t1")
        connector.last.drop()
        await settle()

        await clock.advance(2.5)

        assert len(connector.urls) == 1

    async def test_three_failures_count_three(self, channel, connector, clock):
        await _fail_three_times(channel, connector, clock)

        assert channel.reconnect_attempts == 3
        assert len(connector.urls) == 3
        assert channel.has_pending_reconnect is True
        assert channel.exhausted is False

    async def test_budget_exhaustion_publishes_unavailable(self, limited_channel, connector, clock):
        errors = []
        limited_channel.unavailable.subscribe(errors.append)

        await _fail_three_times(limited_channel, connector, clock)

        assert limited_channel.has_pending_reconnect is False
        assert limited_channel.exhausted is True
        assert limited_channel.state == ConnectionState.DISCONNECTED
        assert len(errors) == 1
        assert isinstance(errors[0], ConnectionUnavailableError)
        assert errors[0].attempts == 3

    async def test_no_attempts_after_exhaustion(self, limited_channel, connector, clock):
        await _fail_three_times(limited_channel, connector, clock)

        await clock.advance(300)

        assert len(connector.urls) == 3

    async def test_explicit_connect_after_exhaustion_starts_over(self, limited_channel, connector, clock):
        await _fail_three_times(limited_channel, connector, clock)
        connector.fail = False

        await limited_channel.connect("token-2")

        assert limited_channel.is_connected() is True
        assert limited_channel.reconnect_attempts == 0
        assert limited_channel.exhausted is False
        await limited_channel.disconnect()

    async def test_successful_reopen_resets_budget(self, limited_channel, connector, clock):
        await limited_channel.connect("t1")

        for _ in range(5):
            connector.last.drop()
            await settle()
            await clock.advance(3)

        assert limited_channel.is_connected() is True
        assert limited_channel.exhausted is False
        assert len(connector.urls) == 6
        await limited_channel.disconnect()

    async def test_receive_error_counts_as_drop(self, channel, connector):
        await channel.connect("t1")
        connection = connector.last

        connection.fail(ConnectionResetError("reset by peer"))
        await settle()

        assert connection.closed is True
        assert channel.has_pending_reconnect is True


# ---------------------------------------------------------------------------
# Disconnect
# ---------------------------------------------------------------------------

class TestDisconnect:
    """Tests for deliberate disconnects."""

    async def test_disconnect_never_reconnects(self, channel, connector, clock):
        await channel.connect("t1")

        await channel.disconnect()
        await clock.advance(60)

        assert connector.last.closed is True
        assert channel.state == ConnectionState.DISCONNECTED
        assert channel.has_pending_reconnect is False
        assert len(connector.urls) == 1

    async def test_disconnect_cancels_pending_reconnect(self, channel, connector, clock):
        connector.fail = True
        await channel.connect("t1")
        assert channel.has_pending_reconnect is True

        await channel.disconnect()
        await clock.advance(60)

        assert len(connector.urls) == 1

    async def test_disconnect_while_opening_discards_socket(self, clock, settings):
        gate = asyncio.Event()
        connection = FakeConnection()

        async def slow_connector(url):
            await gate.wait()
            return connection

        channel = RealtimeChannel(slow_connector, clock, settings)
        opening = asyncio.create_task(channel.connect("t1"))
        await settle()
        assert channel.state == ConnectionState.CONNECTING

        await channel.disconnect()
        gate.set()
        await opening

        assert connection.closed is True
        assert channel.state == ConnectionState.DISCONNECTED
        assert clock.pending == []

    async def test_disconnect_when_idle_is_harmless(self, channel):
        await channel.disconnect()
        assert channel.state == ConnectionState.DISCONNECTED

    async def test_aclose_releases_connector(self, connector, clock, settings):
        connector.aclose = AsyncMock()
        channel = RealtimeChannel(connector, clock, settings)
        await channel.connect("t1")

        await channel.aclose()

        connector.aclose.assert_awaited_once()
        assert channel.state == ConnectionState.DISCONNECTED


# ---------------------------------------------------------------------------
# Inbound frames
# ---------------------------------------------------------------------------

class TestInboundFrames:
    """Tests for routing server frames to typed streams."""

    async def test_message_frame(self, channel, connector):
        received = []
        channel.messages.subscribe(received.append)
        await channel.connect("t1")

        connector.last.feed({"type": "MESSAGE", "message": message_payload(content="Hi John")})
        await settle()

        assert len(received) == 1
        assert received[0].content == "Hi John"
        assert received[0].conversation_id == "c1"

    async def test_typing_frame(self, channel, connector):
        received = []
        channel.typing.subscribe(received.append)
        await channel.connect("t1")

        connector.last.feed(
            {
                "type": "TYPING",
                "typing": {
                    "conversationId": "c1",
                    "userId": "emily-chen",
                    "userName": "Emily Chen",
                    "isTyping": True,
                },
            }
        )
        await settle()

        assert received[0].is_typing is True

    async def test_notification_frame(self, channel, connector):
        received = []
        channel.notifications.subscribe(received.append)
        await channel.connect("t1")

        connector.last.feed(
            {
                "type": "NOTIFICATION",
                "notification": {
                    "conversationId": "c1",
                    "message": message_payload(),
                    "totalUnread": 4,
                },
            }
        )
        await settle()

        assert received[0].total_unread == 4

    async def test_read_receipt_frame(self, channel, connector):
        received = []
        channel.read_receipts.subscribe(received.append)
        await channel.connect("t1")

        connector.last.feed(
            {"type": "READ_RECEIPT", "receipt": {"conversationId": "c1", "readerId": "emily-chen"}}
        )
        await settle()

        assert received[0].reader_id == "emily-chen"

    @pytest.mark.parametrize(
        "frame",
        [
            "not json at all",
            "[1, 2, 3]",
            {"type": "PRESENCE", "userId": "emily-chen"},
            {"type": "MESSAGE", "message": {"content": "missing fields"}},
            {"message": message_payload()},
        ],
    )
    async def test_bad_frames_are_dropped(self, channel, connector, frame):
        received = []
        channel.messages.subscribe(received.append)
        await channel.connect("t1")

        connector.last.feed(frame)
        connector.last.feed({"type": "MESSAGE", "message": message_payload()})
        await settle()

        assert len(received) == 1
        assert channel.is_connected() is True

    async def test_subscriber_failure_does_not_break_reader(self, channel, connector):
        received = []

        def broken(_):
            raise RuntimeError("view crashed")

        channel.messages.subscribe(broken)
        channel.messages.subscribe(received.append)
        await channel.connect("t1")

        connector.last.feed({"type": "MESSAGE", "message": message_payload("m1")})
        connector.last.feed({"type": "MESSAGE", "message": message_payload("m2")})
        await settle()

        assert [m.id for m in received] == ["m1", "m2"]
        assert channel.is_connected() is True


# ---------------------------------------------------------------------------
# Outbound frames
# ---------------------------------------------------------------------------

class TestOutboundFrames:
    """Tests for at-most-once sends."""

    async def test_send_typing_and_mark_read(self, channel, connector):
        await channel.connect("t1")

        assert await channel.send_typing("c1", True) is True
        assert await channel.mark_read("c1") is True

        assert connector.last.sent == [
            {"type": "TYPING", "conversationId": "c1", "isTyping": True},
            {"type": "MARK_READ", "conversationId": "c1"},
        ]

    async def test_send_when_disconnected_is_dropped(self, channel):
        assert await channel.send_typing("c1", True) is False

    async def test_dropped_sends_are_not_replayed(self, channel, connector, clock):
        await channel.connect("t1")
        connector.last.drop()
        await settle()

        assert await channel.mark_read("c1") is False
        await clock.advance(3)

        assert channel.is_connected() is True
        assert connector.last.sent == []

    async def test_write_failure_returns_false(self, channel, connector):
        await channel.connect("t1")
        connector.last.closed = True

        assert await channel.send({"type": "MARK_READ", "conversationId": "c1"}) is False


class TestAiohttpConnection:
    """Tests for frame decoding on the aiohttp websocket adapter."""

    @staticmethod
    def _ws(*frames):
        ws = MagicMock()
        ws.receive = AsyncMock(
            side_effect=[SimpleNamespace(type=kind, data=data) for kind, data in frames]
        )
        return ws

    async def test_binary_utf8_frame_is_decoded(self):
        ws = self._ws((aiohttp.WSMsgType.BINARY, b'{"type": "TYPING"}'))
        assert await AiohttpConnection(ws).receive_str() == '{"type": "TYPING"}'

    async def test_invalid_utf8_frame_is_dropped(self):
        ws = self._ws(
            (aiohttp.WSMsgType.BINARY, b"\xff\xfe{"),
            (aiohttp.WSMsgType.TEXT, '{"type": "MESSAGE"}'),
        )
        with patch("freework.services.realtime_channel.logger") as log:
            data = await AiohttpConnection(ws).receive_str()

        assert data == '{"type": "MESSAGE"}'
        log.warning.assert_called_once_with("realtime_frame_not_utf8", size=3)

    async def test_close_frame_ends_stream(self):
        ws = self._ws((aiohttp.WSMsgType.CLOSE, None))
        assert await AiohttpConnection(ws).receive_str() is None
