"""Tests for LiveChannelClient, driven through an in-memory connection factory."""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import FakeConnection, FakeConnector, eventually, ts
from pitchchat.config import AppSettings
from pitchchat.live.channel import (
    EVENT_MSG_COUNT,
    EVENT_NEW_MESSAGE,
    EVENT_RECONNECTED,
    ConnectionState,
    LiveChannelClient,
)
from pitchchat.messages.schemas import NewMessageEvent

NEW_MESSAGE = {
    "_id": "m1",
    "roomId": "r1",
    "userId": {"_id": "rec-1", "name": "Bob"},
    "message": "hi",
    "createdAt": "2025-01-06T09:10:00Z",
}


def make_channel(connector, sleep=None, **kwargs):
    return LiveChannelClient(
        "ws://test/ws",
        user_id=kwargs.pop("user_id", "cand-1"),
        connect=connector,
        sleep=sleep or AsyncMock(),
        **kwargs,
    )


async def connected(channel, connector, count=1):
    await eventually(lambda: len(connector.connections) >= count)
    await eventually(lambda: channel.state == ConnectionState.CONNECTED)
    return connector.latest


class TestConnection:
    @pytest.mark.asyncio
    async def test_connect_and_announce_user(self, connector):
        channel = make_channel(connector, token="tok")
        assert channel.state == ConnectionState.DISCONNECTED

        await channel.start()
        ws = await connected(channel, connector)

        await eventually(lambda: ws.sent)
        assert ws.sent[0] == {"type": "joinNotification", "data": {"userId": "cand-1"}}
        url, kwargs = connector.calls[0]
        assert url == "ws://test/ws"
        assert kwargs["additional_headers"] == {"Authorization": "Bearer tok"}
        await channel.stop()

    @pytest.mark.asyncio
    async def test_stop_disconnects(self, connector):
        channel = make_channel(connector)
        await channel.start()
        await connected(channel, connector)

        await channel.stop()

        assert channel.state == ConnectionState.DISCONNECTED
        assert len(connector.calls) == 1

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, connector):
        channel = make_channel(connector)
        await channel.start()
        await channel.start()
        await connected(channel, connector)
        assert len(connector.calls) == 1
        await channel.stop()

    @pytest.mark.asyncio
    async def test_wait_until_connected(self, connector):
        channel = make_channel(connector)
        assert await channel.wait_until_connected(timeout=0.01) is False
        await channel.start()
        assert await channel.wait_until_connected(timeout=1.0) is True
        await channel.stop()

    def test_from_settings(self, connector):
        settings = AppSettings(
            live_channel={"url": "wss://push/ws", "initial_backoff_seconds": 1, "max_backoff_seconds": 8},
            secrets={"api": {"token": "abc"}},
        )
        channel = LiveChannelClient.from_settings(settings, user_id="cand-1", connect=connector)
        assert channel.url == "wss://push/ws"
        assert channel.initial_backoff == 1
        assert channel.max_backoff == 8
        assert channel.user_id == "cand-1"


class TestDispatch:
    @pytest.mark.asyncio
    async def test_new_message_normalised(self, connector):
        received = []
        channel = make_channel(connector)
        channel.subscribe(EVENT_NEW_MESSAGE, received.append)
        await channel.start()
        ws = await connected(channel, connector)

        ws.push("newMessage", NEW_MESSAGE)
        await eventually(lambda: received)

        (event,) = received
        assert isinstance(event, NewMessageEvent)
        assert event.messageId == "m1"
        assert event.senderId == "rec-1"
        assert event.senderName == "Bob"
        assert event.body == "hi"
        assert event.createdAt == ts(9, 10)
        await channel.stop()

    @pytest.mark.asyncio
    async def test_async_handler_and_msg_count(self, connector):
        counts = []

        async def on_count(count):
            counts.append(count)

        channel = make_channel(connector)
        channel.subscribe(EVENT_MSG_COUNT, on_count)
        await channel.start()
        ws = await connected(channel, connector)

        ws.push("msg_count", 4)
        await eventually(lambda: counts)
        assert counts == [4]
        await channel.stop()

    @pytest.mark.asyncio
    async def test_malformed_frames_dropped(self, connector):
        received = []
        channel = make_channel(connector)
        channel.subscribe(EVENT_NEW_MESSAGE, received.append)
        await channel.start()
        ws = await connected(channel, connector)

        ws.push_raw("not json")
        ws.push_raw('["no", "type"]')
        ws.push("newMessage", {"roomId": "r1"})
        ws.push("msg_count", "many")
        ws.push("somethingElse", {})
        ws.push("newMessage", NEW_MESSAGE)
        await eventually(lambda: received)

        assert [event.messageId for event in received] == ["m1"]
        assert channel.state == ConnectionState.CONNECTED
        await channel.stop()

    @pytest.mark.asyncio
    async def test_failing_handler_isolated(self, connector):
        received = []
        channel = make_channel(connector)
        channel.subscribe(EVENT_NEW_MESSAGE, MagicMock(side_effect=RuntimeError("boom")))
        channel.subscribe(EVENT_NEW_MESSAGE, received.append)
        await channel.start()
        ws = await connected(channel, connector)

        ws.push("newMessage", NEW_MESSAGE)
        ws.push("newMessage", {**NEW_MESSAGE, "_id": "m2"})
        await eventually(lambda: len(received) == 2)
        await channel.stop()

    @pytest.mark.asyncio
    async def test_unsubscribe(self, connector):
        received = []
        channel = make_channel(connector)
        channel.subscribe(EVENT_NEW_MESSAGE, received.append)
        channel.subscribe(EVENT_NEW_MESSAGE, received.append)
        assert channel.subscriber_count(EVENT_NEW_MESSAGE) == 1

        channel.unsubscribe(EVENT_NEW_MESSAGE, received.append)
        await channel.start()
        ws = await connected(channel, connector)
        ws.push("newMessage", NEW_MESSAGE)
        ws.push("msg_count", 1)
        await asyncio.sleep(0.05)

        assert received == []
        await channel.stop()


class TestRooms:
    @pytest.mark.asyncio
    async def test_join_and_leave_frames(self, connector):
        channel = make_channel(connector, user_id=None)
        await channel.start()
        ws = await connected(channel, connector)

        await channel.join_room("r1")
        assert channel.room_id == "r1"
        await channel.leave_room("r1")
        assert channel.room_id is None

        assert ws.sent == [
            {"type": "joinRoom", "data": {"roomId": "r1"}},
            {"type": "leaveRoom", "data": {"roomId": "r1"}},
        ]
        await channel.stop()

    @pytest.mark.asyncio
    async def test_join_while_disconnected_sent_on_connect(self, connector):
        channel = make_channel(connector)
        await channel.join_room("r1")

        await channel.start()
        ws = await connected(channel, connector)
        await eventually(lambda: len(ws.sent) == 2)
        assert ws.sent_types() == ["joinNotification", "joinRoom"]
        await channel.stop()


class TestReconnect:
    @pytest.mark.asyncio
    async def test_reconnects_silently_and_rejoins(self, connector, recording_sleep):
        reconnects = []
        channel = make_channel(connector, sleep=recording_sleep)
        channel.subscribe(EVENT_RECONNECTED, reconnects.append)
        await channel.start()
        first = await connected(channel, connector)
        await channel.join_room("r1")

        first.drop()
        second = await connected(channel, connector, count=2)
        await eventually(lambda: reconnects)

        assert second is not first
        assert second.sent_types() == ["joinNotification", "joinRoom"]
        assert recording_sleep.delays == [0.5]
        assert reconnects == [None]
        await channel.stop()

    @pytest.mark.asyncio
    async def test_clean_close_also_reconnects(self, connector):
        channel = make_channel(connector)
        await channel.start()
        first = await connected(channel, connector)
        first.close()
        await connected(channel, connector, count=2)
        await channel.stop()

    @pytest.mark.asyncio
    async def test_backoff_grows_caps_and_resets(self, recording_sleep):
        connection = FakeConnection()
        connector = FakeConnector([
            OSError("refused"),
            asyncio.TimeoutError(),
            OSError("refused"),
            OSError("refused"),
            connection,
        ])
        channel = make_channel(
            connector,
            sleep=recording_sleep,
            initial_backoff=1.0,
            backoff_factor=2.0,
            max_backoff=3.0,
        )
        await channel.start()
        await connected(channel, connector)
        assert recording_sleep.delays == [1.0, 2.0, 3.0, 3.0]

        connection.drop()
        await connected(channel, connector, count=2)
        assert recording_sleep.delays[-1] == 1.0
        await channel.stop()

    @pytest.mark.asyncio
    async def test_first_connect_failure_is_not_a_reconnect(self, recording_sleep):
        reconnects = []
        connector = FakeConnector([OSError("refused")])
        channel = make_channel(connector, sleep=recording_sleep)
        channel.subscribe(EVENT_RECONNECTED, reconnects.append)

        await channel.start()
        await connected(channel, connector)
        await asyncio.sleep(0.01)

        assert reconnects == []
        await channel.stop()

    @pytest.mark.asyncio
    async def test_unexpected_error_keeps_reconnecting(self, recording_sleep):
        connector = FakeConnector([RuntimeError("boom")])
        channel = make_channel(connector, sleep=recording_sleep)

        await channel.start()
        await connected(channel, connector)

        assert len(connector.calls) == 2
        assert recording_sleep.delays == [0.5]
        await channel.stop()
