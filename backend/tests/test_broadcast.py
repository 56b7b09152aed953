"""Tests for ws/broadcast.py — frame encoding and the Redis relay."""

from __future__ import annotations

import asyncio
import json
import uuid
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ws.broadcast import CHANNEL_PREFIX, RedisRelay, _json_default, encode_frame, make_frame


def _run(coro):
    """Run an async coroutine synchronously."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def _make_mock_redis():
    """Mock Redis client whose ``pubsub()`` is a sync call returning an async PubSub."""
    mock_r = AsyncMock()
    mock_pubsub = AsyncMock()
    mock_r.pubsub = MagicMock(return_value=mock_pubsub)
    mock_pubsub.get_message = AsyncMock(return_value=None)
    return mock_r, mock_pubsub


class TestJsonDefault:
    def test_datetime(self):
        assert _json_default(datetime(2024, 1, 15, 10, 30, 0)) == "2024-01-15T10:30:00"

    def test_date(self):
        assert _json_default(date(2024, 6, 15)) == "2024-06-15"

    def test_decimal(self):
        assert _json_default(Decimal("1.5")) == 1.5

    def test_uuid(self):
        value = uuid.UUID("12345678-1234-5678-1234-567812345678")
        assert _json_default(value) == "12345678-1234-5678-1234-567812345678"

    def test_unsupported_type(self):
        with pytest.raises(TypeError, match="not JSON serializable"):
            _json_default(set())


class TestFrames:
    def test_make_frame_without_data(self):
        assert make_frame("ping") == {"event": "ping"}

    def test_encode_frame_with_datetime(self):
        payload = json.loads(encode_frame(make_frame("evt", {"at": datetime(2024, 1, 1)})))
        assert payload == {"event": "evt", "data": {"at": "2024-01-01T00:00:00"}}


class TestRedisRelay:
    @patch("ws.broadcast.aioredis.from_url")
    def test_start_subscribes_to_room_pattern(self, mock_from_url):
        mock_r, mock_pubsub = _make_mock_redis()
        mock_from_url.return_value = mock_r
        relay = RedisRelay("redis://localhost:6379/0")

        async def scenario():
            started = await relay.start(AsyncMock())
            await relay.close()
            return started

        assert _run(scenario()) is True
        mock_pubsub.psubscribe.assert_awaited_once_with(f"{CHANNEL_PREFIX}*")
        mock_r.close.assert_awaited()
        assert relay.is_available is False

    @patch("ws.broadcast.aioredis.from_url")
    def test_start_reports_unreachable_redis(self, mock_from_url):
        mock_r, _ = _make_mock_redis()
        mock_r.ping.side_effect = ConnectionError("refused")
        mock_from_url.return_value = mock_r
        relay = RedisRelay("redis://localhost:6379/0")

        assert _run(relay.start(AsyncMock())) is False
        assert relay.is_available is False

    def test_publish_when_not_started(self):
        relay = RedisRelay("redis://localhost:6379/0")
        assert _run(relay.publish("room", {"event": "x"})) is False

    @patch("ws.broadcast.aioredis.from_url")
    def test_publish_prefixes_channel(self, mock_from_url):
        mock_r, _ = _make_mock_redis()
        mock_from_url.return_value = mock_r
        relay = RedisRelay("redis://localhost:6379/0")

        async def scenario():
            await relay.start(AsyncMock())
            ok = await relay.publish("conversation:c1", {"event": "message:new", "data": {"id": "m1"}})
            await relay.close()
            return ok

        assert _run(scenario()) is True
        channel, body = mock_r.publish.call_args[0]
        assert channel == f"{CHANNEL_PREFIX}conversation:c1"
        assert json.loads(body) == {"event": "message:new", "data": {"id": "m1"}}

    @patch("ws.broadcast.aioredis.from_url")
    def test_publish_error_returns_false(self, mock_from_url):
        mock_r, _ = _make_mock_redis()
        mock_r.publish.side_effect = ConnectionError("lost")
        mock_from_url.return_value = mock_r
        relay = RedisRelay("redis://localhost:6379/0")

        async def scenario():
            await relay.start(AsyncMock())
            ok = await relay.publish("room", {"event": "x"})
            await relay.close()
            return ok

        assert _run(scenario()) is False

    def test_handle_delivers_to_room(self):
        relay = RedisRelay("redis://localhost:6379/0")
        deliver = AsyncMock()
        relay._deliver = deliver

        _run(relay._handle(f"{CHANNEL_PREFIX}conversation:c1", json.dumps({"event": "e"})))

        deliver.assert_awaited_once_with("conversation:c1", {"event": "e"})

    def test_handle_ignores_foreign_and_bad_frames(self):
        relay = RedisRelay("redis://localhost:6379/0")
        deliver = AsyncMock()
        relay._deliver = deliver

        _run(relay._handle("other:channel", "{}"))
        _run(relay._handle(f"{CHANNEL_PREFIX}room", "not json"))

        deliver.assert_not_awaited()
