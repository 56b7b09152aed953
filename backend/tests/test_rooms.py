"""Tests for ws/rooms.py — membership bookkeeping and fan-out."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from ws.rooms import RoomRouter, conversation_room, user_room


def _run(coro):
    """Run an async coroutine synchronously."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


class Member:
    def __init__(self, member_id, fail=False):
        self.id = member_id
        self.frames = []
        self.fail = fail

    async def send(self, frame):
        if self.fail:
            raise RuntimeError("socket gone")
        self.frames.append(frame)


@pytest.fixture
def router():
    return RoomRouter()


def test_room_names():
    assert conversation_room("c1") == "conversation:c1"
    assert user_room("u1") == "user:u1"


class TestMembership:
    def test_join_and_leave(self, router):
        a = Member("a")
        router.join("r", a)
        assert router.is_member("r", a)
        assert router.rooms_of(a) == {"r"}

        assert router.leave("r", a) is True
        assert router.is_member("r", a) is False
        assert router.room_count == 0

    def test_join_twice_is_single_membership(self, router):
        a = Member("a")
        router.join("r", a)
        router.join("r", a)
        assert router.members("r") == [a]

    def test_leave_not_joined(self, router):
        assert router.leave("r", Member("a")) is False

    def test_leave_all(self, router):
        a, b = Member("a"), Member("b")
        router.join("r1", a)
        router.join("r2", a)
        router.join("r1", b)

        assert router.leave_all(a) == 2
        assert router.rooms_of(a) == set()
        assert router.members("r1") == [b]
        assert router.leave_all(a) == 0


class TestEmit:
    def test_delivers_to_every_member(self, router):
        a, b, outside = Member("a"), Member("b"), Member("c")
        router.join("r", a)
        router.join("r", b)

        _run(router.emit("r", "message:new", {"x": 1}))

        assert a.frames == [{"event": "message:new", "data": {"x": 1}}]
        assert b.frames == a.frames
        assert outside.frames == []

    def test_failed_member_does_not_block_others(self, router):
        broken, ok = Member("a", fail=True), Member("b")
        router.join("r", broken)
        router.join("r", ok)

        _run(router.emit("r", "evt", {}))

        assert ok.frames == [{"event": "evt", "data": {}}]

    def test_emit_to_conversation_and_user(self, router):
        a = Member("a")
        router.join(conversation_room("c1"), a)
        router.join(user_room("u1"), a)

        _run(router.emit_to_conversation("c1", "one"))
        _run(router.emit_to_user("u1", "two"))

        assert [f["event"] for f in a.frames] == ["one", "two"]

    def test_relay_publish_replaces_local_delivery(self):
        relay = MagicMock()
        relay.is_available = True
        relay.publish = AsyncMock(return_value=True)
        router = RoomRouter(relay)
        a = Member("a")
        router.join("r", a)

        _run(router.emit("r", "evt", {"k": "v"}))

        relay.publish.assert_awaited_once_with("r", {"event": "evt", "data": {"k": "v"}})
        assert a.frames == []

    def test_relay_failure_falls_back_to_local(self):
        relay = MagicMock()
        relay.is_available = True
        relay.publish = AsyncMock(return_value=False)
        router = RoomRouter(relay)
        a = Member("a")
        router.join("r", a)

        _run(router.emit("r", "evt"))

        assert a.frames == [{"event": "evt"}]
