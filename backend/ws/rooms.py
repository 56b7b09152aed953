"""Named broadcast groups of live chat connections."""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from ws.broadcast import RedisRelay, make_frame

logger = logging.getLogger(__name__)


def conversation_room(conversation_id: str) -> str:
    return f"conversation:{conversation_id}"


def user_room(user_id: str) -> str:
    return f"user:{user_id}"


class RoomMember(Protocol):
    id: str

    async def send(self, frame: dict) -> None: ...


class RoomRouter:
    """Tracks which connections are joined to which room and fans frames out.

    Membership here is transport state only; whether a user may *act* on a
    conversation is always decided by ``services.access``.
    """

    def __init__(self, relay: RedisRelay | None = None) -> None:
        self._rooms: dict[str, dict[str, RoomMember]] = {}
        self._joined: dict[str, set[str]] = {}
        self._relay = relay

    def join(self, room: str, member: RoomMember) -> None:
        self._rooms.setdefault(room, {})[member.id] = member
        self._joined.setdefault(member.id, set()).add(room)

    def leave(self, room: str, member: RoomMember) -> bool:
        members = self._rooms.get(room)
        if not members or member.id not in members:
            return False
        del members[member.id]
        if not members:
            del self._rooms[room]
        rooms = self._joined.get(member.id)
        if rooms is not None:
            rooms.discard(room)
            if not rooms:
                del self._joined[member.id]
        return True

    def leave_all(self, member: RoomMember) -> int:
        """Remove *member* from every room; returns how many rooms it left."""
        rooms = list(self._joined.get(member.id, ()))
        for room in rooms:
            self.leave(room, member)
        return len(rooms)

    def members(self, room: str) -> list[RoomMember]:
        return list(self._rooms.get(room, {}).values())

    def rooms_of(self, member: RoomMember) -> set[str]:
        return set(self._joined.get(member.id, ()))

    def is_member(self, room: str, member: RoomMember) -> bool:
        return member.id in self._rooms.get(room, {})

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    def clear(self) -> None:
        self._rooms.clear()
        self._joined.clear()

    async def emit(self, room: str, event: str, data: dict | None = None) -> None:
        """Send ``{event, data}`` to every connection joined to *room*."""
        frame = make_frame(event, data)
        if self._relay is not None and self._relay.is_available:
            if await self._relay.publish(room, frame):
                return
        await self.deliver_local(room, frame)

    async def emit_to_conversation(self, conversation_id: str, event: str, data: dict | None = None) -> None:
        await self.emit(conversation_room(conversation_id), event, data)

    async def emit_to_user(self, user_id: str, event: str, data: dict | None = None) -> None:
        await self.emit(user_room(user_id), event, data)

    async def deliver_local(self, room: str, frame: dict) -> None:
        members = self.members(room)
        if not members:
            return
        results = await asyncio.gather(
            *(member.send(frame) for member in members), return_exceptions=True
        )
        for member, result in zip(members, results):
            if isinstance(result, Exception):
                logger.debug("Failed to deliver %s to connection %s: %s", frame.get("event"), member.id, result)
