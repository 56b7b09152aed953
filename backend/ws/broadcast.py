"""Frame encoding and the optional Redis relay for cross-process room fan-out."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "rentchat:room:"


def _json_default(obj: object) -> str | float:

    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, UUID):
        return str(obj)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def make_frame(event: str, data: dict | None = None) -> dict:
    frame: dict = {"event": event}
    if data is not None:
        frame["data"] = data
    return frame


def encode_frame(frame: dict) -> str:
    return json.dumps(frame, default=_json_default)


Deliver = Callable[[str, dict], Awaitable[None]]


class RedisRelay:
    """Publishes room frames to Redis and feeds frames from every process back to local rooms.

    Each process subscribes to ``rentchat:room:*``; a frame published by any
    process (this one included) reaches local members only through the
    listener, so every frame has exactly one delivery path.
    """

    def __init__(self, redis_url: str) -> None:
        self._redis_url = redis_url
        self._redis = None
        self._pubsub = None
        self._listener_task: asyncio.Task | None = None
        self._deliver: Deliver | None = None
        self._initialized = False

    async def start(self, deliver: Deliver) -> bool:
        """Connect and start listening; False (relay disabled) when Redis is unreachable."""
        if self._initialized:
            return True
        try:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
            await self._redis.ping()
            self._pubsub = self._redis.pubsub()
            await self._pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
        except Exception:
            logger.warning("Redis relay unavailable at %s, using local delivery", self._redis_url, exc_info=True)
            await self._close_clients()
            return False
        self._deliver = deliver
        self._listener_task = asyncio.create_task(self._listen(), name="room-relay")
        self._initialized = True
        logger.info("Redis room relay started")
        return True

    @property
    def is_available(self) -> bool:
        return self._initialized

    async def publish(self, room: str, frame: dict) -> bool:
        if not self._initialized:
            return False
        try:
            await self._redis.publish(f"{CHANNEL_PREFIX}{room}", encode_frame(frame))
            return True
        except Exception:
            logger.exception("Failed to publish frame to room %s", room)
            return False

    async def _listen(self) -> None:
        while True:
            try:
                msg = await self._pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("Redis pub/sub get_message failed, retrying", exc_info=True)
                await asyncio.sleep(1)
                continue
            if msg and msg.get("type") == "pmessage":
                await self._handle(msg.get("channel", ""), msg.get("data", ""))

    async def _handle(self, channel: str, data: str) -> None:
        if not channel.startswith(CHANNEL_PREFIX):
            return
        try:
            frame = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Dropping undecodable relay frame on %s", channel)
            return
        try:
            await self._deliver(channel[len(CHANNEL_PREFIX):], frame)
        except Exception:
            logger.exception("Relay delivery to %s failed", channel)

    async def close(self) -> None:
        if self._listener_task:
            self._listener_task.cancel()
            try:
                await self._listener_task
            except asyncio.CancelledError:
                pass
            self._listener_task = None
        await self._close_clients()
        self._initialized = False

    async def _close_clients(self) -> None:
        if self._pubsub is not None:
            try:
                await self._pubsub.close()
            except Exception:
                logger.debug("Closing relay pubsub failed", exc_info=True)
            self._pubsub = None
        if self._redis is not None:
            try:
                await self._redis.close()
            except Exception:
                logger.debug("Closing relay client failed", exc_info=True)
            self._redis = None
