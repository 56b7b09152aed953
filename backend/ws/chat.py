"""Chat WebSocket endpoint: connection lifecycle and event dispatch.

A connection moves CONNECTING → AUTHENTICATING → READY → DISCONNECTED.
Client frames are JSON objects ``{"event": str, "data": object, "ack": id?}``;
each event is validated against its schema, dispatched, and answered with
``{"event": "ack", "ack": id, "data": {ok, ...}}`` when the client supplied an
``ack`` id. Server pushes are ``{"event": str, "data": object}``.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import threading
import time
import uuid
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from pydantic import BaseModel, ValidationError
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from starlette.websockets import WebSocketState

from auth import normalize_token
from config import settings
from database import SessionLocal, utcnow
from logging_config import connection_id_var, user_id_var
from schemas.chat import (
    EVENT_SCHEMAS,
    Ack,
    ConversationRef,
    DeleteMessageIn,
    EditMessageIn,
    PresenceBatchIn,
    SendMessageIn,
    flatten_errors,
)
from services import ledger
from services.access import has_access, participant_conversation_ids
from services.errors import NO_ACCESS, ChatError, StoreUnavailable
from services.presence import PresenceRegistry
from services.tokens import Identity, TokenError, decode_token
from ws.broadcast import encode_frame, make_frame
from ws.rooms import RoomRouter, conversation_room, user_room

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_INTERVAL = settings.HEARTBEAT_INTERVAL  # seconds
PONG_TIMEOUT = settings.PONG_TIMEOUT  # seconds

POLICY_VIOLATION = 1008

FALLBACK_ERRORS = {
    "presence:batch": "Failed to load presence",
    "conversation:join": "Failed to join conversation",
    "conversation:leave": "Failed to leave conversation",
    "message:send": "Failed to send message",
    "message:edit": "Failed to edit message",
    "message:delete": "Failed to delete message",
    "conversation:read": "Failed to mark conversation as read",
}


class ConnectionState(str, enum.Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    DISCONNECTED = "disconnected"


def token_from_handshake(websocket: WebSocket) -> str | None:
    """Credential from the ``token`` query field, else the Authorization header."""
    token = normalize_token(websocket.query_params.get("token"))
    if token:
        return token
    return normalize_token(websocket.headers.get("authorization"))


class ChatConnection:
    """One authenticated client connection and its event handlers."""

    def __init__(
        self,
        websocket: WebSocket,
        presence: PresenceRegistry,
        rooms: RoomRouter,
        session_factory: Callable | None = None,
        store_timeout: float | None = None,
    ) -> None:
        self.id = str(uuid.uuid4())
        self.websocket = websocket
        self.presence = presence
        self.rooms = rooms
        self.state = ConnectionState.CONNECTING
        self.identity: Identity | None = None
        self.last_activity = time.monotonic()
        self.waiting_pong = False
        self._session_factory = session_factory or SessionLocal
        self._store_timeout = store_timeout if store_timeout is not None else settings.STORE_TIMEOUT_SECONDS
        self._background: set[asyncio.Task] = set()
        self._handlers: dict[str, Callable[[Any], Awaitable[Ack]]] = {
            "presence:batch": self._on_presence_batch,
            "conversation:join": self._on_join,
            "conversation:leave": self._on_leave,
            "message:send": self._on_send,
            "message:edit": self._on_edit,
            "message:delete": self._on_delete,
            "conversation:read": self._on_read,
        }

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    # ── Transport ──────────────────────────────────────────────────────

    async def send(self, frame: dict) -> None:
        if self.state is ConnectionState.DISCONNECTED:
            return
        if self.websocket.client_state != WebSocketState.CONNECTED:
            return
        await self.websocket.send_text(encode_frame(frame))
        self.last_activity = time.monotonic()

    async def store(self, fn: Callable, *args: Any) -> Any:
        """Run ``fn(db, *args)`` in a worker thread with its own session, under the store timeout.

        A call that outlives the timeout keeps running in its thread, so its
        session is armed to refuse any later flush or commit; whatever it wrote
        is rolled back when the session closes.
        """
        expired = threading.Event()

        def _refuse_if_expired(*_):
            if expired.is_set():
                raise StoreUnavailable("Store call expired before commit")

        def _call():
            with self._session_factory() as db:
                event.listen(db, "before_commit", _refuse_if_expired)
                event.listen(db, "after_flush_postexec", _refuse_if_expired)
                return fn(db, *args)

        try:
            return await asyncio.wait_for(asyncio.to_thread(_call), self._store_timeout)
        except asyncio.TimeoutError:
            expired.set()
            logger.error("Store call %s timed out after %.1fs", fn.__name__, self._store_timeout)
            raise StoreUnavailable()
        except SQLAlchemyError:
            logger.exception("Store call %s failed", fn.__name__)
            raise StoreUnavailable()

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def drain(self) -> None:
        """Wait for background work (room resync, presence fan-out) to finish."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Lifecycle ──────────────────────────────────────────────────────

    async def authenticate(self) -> bool:
        """Verify the handshake credential; closes the socket and returns False on failure."""
        self.state = ConnectionState.AUTHENTICATING
        token = token_from_handshake(self.websocket)
        if not token:
            return await self._reject("Missing token")
        try:
            self.identity = decode_token(token)
        except TokenError as exc:
            return await self._reject(exc.reason)
        return True

    async def _reject(self, reason: str) -> bool:
        logger.info("Rejected chat connection: %s", reason)
        self.state = ConnectionState.DISCONNECTED
        await self.websocket.close(code=POLICY_VIOLATION, reason=reason)
        return False

    async def on_ready(self) -> None:
        self.state = ConnectionState.READY
        self.rooms.join(user_room(self.user_id), self)
        self._spawn(self._resync_rooms())
        if self.presence.add_connection(self.user_id, self.id):
            self._spawn(self._broadcast_presence(True))
        await self.send(make_frame("chat:ready", {"userId": self.user_id}))
        logger.info("Chat connection ready")

    async def disconnect(self) -> None:
        """Release rooms and presence; only the first call has any effect."""
        if self.state is ConnectionState.DISCONNECTED:
            return
        was_ready = self.state is ConnectionState.READY
        self.state = ConnectionState.DISCONNECTED
        self.rooms.leave_all(self)
        if was_ready and self.presence.remove_connection(self.user_id, self.id):
            self._spawn(self._broadcast_presence(False))
        logger.info("Chat connection closed")

    async def _resync_rooms(self) -> None:
        try:
            conversation_ids = await self.store(participant_conversation_ids, self.user_id)
        except Exception:
            logger.exception("Failed to auto-join conversation rooms")
            return
        if self.state is not ConnectionState.READY:
            return
        for conversation_id in conversation_ids:
            self.rooms.join(conversation_room(conversation_id), self)
        logger.debug("Joined %d conversation rooms", len(conversation_ids))

    async def _broadcast_presence(self, is_online: bool) -> None:
        # Re-queries memberships on every transition
        try:
            conversation_ids = await self.store(participant_conversation_ids, self.user_id)
            payload = {
                "userId": self.user_id,
                "isOnline": is_online,
                "updatedAt": ledger.iso(utcnow()),
            }
            for conversation_id in conversation_ids:
                await self.rooms.emit_to_conversation(conversation_id, "presence:update", payload)
        except Exception:
            logger.exception("Failed to emit %s presence", "online" if is_online else "offline")

    # ── Dispatch ───────────────────────────────────────────────────────

    async def handle_frame(self, raw: str) -> None:
        try:
            msg = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON frame")
            return
        if not isinstance(msg, dict):
            logger.debug("Ignoring non-object frame")
            return

        event = msg.get("event")
        if event == "pong":
            self.waiting_pong = False
            return

        ack = await self.dispatch(event, msg.get("data"))
        ack_id = msg.get("ack")
        if ack_id is not None:
            await self.send({"event": "ack", "ack": ack_id, "data": ack.to_dict()})

    async def dispatch(self, event: str, data: Any) -> Ack:
        schema: type[BaseModel] | None = EVENT_SCHEMAS.get(event) if isinstance(event, str) else None
        if schema is None:
            return Ack.failure("Unknown event", {"event": event})
        try:
            payload = schema.model_validate(data)
        except ValidationError as exc:
            return Ack.failure("Invalid payload", flatten_errors(exc))

        try:
            return await self._handlers[event](payload)
        except ChatError as exc:
            return Ack.failure(exc.message, exc.details)
        except Exception:
            logger.exception("Unhandled error while handling %s", event)
            return Ack.failure(FALLBACK_ERRORS[event])

    async def _on_presence_batch(self, payload: PresenceBatchIn) -> Ack:
        items = self.presence.batch_query(str(uid) for uid in payload.userIds)
        return Ack.success(items=items)

    async def _on_join(self, payload: ConversationRef) -> Ack:
        conversation_id = str(payload.conversationId)
        if not await self.store(has_access, conversation_id, self.user_id):
            return Ack.failure(NO_ACCESS)
        self.rooms.join(conversation_room(conversation_id), self)
        return Ack.success(conversationId=conversation_id)

    async def _on_leave(self, payload: ConversationRef) -> Ack:
        conversation_id = str(payload.conversationId)
        self.rooms.leave(conversation_room(conversation_id), self)
        return Ack.success(conversationId=conversation_id)

    async def _on_send(self, payload: SendMessageIn) -> Ack:
        conversation_id = str(payload.conversationId)
        message = await self.store(ledger.send_message, conversation_id, payload.body, self.user_id)
        await self.rooms.emit_to_conversation(conversation_id, "message:new", {"message": message})
        return Ack.success(message=message)

    async def _on_edit(self, payload: EditMessageIn) -> Ack:
        message = await self.store(ledger.edit_message, str(payload.messageId), payload.body, self.user_id)
        await self.rooms.emit_to_conversation(message["conversationId"], "message:updated", {"message": message})
        return Ack.success(message=message)

    async def _on_delete(self, payload: DeleteMessageIn) -> Ack:
        result = await self.store(ledger.delete_message, str(payload.messageId), self.user_id)
        if not result.get("alreadyDeleted"):
            event = ledger.deletion_event(result, self.user_id)
            await self.rooms.emit_to_conversation(event["conversationId"], "message:deleted", event)
        return Ack.success(**result)

    async def _on_read(self, payload: ConversationRef) -> Ack:
        conversation_id = str(payload.conversationId)
        receipt = await self.store(ledger.mark_read, conversation_id, self.user_id)
        await self.rooms.emit_to_conversation(conversation_id, "conversation:read", receipt)
        return Ack.success(conversationId=conversation_id, readAt=receipt["readAt"])

    # ── Loops ──────────────────────────────────────────────────────────

    async def reader(self) -> None:
        while True:
            message = await self.websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            self.last_activity = time.monotonic()
            raw = message.get("text")
            if not raw:
                continue
            await self.handle_frame(raw)

    async def heartbeat(self) -> None:
        """Ping after HEARTBEAT_INTERVAL idle seconds; return when a pong is overdue."""
        pong_deadline = 0.0
        while True:
            await asyncio.sleep(1)
            now = time.monotonic()

            if self.waiting_pong and now > pong_deadline:
                logger.debug("Chat WS pong timeout, closing")
                return

            if not self.waiting_pong and (now - self.last_activity) >= HEARTBEAT_INTERVAL:
                try:
                    await self.send(make_frame("ping"))
                except Exception:
                    return
                self.waiting_pong = True
                pong_deadline = now + PONG_TIMEOUT


@router.websocket("/ws/chat/")
async def chat_ws(websocket: WebSocket):
    state = websocket.app.state
    conn = ChatConnection(websocket, state.presence, state.rooms)
    if not await conn.authenticate():
        return

    await websocket.accept()
    conn_token = connection_id_var.set(conn.id)
    user_token = user_id_var.set(conn.user_id)

    tasks: list[asyncio.Task] = []
    try:
        await conn.on_ready()
        tasks = [
            asyncio.create_task(conn.reader(), name="chat-reader"),
            asyncio.create_task(conn.heartbeat(), name="chat-heartbeat"),
        ]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for t in done:
            exc = t.exception()
            if exc and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Chat WS task %s failed: %s", t.get_name(), exc)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("Chat WS unexpected error")
    finally:
        for t in tasks:
            if not t.done():
                t.cancel()
        await conn.disconnect()
        if websocket.client_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except Exception:
                logger.debug("Closing chat socket failed", exc_info=True)
        await conn.drain()
        user_id_var.reset(user_token)
        connection_id_var.reset(conn_token)
