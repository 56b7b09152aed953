"""Shared helpers for API routers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable

from fastapi import HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from services.errors import ChatError, StoreUnavailable
from ws.rooms import RoomRouter

logger = logging.getLogger(__name__)


async def call_store(fn: Callable, db: Session, *args: Any) -> Any:
    """Run a sync service function off the event loop, mapping chat errors to HTTP errors."""
    try:
        return await run_in_threadpool(fn, db, *args)
    except ChatError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message)
    except SQLAlchemyError:
        logger.exception("Store call %s failed", fn.__name__)
        db.rollback()
        raise HTTPException(status_code=StoreUnavailable.status_code, detail=StoreUnavailable().message)


async def emit_safely(request: Request, conversation_id: str, event: str, data: dict) -> None:
    """Broadcast to a conversation room; failures are logged, never raised."""
    rooms: RoomRouter | None = getattr(request.app.state, "rooms", None)
    if rooms is None:
        return
    try:
        await rooms.emit_to_conversation(conversation_id, event, data)
    except Exception:
        logger.exception("Failed to broadcast %s", event)


def parse_before(value: str | None) -> datetime | None:
    """ISO timestamp as naive UTC; unparseable input is ignored."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
