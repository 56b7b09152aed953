"""Message edit/delete/history API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from api._helpers import call_store, emit_safely
from auth import get_current_identity
from database import get_db
from schemas.chat import MessageBodyIn
from services import ledger
from services.tokens import Identity

router = APIRouter()


@router.patch("/{message_id}/")
async def edit_message(
    message_id: UUID,
    payload: MessageBodyIn,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    message = await call_store(ledger.edit_message, db, str(message_id), payload.body, identity.user_id)
    await emit_safely(request, message["conversationId"], "message:updated", {"message": message})
    return {"message": message}


@router.delete("/{message_id}/")
async def delete_message(
    message_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    result = await call_store(ledger.delete_message, db, str(message_id), identity.user_id)
    if not result.get("alreadyDeleted"):
        event = ledger.deletion_event(result, identity.user_id)
        await emit_safely(request, event["conversationId"], "message:deleted", event)
    return {"ok": True, **result}


@router.get("/{message_id}/edits/")
async def message_edits(
    message_id: UUID,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    items = await call_store(ledger.list_edits, db, str(message_id), identity.user_id)
    return {"items": items}
