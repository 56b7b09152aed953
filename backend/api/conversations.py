"""Conversation API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from api._helpers import call_store, emit_safely, parse_before
from auth import get_current_identity
from database import get_db
from schemas.chat import MessageBodyIn, OpenConversationIn
from services import ledger
from services.conversations import list_conversations, open_conversation
from services.tokens import Identity

router = APIRouter()


@router.post("/")
async def create_conversation(
    payload: OpenConversationIn,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    return await call_store(open_conversation, db, str(payload.listingId), identity.user_id)


@router.get("/me/")
async def my_conversations(
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    items = await call_store(list_conversations, db, identity.user_id)
    return {"items": items}


@router.get("/{conversation_id}/messages/")
async def list_messages(
    conversation_id: UUID,
    limit: int = 50,
    before: str | None = None,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    items = await call_store(
        ledger.list_messages, db, str(conversation_id), identity.user_id, limit, parse_before(before)
    )
    return {"items": items}


@router.post("/{conversation_id}/messages/", status_code=201)
async def send_message(
    conversation_id: UUID,
    payload: MessageBodyIn,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    message = await call_store(ledger.send_message, db, str(conversation_id), payload.body, identity.user_id)
    await emit_safely(request, message["conversationId"], "message:new", {"message": message})
    return {"message": message}


@router.post("/{conversation_id}/read/")
async def mark_read(
    conversation_id: UUID,
    request: Request,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_current_identity),
):
    receipt = await call_store(ledger.mark_read, db, str(conversation_id), identity.user_id)
    await emit_safely(request, receipt["conversationId"], "conversation:read", receipt)
    return {"ok": True, "conversationId": receipt["conversationId"], "readAt": receipt["readAt"]}
