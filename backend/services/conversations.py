"""Conversation creation and inbox listing."""

from __future__ import annotations

import logging

from sqlalchemy import and_
from sqlalchemy.orm import Session, aliased

from database import utcnow
from models.conversation import Conversation, ConversationParticipant
from models.listing import Listing
from models.message import Message
from services.errors import NotFound, ValidationFailed
from services.ledger import iso

logger = logging.getLogger(__name__)


def open_conversation(db: Session, listing_id: str, inquirer_id: str) -> dict:
    """Return the conversation between *inquirer_id* and the listing owner, creating it once.

    An OPEN or CLOSED conversation for the same listing and the same two users
    is reused; SPAM conversations are never reused.
    """
    listing = (
        db.query(Listing)
        .filter(Listing.id == listing_id, Listing.status != "DELETED")
        .first()
    )
    if listing is None:
        raise NotFound("Listing not found")
    owner_id = listing.owner_user_id
    if owner_id == inquirer_id:
        raise ValidationFailed("Cannot message your own listing")

    mine = aliased(ConversationParticipant)
    theirs = aliased(ConversationParticipant)
    existing = (
        db.query(Conversation.id)
        .join(mine, and_(mine.conversation_id == Conversation.id, mine.user_id == inquirer_id))
        .join(theirs, and_(theirs.conversation_id == Conversation.id, theirs.user_id == owner_id))
        .filter(Conversation.listing_id == listing_id, Conversation.status.in_(["OPEN", "CLOSED"]))
        .order_by(Conversation.created_at.desc())
        .first()
    )
    if existing is not None:
        return {"conversationId": existing.id, "reused": True}

    conversation = Conversation(
        listing_id=listing_id,
        created_by_user_id=inquirer_id,
        status="OPEN",
        created_at=utcnow(),
    )
    db.add(conversation)
    db.flush()
    db.add_all([
        ConversationParticipant(
            conversation_id=conversation.id, user_id=inquirer_id, participant_role="INQUIRER"
        ),
        ConversationParticipant(
            conversation_id=conversation.id, user_id=owner_id, participant_role="OWNER"
        ),
    ])
    db.commit()
    logger.info("Conversation %s opened on listing %s", conversation.id, listing_id)
    return {"conversationId": conversation.id, "reused": False}


def list_conversations(db: Session, user_id: str) -> list[dict]:
    """Inbox for *user_id*: last visible message and unread flag, latest activity first."""
    rows = (
        db.query(Conversation, ConversationParticipant.last_read_at, Listing)
        .join(
            ConversationParticipant,
            and_(
                ConversationParticipant.conversation_id == Conversation.id,
                ConversationParticipant.user_id == user_id,
            ),
        )
        .join(Listing, Listing.id == Conversation.listing_id)
        .all()
    )

    items = []
    for conversation, last_read_at, listing in rows:
        last = (
            db.query(Message)
            .filter(Message.conversation_id == conversation.id, Message.deleted_at.is_(None))
            .order_by(Message.created_at.desc(), Message.seq.desc())
            .first()
        )
        unread = bool(last and (last_read_at is None or last.created_at > last_read_at))
        items.append({
            "conversationId": conversation.id,
            "status": conversation.status,
            "createdAt": iso(conversation.created_at),
            "listing": {
                "id": listing.id,
                "title": listing.title,
                "status": listing.status,
            },
            "lastMessage": {
                "body": last.body,
                "at": iso(last.created_at),
                "senderUserId": last.sender_user_id,
            } if last else None,
            "unread": unread,
            "_activity": last.created_at if last else conversation.created_at,
        })

    items.sort(key=lambda item: item["_activity"], reverse=True)
    for item in items:
        del item["_activity"]
    return items
