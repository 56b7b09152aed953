"""Message ledger: send, versioned edit, soft delete, and read marking.

Every operation runs its guard checks and its write in the caller's session
and commits once, so the access check and the mutation share one transaction.
Operations return plain dicts ready to be acknowledged or broadcast;
broadcasting itself is left to the caller, after the commit succeeded.

Failures are raised as ``services.errors.ChatError`` subclasses. Store errors
other than the edit-version collision propagate unchanged; the WebSocket
controller and the REST routers turn them into a generic failure.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from database import utcnow
from models.conversation import ConversationParticipant
from models.message import Message, MessageEdit
from services.access import has_access
from services.errors import (
    MESSAGE_IS_DELETED,
    MESSAGE_NOT_FOUND,
    NO_ACCESS,
    NOT_YOUR_MESSAGE,
    AccessDenied,
    EditConflict,
    MessageDeleted,
    NotFound,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

MAX_BODY_LENGTH = 3000
MAX_PAGE_SIZE = 100


def iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def serialize_message(message: Message) -> dict:
    return {
        "id": message.id,
        "conversationId": message.conversation_id,
        "senderUserId": message.sender_user_id,
        "body": message.body,
        "createdAt": iso(message.created_at),
        "editedAt": iso(message.edited_at),
        "deletedAt": iso(message.deleted_at),
    }


def serialize_edit(edit: MessageEdit) -> dict:
    return {
        "messageId": edit.message_id,
        "version": edit.version,
        "body": edit.body,
        "editedByUserId": edit.edited_by_user_id,
        "editedAt": iso(edit.edited_at),
    }


def clean_body(body) -> str:
    """Trim *body* and enforce the 1..MAX_BODY_LENGTH length rule."""
    if not isinstance(body, str):
        raise ValidationFailed("Invalid payload", {"body": ["Expected a string"]})
    text = body.strip()
    if not text or len(text) > MAX_BODY_LENGTH:
        raise ValidationFailed(
            "Invalid payload",
            {"body": [f"Must be between 1 and {MAX_BODY_LENGTH} characters"]},
        )
    return text


def _load_message(db: Session, message_id: str) -> Message:
    message = db.query(Message).filter(Message.id == message_id).first()
    if message is None:
        raise NotFound(MESSAGE_NOT_FOUND)
    return message


def _touch_last_read(db: Session, conversation_id: str, user_id: str, when: datetime) -> int:
    return (
        db.query(ConversationParticipant)
        .filter(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
        .update({ConversationParticipant.last_read_at: when}, synchronize_session=False)
    )


# ── Mutations ──────────────────────────────────────────────────────────────


def send_message(db: Session, conversation_id: str, body, sender_id: str) -> dict:
    """Append a message; sending also marks the conversation read for the sender."""
    text = clean_body(body)
    if not has_access(db, conversation_id, sender_id):
        raise AccessDenied(NO_ACCESS)

    now = utcnow()
    message = Message(
        conversation_id=conversation_id,
        sender_user_id=sender_id,
        body=text,
        created_at=now,
    )
    db.add(message)
    _touch_last_read(db, conversation_id, sender_id, now)
    db.commit()
    logger.debug("Message %s sent to conversation %s", message.id, conversation_id)
    return serialize_message(message)


def edit_message(db: Session, message_id: str, body, editor_id: str) -> dict:
    """Replace the body of the editor's own message, recording the old body.

    Checks run in a fixed order and the first failure wins: missing message,
    deleted message, foreign message, lost access. The new version is
    ``max(version) + 1``; two concurrent edits can compute the same number and
    the ``(message_id, version)`` constraint rejects the loser, which surfaces
    as ``EditConflict``.
    """
    text = clean_body(body)
    message = _load_message(db, message_id)
    if message.deleted_at is not None:
        raise MessageDeleted(MESSAGE_IS_DELETED)
    if message.sender_user_id != editor_id:
        raise AccessDenied(NOT_YOUR_MESSAGE)
    if not has_access(db, message.conversation_id, editor_id):
        raise AccessDenied(NO_ACCESS)

    current = (
        db.query(func.coalesce(func.max(MessageEdit.version), 0))
        .filter(MessageEdit.message_id == message_id)
        .scalar()
    )
    next_version = int(current or 0) + 1

    now = utcnow()
    db.add(
        MessageEdit(
            message_id=message_id,
            version=next_version,
            body=message.body,
            edited_by_user_id=editor_id,
            edited_at=now,
        )
    )
    message.body = text
    message.edited_at = now
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Edit version %d of message %s collided", next_version, message_id)
        raise EditConflict()
    return serialize_message(message)


def delete_message(db: Session, message_id: str, deleter_id: str) -> dict:
    """Soft-delete the deleter's own message.

    Deleting an already deleted message succeeds with ``alreadyDeleted`` and
    changes nothing, before ownership or access are even looked at.
    """
    message = _load_message(db, message_id)
    if message.deleted_at is not None:
        return {"messageId": message_id, "alreadyDeleted": True}
    if message.sender_user_id != deleter_id:
        raise AccessDenied(NOT_YOUR_MESSAGE)
    if not has_access(db, message.conversation_id, deleter_id):
        raise AccessDenied(NO_ACCESS)

    message.deleted_at = utcnow()
    db.commit()
    return {
        "message": {
            "id": message.id,
            "conversationId": message.conversation_id,
            "deletedAt": iso(message.deleted_at),
        }
    }


def deletion_event(result: dict, deleter_id: str) -> dict:
    """Payload of ``message:deleted``; never carries the body."""
    message = result["message"]
    return {
        "messageId": message["id"],
        "conversationId": message["conversationId"],
        "deletedAt": message["deletedAt"],
        "deletedByUserId": deleter_id,
    }


def mark_read(db: Session, conversation_id: str, reader_id: str) -> dict:
    if not has_access(db, conversation_id, reader_id):
        raise AccessDenied(NO_ACCESS)
    now = utcnow()
    updated = _touch_last_read(db, conversation_id, reader_id, now)
    db.commit()
    return {
        "conversationId": conversation_id,
        "userId": reader_id,
        "readAt": iso(now) if updated else None,
    }


# ── Reads ──────────────────────────────────────────────────────────────────


def list_messages(
    db: Session,
    conversation_id: str,
    reader_id: str,
    limit: int = 50,
    before: datetime | None = None,
) -> list[dict]:
    """Newest-first page of a conversation, soft-deleted rows included."""
    if not has_access(db, conversation_id, reader_id):
        raise AccessDenied(NO_ACCESS)
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    q = db.query(Message).filter(Message.conversation_id == conversation_id)
    if before is not None:
        q = q.filter(Message.created_at < before)
    rows = q.order_by(Message.created_at.desc(), Message.seq.desc()).limit(limit).all()
    return [serialize_message(m) for m in rows]


def list_edits(db: Session, message_id: str, reader_id: str) -> list[dict]:
    """Edit history of a message, oldest version first."""
    message = _load_message(db, message_id)
    if not has_access(db, message.conversation_id, reader_id):
        raise AccessDenied(NO_ACCESS)
    edits = (
        db.query(MessageEdit)
        .filter(MessageEdit.message_id == message_id)
        .order_by(MessageEdit.version)
        .all()
    )
    return [serialize_edit(e) for e in edits]
