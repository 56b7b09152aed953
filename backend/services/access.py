"""Conversation access guard backed by the participant relation."""

from __future__ import annotations

from sqlalchemy.orm import Session

from models.conversation import ConversationParticipant


def has_access(db: Session, conversation_id: str, user_id: str) -> bool:
    """True if a participant row exists for (conversation, user).

    Always hits the store: participant rows change outside this process, so the
    answer must not be cached between operations.
    """
    row = (
        db.query(ConversationParticipant.user_id)
        .filter(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
        .first()
    )
    return row is not None


def participant_conversation_ids(db: Session, user_id: str) -> list[str]:
    """Ids of every conversation *user_id* participates in."""
    rows = (
        db.query(ConversationParticipant.conversation_id)
        .filter(ConversationParticipant.user_id == user_id)
        .all()
    )
    return [row.conversation_id for row in rows]
