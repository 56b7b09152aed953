"""Tests for the conversation access guard."""

from __future__ import annotations

from models.conversation import ConversationParticipant
from services.access import has_access, participant_conversation_ids


def test_participants_have_access(db, chat):
    assert has_access(db, chat.conversation_id, chat.owner_id) is True
    assert has_access(db, chat.conversation_id, chat.inquirer_id) is True


def test_outsider_has_no_access(db, chat):
    assert has_access(db, chat.conversation_id, chat.outsider_id) is False


def test_unknown_conversation(db, chat):
    assert has_access(db, "00000000-0000-0000-0000-000000000000", chat.owner_id) is False


def test_removed_participant_loses_access_immediately(db, chat):
    db.query(ConversationParticipant).filter(
        ConversationParticipant.conversation_id == chat.conversation_id,
        ConversationParticipant.user_id == chat.inquirer_id,
    ).delete()
    db.commit()
    assert has_access(db, chat.conversation_id, chat.inquirer_id) is False


def test_participant_conversation_ids(db, chat):
    assert participant_conversation_ids(db, chat.owner_id) == [chat.conversation_id]
    assert participant_conversation_ids(db, chat.outsider_id) == []
