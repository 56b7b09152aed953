"""Root conftest — shared fixtures for all chat backend tests."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from types import SimpleNamespace

# Ensure backend/ is on sys.path
_backend_dir = str(Path(__file__).resolve().parent)
if _backend_dir not in sys.path:
    sys.path.insert(0, _backend_dir)

# Keep the application engine off disk and pin the signing key
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("REDIS_URL", "")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
import models  # noqa: F401 — register all models with Base

# In-memory SQLite shared through StaticPool so every session sees the same tables
TEST_ENGINE = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = sessionmaker(bind=TEST_ENGINE, autoflush=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def _setup_db():
    """Create all tables before each test, drop after."""
    Base.metadata.create_all(bind=TEST_ENGINE)
    yield
    Base.metadata.drop_all(bind=TEST_ENGINE)


@pytest.fixture
def db():
    """Yield a test database session."""
    session = TestSession()
    try:
        yield session
    finally:
        session.close()


def _seed_chat(session) -> SimpleNamespace:
    """Owner, inquirer and an outsider, one approved listing, one open conversation."""
    from models.conversation import Conversation, ConversationParticipant
    from models.listing import Listing
    from models.user import User

    owner = User(email="owner@example.com")
    inquirer = User(email="inquirer@example.com")
    outsider = User(email="outsider@example.com")
    session.add_all([owner, inquirer, outsider])
    session.flush()

    listing = Listing(owner_user_id=owner.id, title="Sunny two-room flat", status="APPROVED")
    session.add(listing)
    session.flush()

    conversation = Conversation(listing_id=listing.id, created_by_user_id=inquirer.id, status="OPEN")
    session.add(conversation)
    session.flush()
    session.add_all([
        ConversationParticipant(conversation_id=conversation.id, user_id=owner.id, participant_role="OWNER"),
        ConversationParticipant(conversation_id=conversation.id, user_id=inquirer.id, participant_role="INQUIRER"),
    ])
    session.commit()
    return SimpleNamespace(
        owner_id=owner.id,
        inquirer_id=inquirer.id,
        outsider_id=outsider.id,
        listing_id=listing.id,
        conversation_id=conversation.id,
    )


@pytest.fixture
def chat(db):
    """Seeded conversation in the in-memory test database."""
    return _seed_chat(db)


@pytest.fixture
def chat_store(tmp_path):
    """File-backed session factory plus seeded ids.

    Connection tests run store calls on worker threads concurrently, which a
    single shared in-memory connection cannot isolate.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'chat.sqlite3'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    sessions = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    with sessions() as session:
        ids = _seed_chat(session)
    yield SimpleNamespace(sessions=sessions, ids=ids)
    engine.dispose()


@pytest.fixture
def make_token():
    from services.tokens import create_access_token

    def _make(user_id: str, role: str = "USER") -> str:
        return create_access_token(user_id, role)

    return _make
