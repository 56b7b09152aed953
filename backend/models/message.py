"""Message and MessageEdit models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base, utcnow


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conv_time", "conversation_id", "created_at"),
    )

    # Integer surrogate key gives a stable insertion order for timestamp ties
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, default=lambda: str(uuid.uuid4()))
    conversation_id: Mapped[str] = mapped_column(ForeignKey("conversations.id", ondelete="CASCADE"))
    sender_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    body: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    edits: Mapped[list[MessageEdit]] = relationship(
        "MessageEdit", back_populates="message", cascade="all, delete-orphan", order_by="MessageEdit.version"
    )

    def __repr__(self):
        return f"<Message {self.id} in {self.conversation_id}>"


class MessageEdit(Base):
    __tablename__ = "message_edits"
    __table_args__ = (
        UniqueConstraint("message_id", "version", name="uq_message_edits_version"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    message_id: Mapped[str] = mapped_column(ForeignKey("messages.id", ondelete="CASCADE"))
    version: Mapped[int] = mapped_column(Integer)
    # Body as it was before this edit
    body: Mapped[str] = mapped_column(Text)
    edited_by_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"))
    edited_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    message: Mapped[Message] = relationship("Message", back_populates="edits")

    def __repr__(self):
        return f"<MessageEdit {self.message_id} v{self.version}>"
