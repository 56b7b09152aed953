"""Inbound chat event schemas and the acknowledgment result type."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Annotated, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, ValidationError

MessageBody = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=3000)]


class _EventIn(BaseModel):
    model_config = ConfigDict(extra="ignore")


class ConversationRef(_EventIn):
    conversationId: UUID


class SendMessageIn(ConversationRef):
    body: MessageBody


class EditMessageIn(_EventIn):
    messageId: UUID
    body: MessageBody


class DeleteMessageIn(_EventIn):
    messageId: UUID


class PresenceBatchIn(_EventIn):
    userIds: list[UUID] = Field(min_length=1, max_length=200)


EVENT_SCHEMAS: dict[str, type[BaseModel]] = {
    "presence:batch": PresenceBatchIn,
    "conversation:join": ConversationRef,
    "conversation:leave": ConversationRef,
    "message:send": SendMessageIn,
    "message:edit": EditMessageIn,
    "message:delete": DeleteMessageIn,
    "conversation:read": ConversationRef,
}


def flatten_errors(exc: ValidationError) -> dict[str, Any]:
    """Group validation messages by top-level field, with model-level ones under ``formErrors``."""
    form_errors: list[str] = []
    field_errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = err.get("loc") or ()
        if loc:
            field_errors.setdefault(str(loc[0]), []).append(err.get("msg", "Invalid value"))
        else:
            form_errors.append(err.get("msg", "Invalid value"))
    return {"formErrors": form_errors, "fieldErrors": field_errors}


@dataclass
class Ack:
    """Result of one inbound event: ``{ok: true, ...}`` or ``{ok: false, error, details}``."""

    ok: bool
    payload: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    details: Any = None

    @classmethod
    def success(cls, **payload: Any) -> Ack:
        return cls(ok=True, payload=payload)

    @classmethod
    def failure(cls, error: str, details: Any = None) -> Ack:
        return cls(ok=False, error=error, details=details)

    def to_dict(self) -> dict[str, Any]:
        if self.ok:
            return {"ok": True, **self.payload}
        return {"ok": False, "error": self.error, "details": self.details}


# ── REST request bodies ───────────────────────────────────────────────────


class OpenConversationIn(BaseModel):
    listingId: UUID


class MessageBodyIn(BaseModel):
    body: MessageBody
