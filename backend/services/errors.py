"""Chat error taxonomy shared by the WebSocket controller and the REST routers."""

from __future__ import annotations

from typing import Any


class ChatError(Exception):
    """Expected, user-facing failure of a chat operation."""

    status_code = 400

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailed(ChatError):
    status_code = 400


class AccessDenied(ChatError):
    status_code = 403


class NotFound(ChatError):
    status_code = 404


class MessageDeleted(ChatError):
    status_code = 400


class EditConflict(ChatError):
    """Concurrent edits of one message computed the same version; safe to retry."""

    status_code = 409

    def __init__(self, message: str = "Edit conflict, please retry", details: Any = None) -> None:
        super().__init__(message, details if details is not None else {"retryable": True})


class StoreUnavailable(ChatError):
    """The relational store failed or timed out."""

    status_code = 503

    def __init__(self, message: str = "Service temporarily unavailable", details: Any = None) -> None:
        super().__init__(message, details)


NO_ACCESS = "No access to conversation"
NOT_YOUR_MESSAGE = "Not your message"
MESSAGE_NOT_FOUND = "Message not found"
MESSAGE_IS_DELETED = "Message is deleted"
