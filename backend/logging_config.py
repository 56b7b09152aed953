"""Process-wide logging for the chat server.

Every record is stamped with the process role and, inside a WebSocket
connection task, the connection and user it belongs to::

    2026-10-18 14:30:01 [Server][Conn 3f0c2a1e][User 9b1d77aa][INFO] ws.chat:212 - Chat connection ready

``ws/chat.py`` sets ``connection_id_var`` and ``user_id_var`` once the
handshake is accepted; modules keep logging through
``logging.getLogger(__name__)``.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from contextvars import ContextVar
from pathlib import Path

connection_id_var: ContextVar[str] = ContextVar("connection_id_var", default="")
user_id_var: ContextVar[str] = ContextVar("user_id_var", default="")

LOG_FORMAT = "%(asctime)s [%(role)s]%(context)s[%(levelname)s] %(name)s:%(lineno)d - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

STREAM_HANDLER = "_rentchat_stream"
FILE_HANDLER = "_rentchat_file"

QUIET_LOGGERS = ("httpx", "httpcore", "websockets", "sqlalchemy.engine")
UVICORN_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error")

ID_WIDTH = 8


def connection_context() -> str:
    """``[Conn …][User …]`` for the current task, ids cut to ``ID_WIDTH``; empty outside a connection."""
    parts = []
    connection_id = connection_id_var.get()
    if connection_id:
        parts.append(f"[Conn {connection_id[:ID_WIDTH]}]")
    user_id = user_id_var.get()
    if user_id:
        parts.append(f"[User {user_id[:ID_WIDTH]}]")
    return "".join(parts)


class ConnectionContextFilter(logging.Filter):
    """Adds ``role`` and the rendered ``context`` to each record so ``LOG_FORMAT`` can use them."""

    def __init__(self, role: str) -> None:
        super().__init__()
        self.role = role

    def filter(self, record: logging.LogRecord) -> bool:
        record.role = self.role  # type: ignore[attr-defined]
        record.context = connection_context()  # type: ignore[attr-defined]
        return True


def _install(root: logging.Logger, handler: logging.Handler, name: str, role: str) -> None:
    handler.name = name
    handler.addFilter(ConnectionContextFilter(role))
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)


def setup_logging(role: str) -> None:
    """Attach the stderr handler (and the rotating file handler when ``LOG_FILE`` is set) to the root logger.

    Calling it again is a no-op. For the server role, uvicorn's own handlers are
    dropped so its records flow through the root logger too.
    """
    from config import settings

    root = logging.getLogger()
    if any(h.name == STREAM_HANDLER for h in root.handlers):
        return

    root.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    _install(root, logging.StreamHandler(sys.stderr), STREAM_HANDLER, role)

    if settings.LOG_FILE:
        log_path = Path(settings.LOG_FILE)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            str(log_path),
            maxBytes=settings.LOG_MAX_BYTES,
            backupCount=settings.LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        _install(root, file_handler, FILE_HANDLER, role)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if "server" in role.lower():
        for name in UVICORN_LOGGERS:
            uv_logger = logging.getLogger(name)
            uv_logger.handlers.clear()
            uv_logger.propagate = True
