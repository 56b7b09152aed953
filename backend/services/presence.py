"""In-memory, connection-counted presence registry."""

from __future__ import annotations

import logging
import threading

from services.errors import ValidationFailed

logger = logging.getLogger(__name__)

MAX_BATCH_IDS = 200


class PresenceRegistry:
    """Maps a user id to the set of its live connection ids.

    A user is online iff its set is non-empty; the entry is dropped as soon as
    the set empties. ``add_connection``/``remove_connection`` report the
    offline→online and online→offline transitions so callers broadcast each
    transition exactly once, however many devices the user connects.

    State lives for the process lifetime only. One instance is created per
    application (see ``main.lifespan``) and shared by every connection.
    """

    def __init__(self) -> None:
        self._connections: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def add_connection(self, user_id: str, connection_id: str) -> bool:
        """Register *connection_id*; True if this is the user's first live connection."""
        key = str(user_id)
        with self._lock:
            existing = self._connections.setdefault(key, set())
            was_offline = not existing
            existing.add(connection_id)
        return was_offline

    def remove_connection(self, user_id: str, connection_id: str) -> bool:
        """Deregister *connection_id*; True if the user has no connection left.

        Unknown users or connections return False, so duplicate disconnect
        signals never produce a second offline transition.
        """
        key = str(user_id)
        with self._lock:
            existing = self._connections.get(key)
            if not existing or connection_id not in existing:
                return False
            existing.discard(connection_id)
            if existing:
                return False
            del self._connections[key]
        return True

    def is_online(self, user_id: str) -> bool:
        with self._lock:
            return bool(self._connections.get(str(user_id)))

    def batch_query(self, user_ids) -> list[dict]:
        """Online state for up to ``MAX_BATCH_IDS`` ids, deduplicated in first-seen order."""
        ids = [str(uid) for uid in user_ids or []]
        if not ids or len(ids) > MAX_BATCH_IDS:
            raise ValidationFailed(
                "Invalid payload",
                {"userIds": [f"Expected between 1 and {MAX_BATCH_IDS} ids, got {len(ids)}"]},
            )
        unique_ids = list(dict.fromkeys(ids))
        with self._lock:
            return [
                {"userId": uid, "isOnline": bool(self._connections.get(uid))}
                for uid in unique_ids
            ]

    def online_user_ids(self) -> set[str]:
        with self._lock:
            return set(self._connections)

    @property
    def connection_count(self) -> int:
        with self._lock:
            return sum(len(conns) for conns in self._connections.values())

    def clear(self) -> None:
        """Drop all entries. Called at application shutdown."""
        with self._lock:
            if self._connections:
                logger.info("Clearing presence for %d users", len(self._connections))
            self._connections.clear()
