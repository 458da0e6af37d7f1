"""
In-memory stand-in for the Redis quote cache, used when REDIS_URL is unset.

Holds quote session metadata and the session-local snapshot of each quote
aggregate. Entries expire after their TTL the same way they would in Redis, so
a lapsed session behaves identically in local runs and in production.
"""

from __future__ import annotations

import copy
import time
from typing import Any, Callable, Dict, Optional, Tuple

SESSION_PREFIX = "quote_session"
SNAPSHOT_PREFIX = "quote_snapshot"


def session_key(session_id: str) -> str:
    return f"{SESSION_PREFIX}:{session_id}"


def snapshot_key(draft_key: str) -> str:
    return f"{SNAPSHOT_PREFIX}:{draft_key}"


class RedisCache:
    def __init__(
        self,
        default_ttl: int = 1800,
        draft_ttl: int = 604800,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_ttl = default_ttl
        self._draft_ttl = draft_ttl
        self._clock = clock
        # key -> (expires_at, payload)
        self._entries: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    def _put(self, key: str, data: Dict[str, Any], ttl: int) -> None:
        self._entries[key] = (self._clock() + ttl, copy.deepcopy(data))

    def _get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, data = entry
        if expires_at <= self._clock():
            del self._entries[key]
            return None
        return copy.deepcopy(data)

    # --- Quote sessions --------------------------------------------------------

    def set_session(self, session_id: str, data: Dict[str, Any], ttl: Optional[int] = None) -> None:
        self._put(session_key(session_id), data, ttl or self._default_ttl)

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        return self._get(session_key(session_id))

    def update_session(self, session_id: str, updates: Dict[str, Any]) -> None:
        session = self.get_session(session_id)
        if session is None:
            return
        session.update(updates)
        self.set_session(session_id, session)

    def delete_session(self, session_id: str) -> None:
        self._entries.pop(session_key(session_id), None)

    # --- Quote snapshots -------------------------------------------------------

    def save_quote_snapshot(self, draft_key: str, data: Dict[str, Any], ttl: Optional[int] = None) -> None:
        self._put(snapshot_key(draft_key), data, ttl or self._draft_ttl)

    def load_quote_snapshot(self, draft_key: str) -> Optional[Dict[str, Any]]:
        return self._get(snapshot_key(draft_key))

    def delete_quote_snapshot(self, draft_key: str) -> None:
        self._entries.pop(snapshot_key(draft_key), None)

    def ping(self) -> bool:
        """Always reachable; the health check reports it as connected."""
        return True
