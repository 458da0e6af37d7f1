"""
Redis-backed quote cache for production when REDIS_URL is set. Same interface
and key layout as takaful_quote.database.redis (in-memory stand-in).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import redis

from takaful_quote.database.redis import session_key, snapshot_key

logger = logging.getLogger(__name__)


class RedisCache:
    """
    Quote session metadata and per-session quote snapshots, stored as JSON
    strings with a TTL.
    """

    def __init__(self, url: str, default_ttl: int = 1800, draft_ttl: int = 604800) -> None:
        self._client = redis.from_url(url, decode_responses=True)
        self._default_ttl = default_ttl
        self._draft_ttl = draft_ttl

    def _put(self, key: str, data: Dict[str, Any], ttl: int) -> None:
        self._client.setex(key, ttl, json.dumps(data, default=str))

    def _get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._client.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

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
        self._client.delete(session_key(session_id))

    def save_quote_snapshot(self, draft_key: str, data: Dict[str, Any], ttl: Optional[int] = None) -> None:
        self._put(snapshot_key(draft_key), data, ttl or self._draft_ttl)

    def load_quote_snapshot(self, draft_key: str) -> Optional[Dict[str, Any]]:
        return self._get(snapshot_key(draft_key))

    def delete_quote_snapshot(self, draft_key: str) -> None:
        self._client.delete(snapshot_key(draft_key))

    def ping(self) -> bool:
        try:
            return self._client.ping()
        except redis.RedisError:
            return False
