"""Sequence guard for collaborator fetches.

Every fetch takes a token for its target (e.g. "vehicle_lookup"). Starting a
newer fetch for the same target, or cancelling the target, makes older tokens
stale; a stale result is discarded instead of applied.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable


@dataclass(frozen=True)
class FetchToken:
    target: str
    version: int


class FetchGuard:
    def __init__(self) -> None:
        self._versions: Dict[str, int] = {}
        self._in_flight: Dict[str, int] = {}

    def begin(self, target: str) -> FetchToken:
        version = self._versions.get(target, 0) + 1
        self._versions[target] = version
        self._in_flight[target] = version
        return FetchToken(target=target, version=version)

    def is_current(self, token: FetchToken) -> bool:
        return self._versions.get(token.target) == token.version

    def finish(self, token: FetchToken) -> bool:
        """Mark the fetch as resolved. Returns False when it was superseded."""
        if not self.is_current(token):
            return False
        self._in_flight.pop(token.target, None)
        return True

    def cancel(self, targets: Iterable[str]) -> None:
        for target in targets:
            self._versions[target] = self._versions.get(target, 0) + 1
            self._in_flight.pop(target, None)

    @property
    def in_flight(self) -> FrozenSet[str]:
        return frozenset(self._in_flight)
