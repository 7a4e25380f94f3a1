"""
Intent queue (buyer session storage).

Ordered list of pending registration intents kept in the buyer's session,
serialized as JSON under a single key. The queue is best-effort and never
the only copy of an intent: any corrupt stored state reads as an empty list
instead of raising.

Single-session ownership is assumed; concurrent writers are not supported.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Dict, Iterable, List, MutableMapping

from domain.errors import DuplicateIntentError
from domain.intent import IntentIdentity, PendingIntent

logger = logging.getLogger(__name__)

SessionStorage = MutableMapping[str, str]

_QUEUE_KEY: str = "regQueue"


class IntentQueue:
    """Append-only (until drained) queue of PendingIntents for one buyer session."""

    def __init__(self, storage: SessionStorage):
        self._storage = storage

    def get(self) -> List[PendingIntent]:
        raw = self._storage.get(_QUEUE_KEY)
        if not raw:
            return []
        try:
            items = json.loads(raw)
            if not isinstance(items, list):
                raise ValueError("queue payload is not a list")
            return [PendingIntent.from_dict(item) for item in items]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, ArithmeticError) as e:
            logger.warning(f"Intent queue storage is corrupt, treating as empty: {e}")
            return []

    def set(self, intents: Iterable[PendingIntent]) -> None:
        self._storage[_QUEUE_KEY] = json.dumps([intent.to_dict() for intent in intents])

    def add(self, intent: PendingIntent) -> None:
        """
        Append `intent` to the queue.

        Raises:
            DuplicateIntentError: an intent with the same (player, season, sport) is queued
        """

        queue = self.get()
        if any(existing.identity == intent.identity for existing in queue):
            logger.warning(
                f"Duplicate intent rejected: player {intent.player_id} "
                f"{intent.sport} {intent.season}"
            )
            raise DuplicateIntentError(intent.player_id, intent.season, intent.sport)
        queue.append(intent)
        self.set(queue)

    def is_duplicate(self, candidate: PendingIntent) -> bool:
        identity = candidate.identity
        return any(existing.identity == identity for existing in self.get())

    def remove(self, identities: Iterable[IntentIdentity]) -> List[PendingIntent]:
        """Drop queued intents with any of `identities`; return what remains."""

        drop = set(identities)
        remaining = [intent for intent in self.get() if intent.identity not in drop]
        self.set(remaining)
        return remaining

    def clear(self) -> None:
        self._storage.pop(_QUEUE_KEY, None)


class SessionStorageRegistry:
    """In-process session storage, one mapping per buyer."""

    def __init__(self) -> None:
        self._sessions: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def for_buyer(self, buyer_id: str) -> SessionStorage:
        with self._lock:
            return self._sessions.setdefault(buyer_id, {})

    def queue_for(self, buyer_id: str) -> IntentQueue:
        return IntentQueue(self.for_buyer(buyer_id))

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


_sessions = SessionStorageRegistry()


def get_session_registry() -> SessionStorageRegistry:
    return _sessions


__all__ = [
    "IntentQueue",
    "SessionStorage",
    "SessionStorageRegistry",
    "get_session_registry",
]
