"""Deduplication helpers (core domain).

The platform re-delivers a message when it gets no answer within five
seconds, up to three times. It sends no message id, so identity is derived
from the creation time, the sender and the event data.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Optional

from core.models import InboundMessage

LOGGER = logging.getLogger(__name__)


def _trim_to_empty(value: Optional[object]) -> str:
    if value is None:
        return ""
    return str(value).strip()


def dedup_key(message: InboundMessage) -> str:
    """Return the deterministic identity used to suppress retried deliveries."""

    parts = (
        message.created_at,
        message.sender_id,
        message.event,
        message.event_key,
    )
    return "-".join(_trim_to_empty(part) for part in parts)


class InMemoryDuplicateChecker:
    """Process-local duplicate checker with a TTL and a capacity bound.

    Records are kept in insertion order, which is also age order because a
    record is never refreshed, so eviction drops the oldest entries first.
    Expired records are purged lazily, at most once per ``clear_period_seconds``.
    """

    def __init__(
        self,
        ttl_seconds: float = 15,
        clear_period_seconds: float = 5,
        max_entries: int = 10_000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._ttl = ttl_seconds
        self._clear_period = clear_period_seconds
        self._max_entries = max_entries
        self._clock = clock
        self._seen: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._last_purge = clock()

    def is_duplicate(self, key: str) -> bool:
        """Record ``key`` on first sight; report True for any later sighting."""

        now = self._clock()
        with self._lock:
            if now - self._last_purge >= self._clear_period:
                self._purge_locked(now)
            first_seen = self._seen.get(key)
            if first_seen is not None and now - first_seen < self._ttl:
                return True
            # Re-insert so the key moves to the young end of the order.
            self._seen.pop(key, None)
            self._seen[key] = now
            while len(self._seen) > self._max_entries:
                oldest = next(iter(self._seen))
                del self._seen[oldest]
            return False

    def purge(self) -> int:
        """Drop expired records now and return how many were removed."""

        with self._lock:
            return self._purge_locked(self._clock())

    def _purge_locked(self, now: float) -> int:
        expired = [key for key, first_seen in self._seen.items() if now - first_seen >= self._ttl]
        for key in expired:
            del self._seen[key]
        self._last_purge = now
        if expired:
            LOGGER.debug("Dedup purge removed %s records", len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
