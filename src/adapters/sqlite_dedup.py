"""SQLite duplicate checker adapter.

Implements the core DuplicateChecker port on a SQLite file so several
webhook processes on one host can share dedup state.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Callable

LOGGER = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteDuplicateChecker:
    """Thin SQLite wrapper that satisfies the DuplicateChecker contract."""

    def __init__(
        self,
        db_path: str,
        ttl_seconds: float = 15,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._db_path = db_path
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=5.0)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create the ``seen`` table if it does not exist."""

        with self._connect() as conn:
            # seen stores one row per delivered message identity.
            # Fields:
            # - dedup_key: created_at-sender-subtype-key (PRIMARY KEY)
            # - first_seen: timestamp of first observation for TTL checks
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS seen (
                    dedup_key TEXT PRIMARY KEY,
                    first_seen TIMESTAMP NOT NULL
                )
                """
            )

    def is_duplicate(self, key: str) -> bool:
        """Record ``key`` unless a live record exists; True when one did."""

        now = self._clock()
        cutoff = now - self._ttl
        with self._connect() as conn:
            # The expired-row delete takes the write lock, so the insert below
            # is decided by exactly one of several racing processes.
            conn.execute(
                "DELETE FROM seen WHERE dedup_key = ? AND first_seen <= ?",
                (key, cutoff.isoformat()),
            )
            cur = conn.execute(
                "INSERT OR IGNORE INTO seen (dedup_key, first_seen) VALUES (?, ?)",
                (key, now.isoformat()),
            )
            return cur.rowcount == 0

    def cleanup_seen(self, ttl_seconds: float) -> int:
        """Delete records older than ``ttl_seconds`` and return the number removed."""

        cutoff = self._clock() - timedelta(seconds=ttl_seconds)
        with self._connect() as conn:
            cur = conn.execute(
                "DELETE FROM seen WHERE first_seen < ?",
                (cutoff.isoformat(),),
            )
            removed = cur.rowcount
        LOGGER.debug("Dedup cleanup removed %s records", removed)
        return removed

    def count(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COUNT(*) AS total FROM seen").fetchone()
        return int(row["total"])
