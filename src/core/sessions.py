"""Per-sender sessions with begin/end-of-access bracketing.

A session is "in use" while its access count is above zero. The router
opens one access per triggered rule and closes it once that rule's chain is
done, so a session never expires under a running chain.

Locking is per sender: the manager lock only guards the session map, and
each session carries its own re-entrant lock for attribute mutation.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

LOGGER = logging.getLogger(__name__)


class Session:
    """Mutable conversational state of one sender."""

    def __init__(
        self,
        session_id: str,
        manager: "StandardSessionManager",
        max_inactive_interval: float,
        clock: Callable[[], float],
    ) -> None:
        self._id = session_id
        self._manager = manager
        self._clock = clock
        self._lock = threading.RLock()
        self._attributes: Dict[str, Any] = {}
        self._access_count = 0
        self._valid = True
        self._is_new = True
        self.max_inactive_interval = max_inactive_interval
        self.creation_time = clock()
        self.last_accessed_time = self.creation_time
        self.this_accessed_time = self.creation_time

    @property
    def id(self) -> str:
        return self._id

    @property
    def access_count(self) -> int:
        with self._lock:
            return self._access_count

    @property
    def is_new(self) -> bool:
        return self._is_new

    @contextmanager
    def locked(self) -> Iterator["Session"]:
        """Hold this session's lock across a compound update."""

        with self._lock:
            yield self

    def access(self) -> None:
        with self._lock:
            self.last_accessed_time = self.this_accessed_time
            self.this_accessed_time = self._clock()
            self._access_count += 1

    def end_access(self) -> None:
        with self._lock:
            self._is_new = False
            if self._access_count > 0:
                self._access_count -= 1
            else:
                LOGGER.warning("Unbalanced end_access for session %s", self._id)
            self.last_accessed_time = self.this_accessed_time
            self.this_accessed_time = self._clock()

    def is_valid(self) -> bool:
        with self._lock:
            if not self._valid:
                return False
            if self._access_count > 0:
                return True
            if self.max_inactive_interval > 0:
                idle = self._clock() - self.this_accessed_time
                if idle >= self.max_inactive_interval:
                    self._expire()
        return self._valid

    def _expire(self) -> None:
        self._valid = False
        self._attributes.clear()
        self._manager.remove(self)

    def invalidate(self) -> None:
        with self._lock:
            if self._valid:
                self._expire()

    def get_attribute(self, name: str, default: Any = None) -> Any:
        with self._lock:
            self._check_valid()
            return self._attributes.get(name, default)

    def set_attribute(self, name: str, value: Any) -> None:
        """Store ``value`` under ``name``; ``None`` removes the attribute."""

        with self._lock:
            self._check_valid()
            if value is None:
                self._attributes.pop(name, None)
            else:
                self._attributes[name] = value

    def remove_attribute(self, name: str) -> None:
        with self._lock:
            self._check_valid()
            self._attributes.pop(name, None)

    def attribute_names(self) -> List[str]:
        with self._lock:
            self._check_valid()
            return list(self._attributes)

    def _check_valid(self) -> None:
        if not self._valid:
            raise RuntimeError(f"Session {self._id} has been invalidated")

    def __repr__(self) -> str:
        return f"Session(id={self._id!r}, access_count={self._access_count})"


class StandardSessionManager:
    """In-memory session manager keyed by sender id."""

    def __init__(
        self,
        max_inactive_interval: float = 1800,
        expire_check_interval: float = 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = threading.Lock()
        self._max_inactive_interval = max_inactive_interval
        self._expire_check_interval = expire_check_interval
        self._clock = clock
        self._last_expire_check = clock()

    def begin_access(self, session_id: str) -> Session:
        """Get or create the session of ``session_id`` and mark it in use."""

        while True:
            session = self.get_session(session_id)
            with session.locked():
                # The session may have expired between lookup and lock.
                if session.is_valid():
                    session.access()
                    return session

    def get_session(self, session_id: str, create: bool = True) -> Optional[Session]:
        if session_id is None:
            raise ValueError("session_id is required")
        self._maybe_process_expires()
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None and create:
                session = Session(session_id, self, self._max_inactive_interval, self._clock)
                self._sessions[session_id] = session
                LOGGER.debug("Created session %s", session_id)
        if session is not None and not session.is_valid():
            return self.get_session(session_id, create) if create else None
        return session

    def find_session(self, session_id: str) -> Optional[Session]:
        """Return the existing session without creating or touching it."""

        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session: Session) -> None:
        with self._lock:
            if self._sessions.get(session.id) is session:
                del self._sessions[session.id]

    def process_expires(self) -> int:
        """Expire idle sessions and return how many were dropped."""

        with self._lock:
            sessions = list(self._sessions.values())
            self._last_expire_check = self._clock()
        expired = sum(1 for session in sessions if not session.is_valid())
        if expired:
            LOGGER.debug("Expired %s idle sessions", expired)
        return expired

    def _maybe_process_expires(self) -> None:
        if self._clock() - self._last_expire_check >= self._expire_check_interval:
            self.process_expires()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
