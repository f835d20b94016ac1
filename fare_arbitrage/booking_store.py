"""In-memory registry of booking sessions with per-session locking."""

from __future__ import annotations

import datetime as dt
import logging
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class SessionStore:
    """
    Sessions keyed by id.

    ``get`` hides sessions past their expiry and cancelled ones; ``sweep``
    removes both physically.  ``locked(id)`` serializes operations on one
    session without blocking the others.
    """

    def __init__(self, clock: Callable[[], dt.datetime] = utcnow) -> None:
        self._clock = clock
        self._sessions: Dict[str, object] = {}
        self._locks: Dict[str, threading.RLock] = {}
        self._lock = threading.Lock()

    def now(self) -> dt.datetime:
        return self._clock()

    def put(self, session) -> None:
        with self._lock:
            self._sessions[session.id] = session
            self._locks.setdefault(session.id, threading.RLock())

    def get(self, session_id: str, *, include_expired: bool = False):
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None or include_expired:
            return session
        if session.is_expired(self.now()) or session.is_cancelled:
            return None
        return session

    def delete(self, session_id: str) -> bool:
        with self._lock:
            self._locks.pop(session_id, None)
            return self._sessions.pop(session_id, None) is not None

    def all(self) -> List[object]:
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @contextmanager
    def locked(self, session_id: str) -> Iterator[Optional[object]]:
        """Hold *session_id*'s lock; yields the raw session or ``None``."""
        with self._lock:
            lock = self._locks.get(session_id)
        if lock is None:
            yield None
            return
        with lock:
            yield self.get(session_id, include_expired=True)

    def sweep(self) -> int:
        """Remove sessions past expiry and cancelled sessions."""
        now = self.now()
        with self._lock:
            doomed = [
                sid
                for sid, session in self._sessions.items()
                if session.is_expired(now) or session.is_cancelled
            ]
            for sid in doomed:
                del self._sessions[sid]
                self._locks.pop(sid, None)
        if doomed:
            logger.info("Swept %d booking session(s)", len(doomed))
        return len(doomed)


__all__ = ["SessionStore", "utcnow"]
