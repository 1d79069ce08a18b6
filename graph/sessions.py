import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Dict, List, Optional

from loguru import logger

from graph.state import Session


class SessionExistsError(Exception):
    """Raised by SessionStore.create when the contact already has a session."""


class SessionStore:
    """
    In-memory map of contact key -> Session.

    A contact's events must be handled one at a time: callers hold
    ``lock(key)`` for the whole read-modify-write of a turn. Nothing here
    survives a restart.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def get(self, key: str) -> Optional[Session]:
        return self._sessions.get(key)

    def create(self, key: str) -> Session:
        if key in self._sessions:
            raise SessionExistsError(key)
        session = Session(contact_key=key)
        self._sessions[key] = session
        logger.info(f"Session created for {key}")
        return session

    def save(self, session: Session) -> None:
        """Replace the stored session with an updated copy."""
        if session.contact_key not in self._sessions:
            raise KeyError(session.contact_key)
        session.touch()
        self._sessions[session.contact_key] = session

    def delete(self, key: str) -> bool:
        removed = self._sessions.pop(key, None) is not None
        if removed:
            logger.info(f"Session deleted for {key}")
        return removed

    @asynccontextmanager
    async def lock(self, key: str) -> AsyncIterator[None]:
        """Serialize turns for one contact; other contacts are not blocked."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                del self._locks[key]

    def sweep_idle(self, max_idle: timedelta, now: Optional[datetime] = None) -> List[str]:
        """
        Delete sessions with no activity for longer than ``max_idle``.

        Sessions whose contact currently holds the lock are left alone.

        Returns:
            Evicted contact keys
        """
        cutoff = (now or datetime.now(timezone.utc)) - max_idle
        evicted = [
            key for key, session in self._sessions.items()
            if session.updated_at < cutoff and key not in self._locks
        ]
        for key in evicted:
            del self._sessions[key]
        if evicted:
            logger.info(f"Evicted {len(evicted)} idle sessions")
        return evicted

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        return key in self._sessions
