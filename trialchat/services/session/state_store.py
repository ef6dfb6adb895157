"""
Session Store - Lookup of session state by id.

The coordinator depends only on the SessionStore interface; the in-memory
implementation is the default. A persistent store (Redis, PostgreSQL) is a
drop-in subclass.
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional
import asyncio
import logging

from .state import Session, BackendMode

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Storage interface for sessions."""

    @abstractmethod
    async def get(self, session_id: str) -> Optional[Session]:
        ...

    @abstractmethod
    async def create(self, session_id: str, mode: BackendMode = BackendMode.LOCAL) -> Session:
        ...

    @abstractmethod
    async def put(self, session: Session) -> None:
        ...

    @abstractmethod
    async def delete(self, session_id: str) -> bool:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    async def get_or_create(self, session_id: str, mode: BackendMode = BackendMode.LOCAL) -> Session:
        session = await self.get(session_id)
        if session is None:
            session = await self.create(session_id, mode)
        return session


class InMemorySessionStore(SessionStore):
    """
    Process-local session storage.

    Sessions do not survive a restart; durability is an external concern.
    """

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._lock = asyncio.Lock()

    async def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def create(self, session_id: str, mode: BackendMode = BackendMode.LOCAL) -> Session:
        async with self._lock:
            existing = self._sessions.get(session_id)
            if existing is not None:
                return existing
            session = Session(session_id=session_id, mode=mode)
            self._sessions[session_id] = session
            logger.debug(f"Created session {session_id} (mode={mode.value})")
            return session

    async def put(self, session: Session) -> None:
        async with self._lock:
            self._sessions[session.session_id] = session

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            if session_id in self._sessions:
                del self._sessions[session_id]
                logger.info(f"Deleted session {session_id}")
                return True
            return False

    async def count(self) -> int:
        return len(self._sessions)


# Singleton instance
_session_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Get the global session store instance."""
    global _session_store
    if _session_store is None:
        _session_store = InMemorySessionStore()
    return _session_store
