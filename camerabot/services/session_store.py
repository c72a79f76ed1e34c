"""Per-user session store guarded by a single store-wide lock.

Sessions are created once, for every allow-listed identity, when the store
is built. The lock covers the whole lookup-to-cleanup span of one update, so
updates from different users are processed one at a time.
"""

import asyncio
import enum
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, Optional, Tuple

import structlog

logger = structlog.get_logger()


class SessionStatus(enum.Enum):
    WAITING = "waiting"


@dataclass
class Session:
    """Session state for one authorized user."""

    user_id: str
    status: SessionStatus = SessionStatus.WAITING


class SessionStore:
    """Map authorized identities to sessions. Serialized via one asyncio.Lock."""

    def __init__(self, identities: Iterable[str], lock: Optional[Any] = None):
        self._sessions: Dict[str, Session] = {
            identity: Session(user_id=identity) for identity in identities
        }
        self._lock = lock if lock is not None else asyncio.Lock()
        logger.info("Session store initialized", sessions=len(self._sessions))

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator["SessionStore"]:
        """Hold the store lock for one update's critical section."""
        async with self._lock:
            yield self

    @property
    def locked(self) -> bool:
        return bool(self._lock.locked())

    def get(self, identity: str) -> Optional[Session]:
        """Look up a session; a miss is logged and returns None."""
        session = self._sessions.get(identity)
        if session is None:
            logger.error("Session does not exist for id", user_id=identity)
        return session

    def set_status(self, identity: str, status: SessionStatus) -> None:
        """Record the next status for an existing session."""
        session = self._sessions.get(identity)
        if session is not None:
            session.status = status

    def identities(self) -> Tuple[str, ...]:
        return tuple(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, identity: object) -> bool:
        return identity in self._sessions
