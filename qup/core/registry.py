"""
Holds the sessions of a process, keyed by session id.
"""

import asyncio
import logging

from qup.core.session import Session
from qup.models.config import QupConfig, SessionParameters

log = logging.getLogger(__name__)


class SessionRegistry:
    """Creates, looks up and closes sessions that share one configuration."""

    def __init__(self, config: QupConfig):
        self.config = config
        self._sessions: dict[str, Session] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self):
        return iter(list(self._sessions.values()))

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def create(self, parameters: SessionParameters | None = None) -> Session:
        session = Session(self.config, parameters)
        while session.session_id in self._sessions:
            session = Session(self.config, parameters)
        self._sessions[session.session_id] = session
        log.debug(f"Created session {session.session_id} for '{session.product}'.")
        return session

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def find(self, product: str) -> Session | None:
        """The first session handling `product`, if any."""
        for session in self._sessions.values():
            if session.product == product:
                return session
        return None

    def active(self) -> list[Session]:
        return [s for s in self._sessions.values() if s.is_active()]

    async def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            await session.close()

    async def close_all(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        if sessions:
            await asyncio.gather(*(s.close() for s in sessions))
