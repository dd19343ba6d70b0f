"""In-memory store of the sessions currently being handled."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from relay_server.sessions.session import TurnSession
from relay_server.sessions.types import Message
from relay_server.tools.types import CapabilityDescriptor

logger = logging.getLogger(__name__)


class SessionStore:
    """Tracks live TurnSessions by id.

    One store is created per application. Released ids are invalid: looking
    them up raises KeyError.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, TurnSession] = {}

    def create(
        self,
        messages: list[Message] | None = None,
        active_tools: list[CapabilityDescriptor] | None = None,
    ) -> TurnSession:
        session_id = TurnSession.generate_session_id()
        while session_id in self._sessions:
            session_id = TurnSession.generate_session_id()

        session = TurnSession(
            session_id=session_id, active_tools=active_tools, messages=messages
        )
        self._sessions[session_id] = session
        logger.debug(f"Created session {session_id} with {len(session.active_tools)} tools")
        return session

    def get(self, session_id: str) -> TurnSession:
        """Get a live session.

        Raises:
            KeyError: If the session does not exist or was released
        """
        try:
            return self._sessions[session_id]
        except KeyError:
            raise KeyError(f"Session {session_id} not found") from None

    def release(self, session_id: str) -> bool:
        released = self._sessions.pop(session_id, None) is not None
        if released:
            logger.debug(f"Released session {session_id}")
        return released

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    @asynccontextmanager
    async def session(
        self,
        messages: list[Message] | None = None,
        active_tools: list[CapabilityDescriptor] | None = None,
    ) -> AsyncIterator[TurnSession]:
        """Create a session and release it when the block exits, even on error."""
        session = self.create(messages=messages, active_tools=active_tools)
        try:
            yield session
        finally:
            self.release(session.session_id)
