"""Conversation session management.

Creates, renames, switches, clears and deletes sessions in a SessionStore,
keeping a valid current session at all times. Operations that leave a
session behind cancel its in-flight query first.
"""

import logging

from kbclient.errors import ValidationError
from kbclient.models.schemas import Session, utc_now
from kbclient.query.orchestrator import QueryOrchestrator
from kbclient.storage.repositories import SessionStore
from kbclient.streaming import state

logger = logging.getLogger(__name__)

DEFAULT_SESSION_NAME = "Default session"


class SessionManager:
    """Session lifecycle on top of a SessionStore.

    Args:
        store: Store holding the sessions and the current session id.
        orchestrator: Optional orchestrator whose queries are cancelled
            when their session is switched away from, cleared or deleted.
    """

    def __init__(self, store: SessionStore, orchestrator: QueryOrchestrator | None = None) -> None:
        self._store = store
        self._orchestrator = orchestrator

    def ensure_default(self) -> Session:
        """Make sure a session exists and is current.

        Returns:
            The current session.
        """
        sessions = self._store.list_sessions()
        if not sessions:
            return self.create(DEFAULT_SESSION_NAME)

        current_id = self._store.get_current_id()
        current = self._store.get(current_id) if current_id else None
        if current is None:
            current = sessions[0]
            self._store.set_current_id(current.id)
        return current

    def current(self) -> Session:
        return self.ensure_default()

    def get(self, session_id: str) -> Session:
        session = self._store.get(session_id)
        if session is None:
            raise ValidationError(f"Unknown session: {session_id}")
        return session

    def create(self, name: str) -> Session:
        """Create a session and make it current."""
        session = Session(name=name.strip() or DEFAULT_SESSION_NAME)
        self._store.save(session)
        self._store.set_current_id(session.id)
        logger.info(f"Created session {session.id} ({session.name!r})")
        return session

    def rename(self, session_id: str, name: str) -> Session:
        if not name.strip():
            raise ValidationError("Session name is required")
        session = self.get(session_id).model_copy(
            update={"name": name.strip(), "updated_at": utc_now()}
        )
        self._store.save(session)
        return session

    async def switch(self, session_id: str) -> Session:
        """Make another session current, cancelling the previous one's query."""
        session = self.get(session_id)
        previous_id = self._store.get_current_id()
        if previous_id and previous_id != session_id:
            await self._cancel(previous_id)
        self._store.set_current_id(session_id)
        return session

    async def clear(self, session_id: str) -> Session:
        """Empty a session's conversation, answer and citations."""
        await self._cancel(session_id)
        session = state.clear(self.get(session_id))
        self._store.save(session)
        return session

    async def delete(self, session_id: str) -> Session:
        """Delete a session.

        Deleting the current session switches to the first remaining one;
        deleting the last session creates a fresh default one.

        Returns:
            The current session after the deletion.
        """
        self.get(session_id)
        await self._cancel(session_id)
        self._store.delete(session_id)
        logger.info(f"Deleted session {session_id}")

        remaining = self._store.list_sessions()
        if not remaining:
            return self.create(DEFAULT_SESSION_NAME)
        if self._store.get_current_id() in (None, session_id):
            self._store.set_current_id(remaining[0].id)
        return self.current()

    async def _cancel(self, session_id: str) -> None:
        if self._orchestrator is not None:
            await self._orchestrator.cancel(session_id)
