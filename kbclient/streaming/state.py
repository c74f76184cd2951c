"""Session state machine.

Phases and the transitions between them:

    any                    --begin_query--> searching
    searching / streaming  --searching----> searching
    searching / streaming  --answer-------> streaming
    searching / streaming  --settle-------> settled
    searching / streaming  --fail---------> error
    any                    --clear--------> idle

Every function returns a new Session; the input is never modified.
Failing keeps whatever answer and citations had accumulated. Beginning a
query while another is in flight supersedes it; callers cancel the older
request first.
"""

import logging

from kbclient.errors import KnowledgeClientError
from kbclient.models.schemas import (
    KnowledgeSeed,
    Message,
    Session,
    SessionPhase,
    utc_now,
)

logger = logging.getLogger(__name__)

IN_FLIGHT = frozenset({SessionPhase.SEARCHING, SessionPhase.STREAMING})

_ALLOWED: dict[SessionPhase, frozenset[SessionPhase]] = {
    SessionPhase.SEARCHING: frozenset(SessionPhase),
    SessionPhase.STREAMING: IN_FLIGHT,
    SessionPhase.SETTLED: IN_FLIGHT,
    SessionPhase.ERROR: IN_FLIGHT,
    SessionPhase.IDLE: frozenset(SessionPhase),
}


class StateTransitionError(KnowledgeClientError):
    """Raised when a session is asked to make a transition it cannot make."""

    pass


def _move(session: Session, target: SessionPhase, **changes: object) -> Session:
    if session.phase not in _ALLOWED[target]:
        raise StateTransitionError(
            f"Session {session.id} cannot go from {session.phase.value} to {target.value}"
        )
    return session.model_copy(update={"phase": target, "updated_at": utc_now(), **changes})


def is_in_flight(session: Session) -> bool:
    return session.phase in IN_FLIGHT


def begin_query(session: Session, message: Message, query_id: str) -> Session:
    """Start a query: record the user's message and clear the previous answer.

    A new query supersedes any earlier one; frames tagged with an older
    query id no longer apply once this returns.
    """
    return _move(
        session,
        SessionPhase.SEARCHING,
        messages=[*session.messages, message],
        response="",
        seeds=[],
        searching=False,
        error=None,
        active_query_id=query_id,
    )


def mark_searching(session: Session) -> Session:
    return _move(session, SessionPhase.SEARCHING, searching=True)


def replace_seeds(session: Session, seeds: list[KnowledgeSeed]) -> Session:
    # Seeds never change the phase
    if not is_in_flight(session):
        raise StateTransitionError(f"Session {session.id} has no query in flight")
    return session.model_copy(update={"seeds": list(seeds), "updated_at": utc_now()})


def append_delta(session: Session, delta: str) -> Session:
    return _move(session, SessionPhase.STREAMING, response=session.response + delta)


def replace_answer(session: Session, content: str) -> Session:
    return _move(session, SessionPhase.STREAMING, response=content)


def settle(session: Session, query_id: str) -> Session:
    """Finish the query normally.

    Returns the session unchanged when query_id is not the active query
    or the session has already left its in-flight phases.
    """
    if session.active_query_id != query_id or not is_in_flight(session):
        logger.debug(f"Ignoring settle for stale query {query_id} on session {session.id}")
        return session
    return _move(session, SessionPhase.SETTLED)


def fail(session: Session, query_id: str, error: str) -> Session:
    """Finish the query with an error, keeping partial answer and seeds.

    Returns the session unchanged when query_id is not the active query
    or the session has already left its in-flight phases.
    """
    if session.active_query_id != query_id or not is_in_flight(session):
        logger.debug(f"Ignoring failure for stale query {query_id} on session {session.id}")
        return session
    return _move(session, SessionPhase.ERROR, error=error)


def clear(session: Session) -> Session:
    """Drop the conversation and answer, returning the session to idle."""
    return _move(
        session,
        SessionPhase.IDLE,
        messages=[],
        response="",
        seeds=[],
        searching=False,
        error=None,
        active_query_id=None,
    )
