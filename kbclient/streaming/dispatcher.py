"""Event dispatch: (session, event) -> next session.

Parsing turns raw frame objects into typed events; dispatch applies one
event to a session. Neither step knows about transport.
"""

import logging

from pydantic import ValidationError as SchemaError

from kbclient.errors import ProtocolError
from kbclient.models.events import (
    AnswerDelta,
    FullAnswer,
    SearchingEvent,
    SeedsEvent,
    StreamEvent,
    UnrecognizedEvent,
)
from kbclient.models.schemas import KnowledgeSeed, Session
from kbclient.streaming import state

logger = logging.getLogger(__name__)


def _tag_of(frame: dict) -> str:
    tag = frame.get("tag")
    if not isinstance(tag, str):
        raise ProtocolError(f"Frame has no string tag: {frame!r}")
    return tag


def _parse_seeds(content: object) -> list[KnowledgeSeed]:
    if not isinstance(content, list):
        raise ProtocolError(f"Seeds payload is {type(content).__name__}, expected list")
    try:
        return [KnowledgeSeed.model_validate(item) for item in content]
    except SchemaError as e:
        raise ProtocolError(f"Invalid seed in payload: {e}") from e


def parse_stream_event(frame: dict) -> StreamEvent:
    """Interpret one frame from the streaming endpoint.

    Args:
        frame: Decoded frame object with "tag" and "content" keys.

    Returns:
        The typed event. A "final" frame becomes an AnswerDelta.

    Raises:
        ProtocolError: If the frame's payload does not fit its tag.
    """
    tag = _tag_of(frame)
    content = frame.get("content")

    if tag == "searching":
        return SearchingEvent()
    if tag == "seeds":
        return SeedsEvent(seeds=_parse_seeds(content))
    if tag == "final":
        if not isinstance(content, str):
            raise ProtocolError(f"Answer delta is {type(content).__name__}, expected str")
        return AnswerDelta(delta=content)
    return UnrecognizedEvent(tag=tag)


def parse_full_answer(body: dict) -> FullAnswer | UnrecognizedEvent:
    """Interpret the single response object of the non-streaming endpoint.

    Args:
        body: Decoded response body.

    Returns:
        FullAnswer for a "final" body, UnrecognizedEvent otherwise.

    Raises:
        ProtocolError: If the body is not a tagged object with text content.
    """
    tag = _tag_of(body)
    if tag != "final":
        return UnrecognizedEvent(tag=tag)
    content = body.get("content")
    if not isinstance(content, str):
        raise ProtocolError(f"Answer is {type(content).__name__}, expected str")
    return FullAnswer(content=content)


def dispatch(session: Session, event: StreamEvent, query_id: str) -> Session:
    """Apply one event produced by query_id to the session.

    Events from a query that is no longer the session's active query, or
    that arrive after the query finished, leave the session unchanged.

    Args:
        session: Current session state.
        event: Typed event to apply.
        query_id: Query that produced the event.

    Returns:
        The next session state.
    """
    if session.active_query_id != query_id or not state.is_in_flight(session):
        logger.info(f"Rejecting stale {event.kind} event from query {query_id} for session {session.id}")
        return session

    if isinstance(event, SearchingEvent):
        return state.mark_searching(session)
    if isinstance(event, SeedsEvent):
        return state.replace_seeds(session, event.seeds)
    if isinstance(event, AnswerDelta):
        return state.append_delta(session, event.delta)
    if isinstance(event, FullAnswer):
        return state.replace_answer(session, event.content)
    if isinstance(event, UnrecognizedEvent):
        logger.debug(f"Ignoring frame with unhandled tag {event.tag!r}")
        return session
    raise TypeError(f"Unknown event type: {type(event).__name__}")
