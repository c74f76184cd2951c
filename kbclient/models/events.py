"""Decoded frame variants.

A "final" frame means two different things depending on the endpoint it
came from, so it maps to two distinct variants: AnswerDelta (streaming,
appended) and FullAnswer (non-streaming, replaces the answer).
"""

from typing import Literal

from pydantic import BaseModel, Field

from kbclient.models.schemas import KnowledgeSeed


class SearchingEvent(BaseModel):
    """The backend is locating sources."""

    kind: Literal["searching"] = "searching"


class SeedsEvent(BaseModel):
    """The citation list for the current answer."""

    kind: Literal["seeds"] = "seeds"
    seeds: list[KnowledgeSeed] = Field(default_factory=list)


class AnswerDelta(BaseModel):
    """Incremental answer text from the streaming endpoint."""

    kind: Literal["delta"] = "delta"
    delta: str


class FullAnswer(BaseModel):
    """Complete answer text from the non-streaming endpoint."""

    kind: Literal["full"] = "full"
    content: str


class UnrecognizedEvent(BaseModel):
    """A frame with a tag this client does not handle."""

    kind: Literal["unrecognized"] = "unrecognized"
    tag: str


StreamEvent = SearchingEvent | SeedsEvent | AnswerDelta | FullAnswer | UnrecognizedEvent
