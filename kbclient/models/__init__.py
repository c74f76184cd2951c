"""Pydantic models for the client's data and wire contract.

Provides type safety, validation, and JSON serialization for everything
the client keeps or exchanges with the backend.

Models:
    - Message: Individual message in a conversation
    - KnowledgeSeed: Retrieved passage cited in support of an answer
    - Session: Conversation thread with its answer and citations
    - Document: Ingested file and its processing status
    - QueryRequest: Body sent to both query endpoints
    - UploadResponse / DocumentStatusResponse: Ingestion endpoint replies
    - SearchingEvent / SeedsEvent / AnswerDelta / FullAnswer / UnrecognizedEvent:
      Decoded frame variants
"""

from kbclient.models.events import (
    AnswerDelta,
    FullAnswer,
    SearchingEvent,
    SeedsEvent,
    StreamEvent,
    UnrecognizedEvent,
)
from kbclient.models.schemas import (
    BatchProgress,
    Document,
    DocumentStatus,
    DocumentStatusResponse,
    KnowledgeSeed,
    Message,
    QueryRequest,
    Role,
    Session,
    SessionPhase,
    UploadResponse,
)

__all__ = [
    "AnswerDelta",
    "BatchProgress",
    "Document",
    "DocumentStatus",
    "DocumentStatusResponse",
    "FullAnswer",
    "KnowledgeSeed",
    "Message",
    "QueryRequest",
    "Role",
    "SearchingEvent",
    "SeedsEvent",
    "Session",
    "SessionPhase",
    "StreamEvent",
    "UnrecognizedEvent",
    "UploadResponse",
]
