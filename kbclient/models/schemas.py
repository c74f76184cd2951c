from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(UTC)


class Role(str, Enum):
    """Speaker of a conversation message."""

    USER = "user"
    ASSISTANT = "assistant"


class SessionPhase(str, Enum):
    """Lifecycle phase of a session's current query."""

    IDLE = "idle"
    SEARCHING = "searching"
    STREAMING = "streaming"
    SETTLED = "settled"
    ERROR = "error"


class DocumentStatus(str, Enum):
    """Processing status of an ingested document."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"


class Message(BaseModel):
    """A single chat message in the conversation.

    Messages are never mutated after creation.

    Attributes:
        role: The speaker identifier.
        content: The message text.
    """

    model_config = ConfigDict(frozen=True)

    role: Role = Field(..., description="Message role: 'user' or 'assistant'")
    content: str = Field(..., description="The message content")


class KnowledgeSeed(BaseModel):
    """A retrieved passage cited in support of a generated answer.

    Attributes:
        content: The passage text.
        id: Backend identifier of the passage.
        source_id: Identifier of the source document.
        source_title: Human-readable source title.
        nip: Relevance score in [0, 1], lower is more relevant.
        tokens: Token count of the passage.
        order: Position of the passage within its source.
    """

    model_config = ConfigDict(extra="ignore")

    content: str
    id: str | None = None
    source_id: str | None = None
    source_title: str | None = None
    nip: float = Field(default=0.0, ge=0.0, le=1.0)
    tokens: int = Field(default=0, ge=0)
    order: int | None = None

    @property
    def relevance(self) -> int:
        """Relevance as a whole percentage, higher is more relevant."""
        return round((1 - self.nip) * 100)


class Session(BaseModel):
    """One conversation thread.

    Attributes:
        id: Unique session identifier.
        name: Display name.
        created_at: Creation timestamp.
        updated_at: Timestamp of the last change.
        messages: Append-only message history.
        response: Accumulated answer for the latest query.
        seeds: Citations for the latest query, replaced wholesale.
        searching: Whether the backend reported it is locating sources.
        phase: Lifecycle phase of the latest query.
        error: Failure description when phase is error.
        active_query_id: Query whose frames may currently update this session.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = "Default session"
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    messages: list[Message] = Field(default_factory=list)
    response: str = ""
    seeds: list[KnowledgeSeed] = Field(default_factory=list)
    searching: bool = False
    phase: SessionPhase = SessionPhase.IDLE
    error: str | None = None
    active_query_id: str | None = None


class Document(BaseModel):
    """An ingested document and its processing status.

    Attributes:
        id: Temporary local id until the server assigns a permanent one.
        name: Original file name.
        size: Size in bytes.
        status: Processing status.
        error: Failure description when status is error.
        timestamp: Time of the last status change.
    """

    id: str
    name: str
    size: int = Field(default=0, ge=0)
    status: DocumentStatus
    error: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


class QueryRequest(BaseModel):
    """Request body for both query endpoints.

    Attributes:
        messages: Conversation to answer.
        token: Bearer token for the knowledge backend.
        model: Model identifier.
        kb_list: Knowledge bases to search (serialized as kbList).
        documents: Document ids to restrict retrieval to.
        temperature: Sampling temperature.
        max_tokens: Maximum answer tokens.
        response_format: Requested answer format.
        stream: Sent as false for the non-streaming endpoint only.
    """

    model_config = ConfigDict(populate_by_name=True)

    messages: list[Message] = Field(..., min_length=1)
    token: str = Field(..., min_length=1)
    model: str
    kb_list: list[str] = Field(..., alias="kbList", min_length=1)
    documents: list[str] = Field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 2000
    response_format: str = "text"
    stream: bool | None = None

    def to_wire(self) -> dict:
        """Serialize to the JSON body the backend expects."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UploadResponse(BaseModel):
    """Response after a document upload.

    Attributes:
        document_id: Server-issued document id.
        success: Whether the upload was accepted.
        message: Optional human-readable note.
    """

    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(..., alias="documentId", min_length=1)
    success: bool = True
    message: str | None = None


class DocumentStatusResponse(BaseModel):
    """Response from the document status endpoint."""

    name: str = "Unknown"
    size: float = 0
    status: DocumentStatus
    error: str | None = None

    @field_validator("size")
    @classmethod
    def non_negative_size(cls, v: float) -> float:
        """Clamp negative sizes reported by the backend."""
        return max(v, 0)


class BatchProgress(BaseModel):
    """Progress of a batch upload.

    Attributes:
        processed: Files finished so far, successfully or not.
        total: Files in the batch.
    """

    processed: int = Field(ge=0)
    total: int = Field(ge=0)

    @property
    def percent(self) -> int:
        """Completed share as a whole percentage."""
        if self.total == 0:
            return 100
        return round(self.processed * 100 / self.total)
