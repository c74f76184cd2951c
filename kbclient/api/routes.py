"""Mock knowledge backend endpoints.

Answers queries with canned retrieval results and simulates document
processing, so the client can be exercised locally without the real
service.

Endpoints:
    - POST /api/knowledge/stream: Streamed answer as "data: <json>" frames
    - POST /api/knowledge/query: Complete answer in one JSON object
    - POST /api/documents/upload: Multipart upload of a single file
    - GET /api/documents/status: Processing status of a document
    - DELETE /api/documents/delete: Document removal
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field
from uuid import uuid4

from fastapi import APIRouter, Header, HTTPException, Query, Request, UploadFile, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from kbclient.models.schemas import DocumentStatus, DocumentStatusResponse, KnowledgeSeed, Message, UploadResponse

logger = logging.getLogger(__name__)

knowledge_router = APIRouter(prefix="/api/knowledge", tags=["knowledge"])
documents_router = APIRouter(prefix="/api/documents", tags=["documents"])


@dataclass
class MockBackendState:
    """Mutable state shared by the mock endpoints.

    Attributes:
        processing_checks: Status checks a processing document needs
            before it is reported ready.
        chunk_delay: Seconds to pause between streamed frames.
        uploads: Name and size of each uploaded document by id.
        checks: Status checks made so far per document id.
        deleted: Ids of deleted documents.
    """

    processing_checks: int = 1
    chunk_delay: float = 0.0
    uploads: dict[str, tuple[str, int]] = field(default_factory=dict)
    checks: dict[str, int] = field(default_factory=dict)
    deleted: set[str] = field(default_factory=set)


class KnowledgeQuery(BaseModel):
    """Query body accepted by both knowledge endpoints.

    Fields are optional here so incomplete bodies get a 400 with a readable
    message instead of a schema error.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    messages: list[Message] = Field(default_factory=list)
    token: str = ""
    model: str = ""
    kb_list: list[str] = Field(default_factory=list, alias="kbList")
    documents: list[str] = Field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 2000
    response_format: str = "text"
    stream: bool | None = None


def _backend(request: Request) -> MockBackendState:
    return request.app.state.backend


def _validate_query(query: KnowledgeQuery) -> str:
    """Check a query body and return the question to answer.

    Raises:
        HTTPException: 400 if token, knowledge bases or messages are missing.
    """
    if not query.token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="API token is required")
    if not query.kb_list:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Knowledge base id is required")
    if not query.messages:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Messages are required")
    return query.messages[-1].content


def _require_bearer(authorization: str | None) -> str:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization token",
        )
    return authorization.removeprefix("Bearer ")


def _require_id(document_id: str | None) -> str:
    if not document_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Document ID is required")
    return document_id


def _seeds_for(question: str, query: KnowledgeQuery) -> list[KnowledgeSeed]:
    return [
        KnowledgeSeed(
            content=f"Passage {i + 1} from {kb} related to: {question}",
            id=f"{kb}-seed-{i + 1}",
            source_id=kb,
            source_title=f"Knowledge base {kb}",
            nip=round(0.1 + 0.2 * i, 2),
            tokens=len(question.split()) + 6,
            order=i,
        )
        for i, kb in enumerate(query.kb_list)
    ]


def _answer_for(question: str, query: KnowledgeQuery) -> str:
    scope = f" within {len(query.documents)} selected documents" if query.documents else ""
    return (
        f"Based on {len(query.kb_list)} knowledge base(s){scope}, "
        f'here is what I found about "{question}".'
    )


def _frame(tag: str, content: object) -> str:
    return f"data: {json.dumps({'tag': tag, 'content': content})}\n\n"


@knowledge_router.post("/stream")
async def stream_answer(query: KnowledgeQuery, request: Request) -> StreamingResponse:
    """Stream an answer as searching, seeds and answer-delta frames.

    Raises:
        400: Missing token, knowledge base ids or messages.
    """
    question = _validate_query(query)
    backend = _backend(request)
    seeds = _seeds_for(question, query)
    words = _answer_for(question, query).split(" ")

    async def frames() -> AsyncGenerator[str]:
        yield _frame("searching", "Searching knowledge bases")
        await asyncio.sleep(backend.chunk_delay)
        yield _frame("seeds", [seed.model_dump() for seed in seeds])
        for i, word in enumerate(words):
            await asyncio.sleep(backend.chunk_delay)
            yield _frame("final", word if i == 0 else f" {word}")

    logger.info(f"Streaming answer over {len(query.kb_list)} knowledge bases")
    return StreamingResponse(frames(), media_type="text/event-stream")


@knowledge_router.post("/query")
async def query_answer(query: KnowledgeQuery) -> dict[str, str]:
    """Return a complete answer in a single response.

    Raises:
        400: Missing token, knowledge base ids or messages.
    """
    question = _validate_query(query)
    return {"tag": "final", "content": _answer_for(question, query)}


@documents_router.post("/upload", response_model=UploadResponse)
async def upload_document(
    request: Request,
    file: UploadFile | None = None,
    authorization: str | None = Header(default=None),
) -> UploadResponse:
    """Accept a document for processing.

    Raises:
        401: Missing bearer token.
        400: No file in the form.
    """
    _require_bearer(authorization)
    if file is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")

    content = await file.read()
    document_id = str(uuid4())
    _backend(request).uploads[document_id] = (file.filename or "upload", len(content))
    logger.info(f"Accepted upload {file.filename} ({len(content)} bytes) as {document_id}")

    return UploadResponse(
        document_id=document_id,
        success=True,
        message="Document uploaded successfully and is being processed",
    )


def _simulated_status(backend: MockBackendState, document_id: str) -> DocumentStatus:
    code = ord(document_id[-1]) % 10
    if code == 0:
        return DocumentStatus.ERROR
    if code > 3:
        return DocumentStatus.READY

    backend.checks[document_id] = backend.checks.get(document_id, 0) + 1
    if backend.checks[document_id] > backend.processing_checks:
        return DocumentStatus.READY
    return DocumentStatus.PROCESSING


@documents_router.get("/status", response_model=DocumentStatusResponse)
async def document_status(
    request: Request,
    document_id: str | None = Query(default=None, alias="id"),
    authorization: str | None = Header(default=None),
) -> DocumentStatusResponse:
    """Report the processing status of a document.

    The status is derived from the last character of the id, so every
    id maps to a predictable outcome.

    Raises:
        401: Missing bearer token.
        400: Missing document id.
        404: Document was deleted.
    """
    _require_bearer(authorization)
    document_id = _require_id(document_id)
    backend = _backend(request)
    if document_id in backend.deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")

    name, size = backend.uploads.get(document_id, (f"Document {document_id[:8]}", 0))
    doc_status = _simulated_status(backend, document_id)
    return DocumentStatusResponse(
        name=name,
        size=size,
        status=doc_status,
        error="Failed to process document" if doc_status == DocumentStatus.ERROR else None,
    )


@documents_router.delete("/delete")
async def delete_document(
    request: Request,
    document_id: str | None = Query(default=None, alias="id"),
    authorization: str | None = Header(default=None),
) -> dict[str, object]:
    """Delete a document.

    Raises:
        401: Missing bearer token.
        400: Missing document id.
    """
    _require_bearer(authorization)
    document_id = _require_id(document_id)
    backend = _backend(request)
    backend.deleted.add(document_id)
    backend.uploads.pop(document_id, None)
    logger.info(f"Deleted document {document_id}")
    return {"success": True, "message": "Document deleted successfully"}
