"""Query orchestration against the knowledge backend.

Drives one query end to end: validation, request, streaming or
single-response handling, and cancellation of superseded queries.

Streaming and non-streaming answers combine differently. Streaming
"final" frames are deltas appended to the answer; the non-streaming
"final" body is the whole answer and replaces it. The two paths stay
separate below.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from uuid import uuid4

import httpx

from kbclient.config import ClientConfig, QueryOptions, get_client_config
from kbclient.errors import KnowledgeClientError, ProtocolError, TransportError, ValidationError
from kbclient.models.events import StreamEvent
from kbclient.models.schemas import (
    DocumentStatus,
    Message,
    QueryRequest,
    Role,
    Session,
)
from kbclient.storage.repositories import DocumentStore, SessionStore
from kbclient.streaming import state
from kbclient.streaming.dispatcher import dispatch, parse_full_answer, parse_stream_event
from kbclient.streaming.frame_decoder import decode_frames

logger = logging.getLogger(__name__)

SessionListener = Callable[[Session], None]


class QueryOrchestrator:
    """Runs queries for sessions held in a SessionStore.

    At most one query per session is in flight. Submitting a new query
    for a session cancels the previous one before the new one starts.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        sessions: SessionStore,
        config: ClientConfig | None = None,
        documents: DocumentStore | None = None,
        on_update: SessionListener | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            client: HTTP client used for every request.
            sessions: Store owning the sessions being queried.
            config: Client configuration. Loads from environment if not provided.
            documents: Optional document store used to resolve the selected,
                ready documents a query is restricted to.
            on_update: Called with the new session after every state change.
        """
        self._client = client
        self._sessions = sessions
        self._config = config or get_client_config()
        self._documents = documents
        self._on_update = on_update
        self._inflight: dict[str, tuple[str, asyncio.Task[Session]]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def is_running(self, session_id: str) -> bool:
        entry = self._inflight.get(session_id)
        return entry is not None and not entry[1].done()

    async def submit_query(
        self,
        session_id: str,
        message: str,
        options: QueryOptions | None = None,
    ) -> Session:
        """Ask a question within a session and wait for the answer.

        The user's message is appended to the session before any network
        call, and stays there whatever the outcome.

        Args:
            session_id: Session to ask in.
            message: The user's question.
            options: Per-query settings. Derived from the client config if omitted.

        Returns:
            The session after the query settled. If a newer query for the
            same session superseded this one, the session as it stands then.

        Raises:
            ValidationError: Missing token, knowledge base, message or session.
                Raised before any network call.
            TransportError: Network failure or non-2xx status.
            ProtocolError: Unreadable non-streaming response.
        """
        options = options or QueryOptions.from_config(self._config)
        self._validate(session_id, message, options)

        # Overlapping submits for one session register in submission order
        async with self._locks.setdefault(session_id, asyncio.Lock()):
            await self.cancel(session_id)

            existing = self._sessions.get(session_id)
            if existing is None:
                raise ValidationError(f"Unknown session: {session_id}")
            query_id = uuid4().hex
            user_message = Message(role=Role.USER, content=message)
            session = state.begin_query(existing, user_message, query_id)
            self._save(session)

            request = self._build_request(session, user_message, options)
            if options.stream:
                runner = self._run_streaming(session_id, query_id, request)
            else:
                runner = self._run_single(session_id, query_id, request)

            logger.info(f"Starting query {query_id} for session {session_id} (stream={options.stream})")
            task = asyncio.create_task(runner)
            self._inflight[session_id] = (query_id, task)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and not (current and current.cancelling()):
                logger.info(f"Query {query_id} for session {session_id} was superseded")
                return self._sessions.get(session_id)
            raise
        finally:
            if self._inflight.get(session_id, (None, None))[1] is task:
                del self._inflight[session_id]

    async def cancel(self, session_id: str) -> bool:
        """Abort the in-flight query of a session, if any.

        The aborted query settles the session in its error state, keeping
        any partial answer.

        Returns:
            True if a running query was cancelled.
        """
        entry = self._inflight.pop(session_id, None)
        if entry is None or entry[1].done():
            return False
        query_id, task = entry
        task.cancel()
        await asyncio.wait({task})
        # A task cancelled before its first step never reaches its own handler
        self._fail(session_id, query_id, "Query was cancelled")
        logger.info(f"Cancelled query {query_id} for session {session_id}")
        return True

    async def cancel_all(self) -> None:
        for session_id in list(self._inflight):
            await self.cancel(session_id)

    def _validate(self, session_id: str, message: str, options: QueryOptions) -> None:
        if not options.token.strip():
            raise ValidationError("API token is required")
        if not any(kb.strip() for kb in options.kb_list):
            raise ValidationError("At least one knowledge base id is required")
        if not message.strip():
            raise ValidationError("Message is required")
        if self._sessions.get(session_id) is None:
            raise ValidationError(f"Unknown session: {session_id}")

    def _ready_selected_documents(self) -> list[str]:
        if self._documents is None:
            return []
        selected = set(self._documents.selected_ids())
        return [
            doc.id
            for doc in self._documents.list_documents()
            if doc.status == DocumentStatus.READY and doc.id in selected
        ]

    def _build_request(
        self,
        session: Session,
        user_message: Message,
        options: QueryOptions,
    ) -> QueryRequest:
        messages = list(session.messages) if options.use_history else [user_message]
        documents = options.documents
        if documents is None:
            documents = self._ready_selected_documents()
        return QueryRequest(
            messages=messages,
            token=options.token,
            model=options.model,
            kb_list=[kb.strip() for kb in options.kb_list if kb.strip()],
            documents=documents,
            temperature=options.temperature,
            max_tokens=options.max_tokens,
            response_format=options.response_format,
            stream=None if options.stream else False,
        )

    def _url(self, path: str) -> str:
        return f"{self._config.base_url}{path}"

    def _save(self, session: Session) -> None:
        self._sessions.save(session)
        if self._on_update is not None:
            self._on_update(session)

    def _apply(self, session_id: str, event: StreamEvent, query_id: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            logger.warning(f"Session {session_id} disappeared during query {query_id}")
            return
        updated = dispatch(session, event, query_id)
        if updated is not session:
            self._save(updated)

    def _settle(self, session_id: str, query_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        updated = state.settle(session, query_id)
        if updated is not session:
            self._save(updated)
            logger.info(f"Query {query_id} settled ({len(updated.response)} chars, {len(updated.seeds)} seeds)")
        return updated

    def _fail(self, session_id: str, query_id: str, error: str) -> None:
        session = self._sessions.get(session_id)
        if session is None:
            return
        updated = state.fail(session, query_id, error)
        if updated is not session:
            self._save(updated)

    async def _guarded(self, session_id: str, query_id: str, work: Callable[[], Awaitable[None]]) -> Session | None:
        try:
            await work()
        except asyncio.CancelledError:
            self._fail(session_id, query_id, "Query was cancelled")
            raise
        except httpx.HTTPError as e:
            error = TransportError(f"Request to knowledge API failed: {e}")
            logger.warning(f"Query {query_id} failed: {error}")
            self._fail(session_id, query_id, str(error))
            raise error from e
        except KnowledgeClientError as e:
            logger.warning(f"Query {query_id} failed: {e}")
            self._fail(session_id, query_id, str(e))
            raise
        return self._settle(session_id, query_id)

    async def _run_streaming(self, session_id: str, query_id: str, request: QueryRequest) -> Session | None:
        async def consume() -> None:
            async with self._client.stream(
                "POST",
                self._url(self._config.stream_path),
                json=request.to_wire(),
                headers={"Accept": "text/event-stream"},
                timeout=self._config.request_timeout,
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise TransportError(
                        f"HTTP {response.status_code}: {response.text}",
                        status_code=response.status_code,
                        body=response.text,
                    )
                async for frame in decode_frames(response.aiter_bytes()):
                    try:
                        event = parse_stream_event(frame)
                    except ProtocolError as e:
                        logger.warning(f"Skipping frame in query {query_id}: {e}")
                        continue
                    self._apply(session_id, event, query_id)

        return await self._guarded(session_id, query_id, consume)

    async def _run_single(self, session_id: str, query_id: str, request: QueryRequest) -> Session | None:
        async def fetch() -> None:
            response = await self._client.post(
                self._url(self._config.query_path),
                json=request.to_wire(),
                timeout=self._config.request_timeout,
            )
            if response.is_error:
                raise TransportError(
                    f"HTTP {response.status_code}: {response.text}",
                    status_code=response.status_code,
                    body=response.text,
                )
            try:
                body = response.json()
            except ValueError as e:
                raise ProtocolError(f"Response is not JSON: {e}") from e
            if not isinstance(body, dict):
                raise ProtocolError(f"Response is {type(body).__name__}, expected object")
            self._apply(session_id, parse_full_answer(body), query_id)

        return await self._guarded(session_id, query_id, fetch)
