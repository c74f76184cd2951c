"""Document upload and processing status tracking.

Each document moves through uploading -> processing -> ready or error.
A placeholder in the uploading state is stored before any network call.
After a successful upload the placeholder's slot is taken over by the
server-issued id and the status endpoint is polled until the document
leaves the processing state.

Poll loops run as asyncio tasks registered by document id, so they can be
cancelled individually or all at once. Polling backs off exponentially and
gives up after a fixed number of status checks.
"""

import asyncio
import logging
from collections.abc import Callable
from uuid import uuid4

import httpx
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_result, stop_after_attempt, wait_exponential

from kbclient.config import ClientConfig, get_client_config
from kbclient.errors import PollingError, TransportError, UploadError, ValidationError
from kbclient.ingestion.files import LocalFile, ProgressCallback, ProgressReader
from kbclient.models.schemas import Document, DocumentStatus, DocumentStatusResponse, UploadResponse, utc_now
from kbclient.storage.repositories import DocumentStore

logger = logging.getLogger(__name__)

DocumentListener = Callable[[Document], None]

TEMP_ID_PREFIX = "temp-"


def _still_processing(status: DocumentStatusResponse) -> bool:
    return status.status == DocumentStatus.PROCESSING


def _on_poll_retry(retry_state: RetryCallState) -> None:
    document_id = retry_state.args[0] if retry_state.args else "?"
    wait = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.debug(
        f"Document {document_id} still processing. Checking again in {wait:.0f}s "
        f"(attempt {retry_state.attempt_number})"
    )


class DocumentTracker:
    """Uploads documents and follows them until processing finishes.

    Every status change is written to the DocumentStore and passed to
    on_update, so a caller can render the document list as it evolves.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: DocumentStore,
        config: ClientConfig | None = None,
        on_update: DocumentListener | None = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            client: HTTP client used for every request.
            store: Store owning the document list and selection.
            config: Client configuration. Loads from environment if not provided.
            on_update: Called with the new document after every status change.
        """
        self._client = client
        self._store = store
        self._config = config or get_client_config()
        self._on_update = on_update
        self._tasks: dict[str, asyncio.Task[Document]] = {}
        self._renamed: dict[str, str] = {}

    @property
    def active(self) -> list[str]:
        """Ids of documents with a running upload or poll loop."""
        return [doc_id for doc_id, task in self._tasks.items() if not task.done()]

    def placeholder(self, file: LocalFile) -> Document:
        """Store and return an uploading record for a file not yet sent."""
        document = Document(
            id=f"{TEMP_ID_PREFIX}{uuid4().hex}",
            name=file.name,
            size=file.size,
            status=DocumentStatus.UPLOADING,
        )
        self._save(document)
        return document

    def submit(self, file: LocalFile, on_progress: ProgressCallback | None = None) -> Document:
        """Start uploading and tracking a file in the background.

        Must be called from a running event loop.

        Args:
            file: File to upload.
            on_progress: Receives upload progress as a percentage.

        Returns:
            The placeholder record, in the uploading state.
        """
        placeholder = self.placeholder(file)
        task = asyncio.create_task(self._ingest(file, placeholder, on_progress))
        self._tasks[placeholder.id] = task
        return placeholder

    async def ingest(self, file: LocalFile, on_progress: ProgressCallback | None = None) -> Document:
        """Upload a file and wait until it is ready or failed."""
        placeholder = self.submit(file, on_progress)
        return await self.wait(placeholder.id)

    async def upload(
        self,
        file: LocalFile,
        on_progress: ProgressCallback | None = None,
        placeholder: Document | None = None,
    ) -> Document:
        """Upload a file without polling its status.

        Upload failures do not raise. They settle the document in the error
        state with a readable message.

        Args:
            file: File to upload.
            on_progress: Receives upload progress as a percentage.
            placeholder: Uploading record to replace. Created if omitted.

        Returns:
            The document in the processing state, or in the error state if
            the upload failed.
        """
        placeholder = placeholder or self.placeholder(file)
        try:
            document_id = await self._send(file, on_progress)
        except UploadError as e:
            logger.warning(f"Upload of {file.name} failed: {e}")
            return self._fail_upload(placeholder, str(e))
        except asyncio.CancelledError:
            self._fail_upload(placeholder, "Upload was cancelled")
            raise
        except Exception as e:
            logger.exception(f"Unexpected error uploading {file.name}")
            return self._fail_upload(placeholder, f"Upload failed: {e}")

        document = placeholder.model_copy(
            update={"id": document_id, "status": DocumentStatus.PROCESSING, "timestamp": utc_now()}
        )
        if self._store.get(placeholder.id) is None:
            logger.info(f"{file.name} was removed while uploading, not tracking document {document_id}")
            return document
        self._renamed[placeholder.id] = document_id
        self._store.replace(placeholder.id, document)
        self._notify(document)
        logger.info(f"Uploaded {file.name} as document {document_id}")
        return document

    def start_polling(self, document_id: str) -> asyncio.Task[Document]:
        """Begin a fresh poll loop for a processing document.

        Any poll loop already running for the document is cancelled.
        """
        previous = self._tasks.pop(document_id, None)
        if previous is not None and not previous.done():
            previous.cancel()
        task = asyncio.create_task(self._run_poll(document_id))
        self._tasks[document_id] = task
        return task

    async def refresh(self, document_id: str) -> Document:
        """Restart status tracking of a document from the processing state."""
        document_id = self._resolve(document_id)
        if self._store.get(document_id) is None:
            raise ValidationError(f"Unknown document: {document_id}")
        document = self._update(document_id, status=DocumentStatus.PROCESSING, error=None)
        self.start_polling(document_id)
        return document

    async def wait(self, document_id: str) -> Document:
        """Wait for the upload or poll loop of a document to finish.

        Returns:
            The document as stored once its background work is done.
        """
        document_id = self._resolve(document_id)
        task = self._tasks.get(document_id)
        if task is not None:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
            document_id = self._resolve(document_id)
        document = self._store.get(document_id)
        if document is None:
            raise ValidationError(f"Unknown document: {document_id}")
        return document

    async def cancel(self, document_id: str) -> bool:
        """Stop the background work of a document, if any.

        A cancelled poll loop leaves the document processing, so it can be
        resumed with refresh().

        Returns:
            True if a running task was cancelled.
        """
        task = self._tasks.pop(self._resolve(document_id), None)
        if task is None or task.done():
            return False
        task.cancel()
        await asyncio.wait({task})
        logger.info(f"Stopped tracking document {document_id}")
        return True

    async def aclose(self) -> None:
        """Cancel every running upload and poll loop."""
        for document_id in list(self._tasks):
            await self.cancel(document_id)

    async def delete(self, document_id: str) -> None:
        """Delete a document on the backend and forget it locally.

        Raises:
            TransportError: Network failure or non-2xx status. The document
                is kept in that case.
        """
        document_id = self._resolve(document_id)
        await self.cancel(document_id)
        try:
            response = await self._client.delete(
                self._url(self._config.delete_path),
                params={"id": document_id},
                headers=self._auth_headers(),
                timeout=self._config.request_timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"Delete request failed: {e}") from e
        if response.is_error:
            raise TransportError(
                f"Delete failed with HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )
        self._store.delete(document_id)
        logger.info(f"Deleted document {document_id}")

    async def _ingest(
        self,
        file: LocalFile,
        placeholder: Document,
        on_progress: ProgressCallback | None,
    ) -> Document:
        task = asyncio.current_task()
        try:
            document = await self.upload(file, on_progress, placeholder)
            if document.status != DocumentStatus.PROCESSING:
                return document
            self._tasks.pop(placeholder.id, None)
            self._tasks[document.id] = task
            return await self._poll(document.id)
        finally:
            self._forget(task)

    async def _run_poll(self, document_id: str) -> Document:
        task = asyncio.current_task()
        try:
            return await self._poll(document_id)
        finally:
            self._forget(task)

    async def _poll(self, document_id: str) -> Document:
        await asyncio.sleep(self._config.poll_initial_delay)
        retrying = AsyncRetrying(
            retry=retry_if_result(_still_processing),
            wait=wait_exponential(multiplier=self._config.poll_interval, max=self._config.poll_max_interval),
            stop=stop_after_attempt(self._config.poll_max_attempts),
            before_sleep=_on_poll_retry,
        )
        try:
            status = await retrying(self._check_status, document_id)
        except RetryError:
            message = f"Processing did not finish after {self._config.poll_max_attempts} status checks"
            logger.warning(f"Document {document_id}: {message}")
            return self._update(document_id, status=DocumentStatus.ERROR, error=message)
        except PollingError as e:
            logger.warning(f"Status check for document {document_id} failed: {e}")
            return self._update(document_id, status=DocumentStatus.ERROR, error=str(e))

        logger.info(f"Document {document_id} is {status.status.value}")
        return self._update(document_id, status=status.status, error=status.error)

    async def _check_status(self, document_id: str) -> DocumentStatusResponse:
        try:
            response = await self._client.get(
                self._url(self._config.status_path),
                params={"id": document_id},
                headers=self._auth_headers(),
                timeout=self._config.request_timeout,
            )
        except httpx.HTTPError as e:
            raise PollingError(f"Status check failed: {e}", document_id) from e
        if response.is_error:
            raise PollingError(
                f"Status check failed with HTTP {response.status_code}: {response.text}",
                document_id,
            )
        try:
            status = DocumentStatusResponse.model_validate(response.json())
        except ValueError as e:
            raise PollingError(f"Unreadable status response: {e}", document_id) from e
        # Status only moves forward from processing
        if status.status == DocumentStatus.UPLOADING:
            raise PollingError(f"Unexpected status: {status.status.value}", document_id)
        return status

    async def _send(self, file: LocalFile, on_progress: ProgressCallback | None) -> str:
        if file.content_type not in self._config.allowed_content_types:
            raise UploadError(f"Unsupported file type: {file.content_type}")
        if not self._config.token.strip():
            raise UploadError("API token is required")

        reader = ProgressReader(file.content, on_progress)
        try:
            response = await self._client.post(
                self._url(self._config.upload_path),
                files={"file": (file.name, reader, file.content_type)},
                headers=self._auth_headers(),
                timeout=self._config.request_timeout,
            )
        except httpx.HTTPError as e:
            raise UploadError(f"Upload request failed: {e}") from e
        if response.is_error:
            raise UploadError(f"Upload failed with HTTP {response.status_code}: {response.text}")

        try:
            result = UploadResponse.model_validate(response.json())
        except ValueError as e:
            raise UploadError(f"Unreadable upload response: {e}") from e
        if not result.success:
            raise UploadError(result.message or "Upload was rejected")
        reader.report(100.0)
        return result.document_id

    def _url(self, path: str) -> str:
        return f"{self._config.base_url}{path}"

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._config.token}"}

    def _resolve(self, document_id: str) -> str:
        while document_id in self._renamed:
            document_id = self._renamed[document_id]
        return document_id

    def _forget(self, task: asyncio.Task | None) -> None:
        for doc_id in [d for d, t in self._tasks.items() if t is task]:
            del self._tasks[doc_id]

    def _save(self, document: Document) -> None:
        self._store.upsert(document)
        self._notify(document)

    def _notify(self, document: Document) -> None:
        if self._on_update is not None:
            self._on_update(document)

    def _fail_upload(self, placeholder: Document, message: str) -> Document:
        if self._store.get(placeholder.id) is None:
            return placeholder.model_copy(
                update={"status": DocumentStatus.ERROR, "error": message, "timestamp": utc_now()}
            )
        return self._update(placeholder.id, status=DocumentStatus.ERROR, error=message)

    def _update(self, document_id: str, **changes: object) -> Document:
        current = self._store.get(document_id)
        if current is None:
            raise ValidationError(f"Unknown document: {document_id}")
        document = current.model_copy(update={**changes, "timestamp": utc_now()})
        self._save(document)
        return document
