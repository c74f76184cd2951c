"""Unit tests for DocumentTracker and BatchIngestor against a scripted backend."""

import asyncio

import httpx
import pytest
import pytest_check as check

from kbclient.config import ClientConfig
from kbclient.errors import TransportError
from kbclient.ingestion import BatchIngestor, DocumentTracker, LocalFile
from kbclient.models.schemas import BatchProgress, Document, DocumentStatus
from kbclient.storage import InMemoryDocumentStore


def _file(name: str = "notes.pdf", size: int = 200_000, content_type: str = "application/pdf") -> LocalFile:
    return LocalFile(name=name, content=b"x" * size, content_type=content_type)


class DocumentBackend:
    """Scripted upload, status and delete endpoints.

    Attributes:
        statuses: Status bodies returned by successive status checks; the
            last one repeats.
        fail_uploads: Names of files whose upload raises a connection error.
        crash_uploads: Names of files whose upload raises a non-HTTP error.
    """

    def __init__(self, statuses: list[dict] | None = None) -> None:
        self.statuses = statuses or [{"name": "doc", "size": 1, "status": "ready"}]
        self.fail_uploads: set[str] = set()
        self.crash_uploads: set[str] = set()
        self.upload_status = 200
        self.status_code = 200
        self.delete_status = 200
        self.requests: list[httpx.Request] = []
        self.uploaded: list[str] = []

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/api/documents/upload":
            return self._upload(request)
        if path == "/api/documents/status":
            if self.status_code != 200:
                return httpx.Response(self.status_code, text="status unavailable")
            body = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
            return httpx.Response(200, json=body)
        if path == "/api/documents/delete":
            return httpx.Response(self.delete_status, json={"success": self.delete_status == 200})
        return httpx.Response(404)

    def _upload(self, request: httpx.Request) -> httpx.Response:
        content = request.content.decode("latin-1")
        name = next((n for n in self.fail_uploads if f'filename="{n}"' in content), None)
        if name is not None:
            raise httpx.ConnectError("connection refused", request=request)
        if any(f'filename="{n}"' in content for n in self.crash_uploads):
            raise RuntimeError("transport exploded")
        if self.upload_status != 200:
            return httpx.Response(self.upload_status, text="storage full")
        document_id = f"doc-{len(self.uploaded) + 1}"
        self.uploaded.append(document_id)
        return httpx.Response(200, json={"documentId": document_id, "success": True})


@pytest.fixture
async def http_client():
    clients: list[httpx.AsyncClient] = []

    def factory(backend: DocumentBackend) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(backend))
        clients.append(client)
        return client

    yield factory
    for client in clients:
        await client.aclose()


@pytest.fixture
def updates() -> list[Document]:
    return []


@pytest.fixture
def make_tracker(http_client, document_store: InMemoryDocumentStore, client_config: ClientConfig, updates):
    def factory(backend: DocumentBackend, config: ClientConfig | None = None) -> DocumentTracker:
        return DocumentTracker(
            http_client(backend),
            document_store,
            config=config or client_config,
            on_update=updates.append,
        )

    return factory


class TestUpload:
    """Tests for the upload step."""

    async def test_lifecycle_uploading_processing_ready(
        self, make_tracker, updates: list[Document], document_store: InMemoryDocumentStore
    ) -> None:
        """A document moves through uploading and processing to ready."""
        backend = DocumentBackend(
            [{"name": "notes.pdf", "size": 10, "status": "processing"}, {"name": "notes.pdf", "size": 10, "status": "ready"}]
        )
        tracker = make_tracker(backend)

        placeholder = tracker.submit(_file())
        check.equal(placeholder.status, DocumentStatus.UPLOADING)
        check.is_true(placeholder.id.startswith("temp-"))

        document = await tracker.wait(placeholder.id)

        check.equal([u.status for u in updates], [DocumentStatus.UPLOADING, DocumentStatus.PROCESSING, DocumentStatus.READY])
        check.equal(document.id, "doc-1")
        check.equal(document.status, DocumentStatus.READY)
        check.equal([d.id for d in document_store.list_documents()], ["doc-1"])
        check.equal(backend.count("/api/documents/status"), 2)

    async def test_request_shape(self, make_tracker) -> None:
        """Uploads are multipart with a bearer token; status checks pass the id."""
        backend = DocumentBackend()

        await make_tracker(backend).ingest(_file())

        upload, status = backend.requests
        check.equal(upload.headers["Authorization"], "Bearer test-token")
        check.is_in("multipart/form-data", upload.headers["Content-Type"])
        check.is_in(b'name="file"; filename="notes.pdf"', upload.content)
        check.equal(status.url.params["id"], "doc-1")
        check.equal(status.headers["Authorization"], "Bearer test-token")

    async def test_progress_is_non_decreasing(self, make_tracker) -> None:
        """Upload progress only grows and ends at 100."""
        progress: list[float] = []

        await make_tracker(DocumentBackend()).ingest(_file(size=300_000), on_progress=progress.append)

        check.greater(len(progress), 1)
        check.equal(progress, sorted(progress))
        check.equal(progress[-1], 100.0)
        check.is_true(all(0 <= p <= 100 for p in progress))

    async def test_upload_failure_never_polls(
        self, make_tracker, updates: list[Document]
    ) -> None:
        """A failed upload settles in error without status checks."""
        backend = DocumentBackend()
        backend.upload_status = 500

        document = await make_tracker(backend).ingest(_file())

        check.equal(document.status, DocumentStatus.ERROR)
        check.is_in("500", document.error)
        check.equal(backend.count("/api/documents/status"), 0)
        check.equal([u.status for u in updates], [DocumentStatus.UPLOADING, DocumentStatus.ERROR])

    async def test_removed_placeholder_is_not_restored(
        self, make_tracker, document_store: InMemoryDocumentStore
    ) -> None:
        """A document removed while uploading stays removed."""
        tracker = make_tracker(DocumentBackend())
        placeholder = tracker.placeholder(_file())

        document = await tracker.upload(
            _file(), on_progress=lambda percent: document_store.delete(placeholder.id), placeholder=placeholder
        )

        check.equal(document.id, "doc-1")
        check.equal(document_store.list_documents(), [])

    async def test_unsupported_type_is_rejected_locally(self, make_tracker) -> None:
        """Files of other types never reach the backend."""
        backend = DocumentBackend()

        document = await make_tracker(backend).ingest(_file(name="tool.exe", content_type="application/x-msdownload"))

        check.equal(document.status, DocumentStatus.ERROR)
        check.is_in("Unsupported file type", document.error)
        check.equal(backend.requests, [])


class TestPolling:
    """Tests for status polling."""

    async def test_error_status_copies_message(self, make_tracker) -> None:
        """A backend failure is reported on the document."""
        backend = DocumentBackend([{"name": "d", "size": 1, "status": "error", "error": "Failed to process document"}])

        document = await make_tracker(backend).ingest(_file())

        check.equal(document.status, DocumentStatus.ERROR)
        check.equal(document.error, "Failed to process document")

    async def test_polling_gives_up(self, make_tracker) -> None:
        """A document stuck in processing fails after the last attempt."""
        backend = DocumentBackend([{"name": "d", "size": 1, "status": "processing"}])

        document = await make_tracker(backend).ingest(_file())

        check.equal(document.status, DocumentStatus.ERROR)
        check.is_in("5 status checks", document.error)
        check.equal(backend.count("/api/documents/status"), 5)

    async def test_failed_status_check_is_not_retried(self, make_tracker) -> None:
        """One failing status check fails the document."""
        backend = DocumentBackend()
        backend.status_code = 503

        document = await make_tracker(backend).ingest(_file())

        check.equal(document.status, DocumentStatus.ERROR)
        check.is_in("503", document.error)
        check.equal(backend.count("/api/documents/status"), 1)

    async def test_backward_status_fails_document(self, make_tracker) -> None:
        """A processing document reported as uploading again is failed."""
        backend = DocumentBackend([{"name": "d", "size": 1, "status": "uploading"}])

        document = await make_tracker(backend).ingest(_file())

        check.equal(document.status, DocumentStatus.ERROR)
        check.is_in("Unexpected status: uploading", document.error)
        check.equal(backend.count("/api/documents/status"), 1)

    async def test_cancel_stops_polling(
        self, make_tracker, client_config: ClientConfig, document_store: InMemoryDocumentStore
    ) -> None:
        """Cancelled polling leaves the document processing."""
        backend = DocumentBackend([{"name": "d", "size": 1, "status": "processing"}])
        slow = client_config.model_copy(update={"poll_initial_delay": 60})
        tracker = make_tracker(backend, slow)

        placeholder = tracker.submit(_file())
        for _ in range(1000):
            await asyncio.sleep(0)
            if document_store.get("doc-1") is not None:
                break

        check.is_true(await tracker.cancel(placeholder.id))
        document = await tracker.wait(placeholder.id)

        check.equal(document.status, DocumentStatus.PROCESSING)
        check.equal(tracker.active, [])
        check.equal(backend.count("/api/documents/status"), 0)

    async def test_aclose_cancels_everything(self, make_tracker, client_config: ClientConfig) -> None:
        """Closing the tracker stops every background task."""
        slow = client_config.model_copy(update={"poll_initial_delay": 60})
        tracker = make_tracker(DocumentBackend(), slow)
        tracker.submit(_file("a.pdf"))
        tracker.submit(_file("b.pdf"))

        await tracker.aclose()

        assert tracker.active == []

    async def test_refresh_restarts_polling(self, make_tracker, document_store: InMemoryDocumentStore) -> None:
        """A failed document can be checked again."""
        document_store.upsert(Document(id="doc-9", name="old.pdf", status=DocumentStatus.ERROR, error="timeout"))
        tracker = make_tracker(DocumentBackend())

        refreshed = await tracker.refresh("doc-9")
        check.equal(refreshed.status, DocumentStatus.PROCESSING)

        document = await tracker.wait("doc-9")
        check.equal(document.status, DocumentStatus.READY)
        check.is_none(document.error)


class TestDelete:
    """Tests for deleting documents."""

    async def test_delete_removes_document(self, make_tracker, document_store: InMemoryDocumentStore) -> None:
        """A deleted document leaves the store and the selection."""
        document_store.upsert(Document(id="doc-1", name="a.pdf", status=DocumentStatus.READY))
        document_store.select("doc-1", True)
        backend = DocumentBackend()

        await make_tracker(backend).delete("doc-1")

        request = backend.requests[0]
        check.equal(request.method, "DELETE")
        check.equal(request.url.params["id"], "doc-1")
        check.equal(request.headers["Authorization"], "Bearer test-token")
        check.equal(document_store.list_documents(), [])
        check.equal(document_store.selected_ids(), [])

    async def test_failed_delete_keeps_document(self, make_tracker, document_store: InMemoryDocumentStore) -> None:
        """A rejected delete raises and keeps the local record."""
        document_store.upsert(Document(id="doc-1", name="a.pdf", status=DocumentStatus.READY))
        backend = DocumentBackend()
        backend.delete_status = 403

        with pytest.raises(TransportError) as exc_info:
            await make_tracker(backend).delete("doc-1")

        check.equal(exc_info.value.status_code, 403)
        check.is_not_none(document_store.get("doc-1"))


class TestBatchIngestor:
    """Tests for sequential batch uploads."""

    async def test_failure_does_not_abort_batch(self, make_tracker) -> None:
        """The second file fails and the third is still uploaded."""
        backend = DocumentBackend()
        backend.fail_uploads = {"b.pdf"}
        progress: list[BatchProgress] = []
        completed: list[list[Document]] = []

        results = await BatchIngestor(make_tracker(backend)).run(
            [_file("a.pdf"), _file("b.pdf"), _file("c.pdf")],
            on_progress=progress.append,
            on_complete=completed.append,
        )

        check.equal(
            [d.status for d in results],
            [DocumentStatus.PROCESSING, DocumentStatus.ERROR, DocumentStatus.PROCESSING],
        )
        check.equal([d.name for d in results], ["a.pdf", "b.pdf", "c.pdf"])
        check.equal([(p.processed, p.total) for p in progress], [(1, 3), (2, 3), (3, 3)])
        check.equal(progress[-1].percent, 100)
        check.equal(completed, [results])
        check.equal(backend.uploaded, ["doc-1", "doc-2"])
        check.equal(backend.count("/api/documents/status"), 0)

    async def test_unexpected_error_does_not_abort_batch(
        self, make_tracker, document_store: InMemoryDocumentStore
    ) -> None:
        """A non-HTTP failure settles that file and the batch carries on."""
        backend = DocumentBackend()
        backend.crash_uploads = {"b.pdf"}
        completed: list[list[Document]] = []

        results = await BatchIngestor(make_tracker(backend)).run(
            [_file("a.pdf"), _file("b.pdf"), _file("c.pdf")], on_complete=completed.append
        )

        check.equal(
            [d.status for d in results],
            [DocumentStatus.PROCESSING, DocumentStatus.ERROR, DocumentStatus.PROCESSING],
        )
        check.is_in("transport exploded", results[1].error)
        check.equal(backend.uploaded, ["doc-1", "doc-2"])
        check.equal(completed, [results])
        check.equal(
            [d.status for d in document_store.list_documents()],
            [DocumentStatus.PROCESSING, DocumentStatus.ERROR, DocumentStatus.PROCESSING],
        )

    async def test_placeholders_are_listed_before_uploading(
        self, make_tracker, updates: list[Document]
    ) -> None:
        """Every file is shown as uploading before the first upload ends."""
        await BatchIngestor(make_tracker(DocumentBackend())).run([_file("a.pdf"), _file("b.pdf")])

        check.equal([u.status for u in updates[:2]], [DocumentStatus.UPLOADING, DocumentStatus.UPLOADING])

    async def test_track_polls_uploaded_documents(self, make_tracker) -> None:
        """With tracking, processing documents are followed to ready."""
        tracker = make_tracker(DocumentBackend())

        results = await BatchIngestor(tracker).run([_file("a.pdf"), _file("b.pdf")], track=True)
        finished = [await tracker.wait(d.id) for d in results]

        assert [d.status for d in finished] == [DocumentStatus.READY, DocumentStatus.READY]

    async def test_empty_batch(self, make_tracker) -> None:
        """An empty batch completes immediately."""
        completed: list[list[Document]] = []

        results = await BatchIngestor(make_tracker(DocumentBackend())).run([], on_complete=completed.append)

        check.equal(results, [])
        check.equal(completed, [[]])
