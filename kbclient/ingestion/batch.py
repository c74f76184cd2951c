"""Sequential batch upload of several files."""

import logging
from collections.abc import Callable, Sequence

from kbclient.ingestion.files import LocalFile
from kbclient.ingestion.tracker import DocumentTracker
from kbclient.models.schemas import BatchProgress, Document, DocumentStatus

logger = logging.getLogger(__name__)

ProgressListener = Callable[[BatchProgress], None]
CompletionListener = Callable[[list[Document]], None]


class BatchIngestor:
    """Uploads files one after another through a DocumentTracker.

    Files are sent in the given order, never concurrently. A failed file
    ends up as an error document and the remaining files are still sent.
    """

    def __init__(self, tracker: DocumentTracker) -> None:
        self._tracker = tracker

    async def run(
        self,
        files: Sequence[LocalFile],
        on_progress: ProgressListener | None = None,
        on_complete: CompletionListener | None = None,
        track: bool = False,
    ) -> list[Document]:
        """Upload a batch of files.

        Args:
            files: Files to upload, in order.
            on_progress: Called after each file with the processed count.
            on_complete: Called once with every resulting document.
            track: Start polling the status of each uploaded document
                once the whole batch has been sent.

        Returns:
            One document per file, in processing or error state.
        """
        total = len(files)
        placeholders = [self._tracker.placeholder(file) for file in files]
        results: list[Document] = []

        for processed, (file, placeholder) in enumerate(zip(files, placeholders, strict=True), start=1):
            document = await self._tracker.upload(file, placeholder=placeholder)
            results.append(document)
            if on_progress is not None:
                on_progress(BatchProgress(processed=processed, total=total))

        failed = sum(1 for doc in results if doc.status == DocumentStatus.ERROR)
        logger.info(f"Batch upload finished: {total - failed}/{total} files accepted")

        if track:
            for document in results:
                if document.status == DocumentStatus.PROCESSING:
                    self._tracker.start_polling(document.id)

        if on_complete is not None:
            on_complete(results)
        return results
