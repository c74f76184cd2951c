"""Document ingestion for the knowledge client.

Responsibilities:
    - Reading local files and guessing their content type
    - Uploading with progress reporting
    - Polling processing status until a document is ready or failed
    - Sequential batch uploads
"""

from kbclient.ingestion.batch import BatchIngestor
from kbclient.ingestion.files import LocalFile, ProgressReader
from kbclient.ingestion.tracker import DocumentTracker

__all__ = ["BatchIngestor", "DocumentTracker", "LocalFile", "ProgressReader"]
