"""Exception hierarchy for the knowledge client.

Frame-level protocol errors are recovered locally by the decoder. Every
other error kind settles the owning session or document in its error
state and is surfaced to the caller.
"""


class KnowledgeClientError(Exception):
    """Base class for all knowledge client errors."""

    pass


class ValidationError(KnowledgeClientError, ValueError):
    """Raised before any network call when a request is incomplete."""

    pass


class TransportError(KnowledgeClientError):
    """Raised on network failure or a non-2xx HTTP status.

    Attributes:
        status_code: HTTP status code, or None when no response arrived.
        body: Response body text, empty when unavailable.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ProtocolError(KnowledgeClientError):
    """Raised when a single frame cannot be decoded or interpreted."""

    pass


class UploadError(KnowledgeClientError):
    """Raised when a document upload fails."""

    pass


class PollingError(KnowledgeClientError):
    """Raised when a status check fails while a document is processing."""

    def __init__(self, message: str, document_id: str) -> None:
        super().__init__(message)
        self.document_id = document_id
