"""Mock knowledge backend.

FastAPI application honoring the query and document endpoints the client
talks to, for local runs and integration tests.

Endpoints:
    - GET /health: Service health status
    - POST /api/knowledge/stream: Streamed answer frames
    - POST /api/knowledge/query: Complete answer
    - POST /api/documents/upload: Document upload
    - GET /api/documents/status: Document processing status
    - DELETE /api/documents/delete: Document removal
"""

from kbclient.api.app import create_app

__all__ = ["create_app"]
