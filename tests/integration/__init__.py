"""Integration tests for components working together as a system.

Coverage:
    - Mock backend endpoints with real HTTP requests
    - Streaming and single-response queries end to end
    - Upload, polling and deletion of documents end to end

The FastAPI mock backend is served in-process through ASGITransport.
"""
