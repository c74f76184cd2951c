"""Knowledge Client - streaming answers and document ingestion for a knowledge-retrieval backend.

Submits natural-language queries, renders streamed answers with supporting
citations, and tracks asynchronous document-ingestion jobs to completion.

Components:
    - streaming: SSE frame decoding, event dispatch, session state machine
    - query: query orchestration, session management, conversation export
    - ingestion: document upload, status polling, batch coordination
    - storage: injected session and document repositories
    - models: data model and wire schemas
    - api: mock backend honoring the wire contract for local runs and tests
"""

__version__ = "0.1.0"
