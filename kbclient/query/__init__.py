"""Query handling for conversation sessions.

Responsibilities:
    - Validating queries before any network call
    - Streaming and single-response requests to the knowledge backend
    - Cancelling superseded queries per session
    - Session lifecycle (create, rename, switch, clear, delete)
    - Conversation export and citation formatting
"""

from kbclient.query.export import export_json, export_text, format_citation
from kbclient.query.orchestrator import QueryOrchestrator
from kbclient.query.sessions import SessionManager

__all__ = [
    "QueryOrchestrator",
    "SessionManager",
    "export_json",
    "export_text",
    "format_citation",
]
