"""Repositories for sessions and documents.

Explicit, injected stores replace ambient global state so the query and
ingestion components can be exercised in isolation.
"""

from kbclient.storage.repositories import (
    DocumentStore,
    InMemoryDocumentStore,
    InMemorySessionStore,
    JsonDocumentStore,
    JsonSessionStore,
    SessionStore,
)

__all__ = [
    "DocumentStore",
    "InMemoryDocumentStore",
    "InMemorySessionStore",
    "JsonDocumentStore",
    "JsonSessionStore",
    "SessionStore",
]
