"""Pytest fixtures and shared test configuration.

Provides reusable fixtures for unit and integration tests.

Fixtures:
    - client_config: Configuration with fast polling and a test token
    - session_store / session: In-memory sessions with one saved session
    - document_store: Empty in-memory document store
    - backend_app: Mock knowledge backend application
    - backend_client: HTTPX client talking to the mock backend in-process
"""

from collections.abc import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from kbclient.api import create_app
from kbclient.config import ClientConfig
from kbclient.models.schemas import Session
from kbclient.storage import InMemoryDocumentStore, InMemorySessionStore

TEST_BASE_URL = "http://kb.test"


@pytest.fixture
def client_config() -> ClientConfig:
    """Return a configuration that never waits between status checks.

    Returns:
        ClientConfig pointing at the test base URL.
    """
    return ClientConfig(
        base_url=TEST_BASE_URL,
        token="test-token",
        kb_list=["kb-1"],
        model="gpt-4o-mini",
        stream=True,
        poll_initial_delay=0,
        poll_interval=0,
        poll_max_interval=0,
        poll_max_attempts=5,
    )


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def session(session_store: InMemorySessionStore) -> Session:
    """Save and return an empty session.

    Args:
        session_store: Store the session is saved in.

    Returns:
        The saved session.
    """
    session = Session(id="test-session-12345", name="Test session")
    session_store.save(session)
    session_store.set_current_id(session.id)
    return session


@pytest.fixture
def document_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def backend_app() -> FastAPI:
    return create_app(processing_checks=1)


@pytest.fixture
async def backend_client(backend_app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create async HTTP client for the mock backend.

    Yields:
        AsyncClient routed to the mock backend in-process.
    """
    transport = ASGITransport(app=backend_app)
    async with AsyncClient(transport=transport, base_url=TEST_BASE_URL) as client:
        yield client
