"""FastAPI application factory for the mock knowledge backend.

Application entry point with lifespan management, middleware,
and router registration.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kbclient.api.routes import MockBackendState, documents_router, knowledge_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Log startup and shutdown of the mock backend.

    Args:
        app: The FastAPI application instance.

    Yields:
        Control to the application while it runs.
    """
    logger.info("Starting mock knowledge backend...")
    yield
    logger.info("Shutting down mock knowledge backend...")


def create_app(processing_checks: int = 1, chunk_delay: float = 0.0) -> FastAPI:
    """Create and configure the mock backend application.

    Args:
        processing_checks: Status checks a processing document needs
            before it is reported ready.
        chunk_delay: Seconds to pause between streamed frames.

    Returns:
        Configured FastAPI application instance.
    """
    application = FastAPI(
        title="Knowledge Backend (mock)",
        description=(
            "Local stand-in for the knowledge retrieval service. Streams canned "
            "answers with citations and simulates document processing."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    application.state.backend = MockBackendState(
        processing_checks=processing_checks,
        chunk_delay=chunk_delay,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["*"],
    )

    application.include_router(knowledge_router)
    application.include_router(documents_router)

    @application.get("/health")
    async def health_check() -> dict[str, str]:
        """Check service health status."""
        return {"status": "healthy", "service": "knowledge-backend-mock"}

    return application
