"""Command-line entry point.

Subcommands:
    ask: Ask a question in the current session and print the answer
    upload: Upload documents and wait until they are processed
    export: Print the current session's conversation
    serve: Run the mock knowledge backend

Sessions and documents are kept as JSON files in KB_STATE_DIR
(default .kbclient) so consecutive runs share a conversation.
Environment variables are loaded from .env file by kbclient.config.
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import httpx

from kbclient.config import ClientConfig, QueryOptions, get_client_config
from kbclient.errors import KnowledgeClientError
from kbclient.ingestion import BatchIngestor, DocumentTracker, LocalFile
from kbclient.models.schemas import BatchProgress, Document, DocumentStatus, Session
from kbclient.query import QueryOrchestrator, SessionManager, export_json, export_text, format_citation
from kbclient.storage import JsonDocumentStore, JsonSessionStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stderr)],
)
logger = logging.getLogger(__name__)


def _state_dir() -> Path:
    return Path(os.getenv("KB_STATE_DIR", ".kbclient"))


class _AnswerPrinter:
    """Writes the growing answer of a session to stdout as it streams."""

    def __init__(self) -> None:
        self._printed = 0

    def __call__(self, session: Session) -> None:
        if len(session.response) < self._printed:
            self._printed = 0
        sys.stdout.write(session.response[self._printed:])
        sys.stdout.flush()
        self._printed = len(session.response)


async def _handle_ask(args: argparse.Namespace, config: ClientConfig) -> int:
    sessions = JsonSessionStore(_state_dir() / "sessions.json")
    documents = JsonDocumentStore(_state_dir() / "documents.json")
    overrides: dict[str, object] = {}
    if args.kb:
        overrides["kb_list"] = args.kb
    if args.no_stream:
        overrides["stream"] = False
    if args.no_history:
        overrides["use_history"] = False
    options = QueryOptions.from_config(config, **overrides)

    async with httpx.AsyncClient() as client:
        orchestrator = QueryOrchestrator(
            client, sessions, config=config, documents=documents, on_update=_AnswerPrinter()
        )
        manager = SessionManager(sessions, orchestrator)
        session = manager.create(args.new_session) if args.new_session else manager.ensure_default()
        try:
            session = await orchestrator.submit_query(session.id, args.question, options)
        except KnowledgeClientError as e:
            print(f"\nError: {e}", file=sys.stderr)
            return 1

    print()
    for i, seed in enumerate(session.seeds):
        print(f"{format_citation(seed, i)} ({seed.relevance}%)")
    return 0


async def _handle_upload(args: argparse.Namespace, config: ClientConfig) -> int:
    documents = JsonDocumentStore(_state_dir() / "documents.json")
    try:
        files = [LocalFile.from_path(path) for path in args.files]
    except OSError as e:
        print(f"Error: cannot read {e.filename}: {e.strerror}", file=sys.stderr)
        return 1

    def on_progress(progress: BatchProgress) -> None:
        print(f"Uploaded {progress.processed}/{progress.total} ({progress.percent}%)", file=sys.stderr)

    async with httpx.AsyncClient() as client:
        tracker = DocumentTracker(client, documents, config=config)
        results = await BatchIngestor(tracker).run(files, on_progress=on_progress, track=not args.no_wait)
        if not args.no_wait:
            results = [await tracker.wait(doc.id) for doc in results]
        await tracker.aclose()

    for document in results:
        if args.select and document.status == DocumentStatus.READY:
            documents.select(document.id, True)
        print(_describe(document))
    return 0 if all(doc.status != DocumentStatus.ERROR for doc in results) else 1


def _describe(document: Document) -> str:
    line = f"{document.name}: {document.status.value} ({document.id})"
    if document.error:
        line += f" - {document.error}"
    return line


def _handle_export(args: argparse.Namespace) -> int:
    sessions = JsonSessionStore(_state_dir() / "sessions.json")
    session = SessionManager(sessions).current()
    print(export_json(session) if args.format == "json" else export_text(session))
    return 0


def _handle_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from kbclient.api import create_app

    app = create_app(processing_checks=args.processing_checks, chunk_delay=args.chunk_delay)
    logger.info(f"Starting mock backend on http://{args.host}:{args.port}")
    logger.info(f"API docs available at http://{args.host}:{args.port}/docs")
    uvicorn.run(
        app,
        host=args.host,
        port=args.port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )
    return 0


def _build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the knowledge client CLI."""
    parser = argparse.ArgumentParser(
        prog="kbclient",
        description="Ask questions against knowledge bases and manage their documents.",
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    ask_parser = subparsers.add_parser("ask", help="Ask a question in the current session")
    ask_parser.add_argument("question", help="Question to ask")
    ask_parser.add_argument("--kb", action="append", help="Knowledge base id (repeatable, overrides KB_LIST)")
    ask_parser.add_argument("--no-stream", action="store_true", help="Wait for the complete answer")
    ask_parser.add_argument("--no-history", action="store_true", help="Send only the new question")
    ask_parser.add_argument("--new-session", metavar="NAME", help="Start a new session with this name")

    upload_parser = subparsers.add_parser("upload", help="Upload documents")
    upload_parser.add_argument("files", nargs="+", help="Files to upload, in order")
    upload_parser.add_argument("--no-wait", action="store_true", help="Do not wait for processing")
    upload_parser.add_argument("--select", action="store_true", help="Restrict queries to ready documents")

    export_parser = subparsers.add_parser("export", help="Print the current conversation")
    export_parser.add_argument("--format", choices=["text", "json"], default="text")

    serve_parser = subparsers.add_parser("serve", help="Run the mock knowledge backend")
    serve_parser.add_argument("--host", default=os.getenv("HOST", "127.0.0.1"))
    serve_parser.add_argument("--port", type=int, default=int(os.getenv("PORT", "8000")))
    serve_parser.add_argument("--processing-checks", type=int, default=1)
    serve_parser.add_argument("--chunk-delay", type=float, default=0.05)

    return parser


def main() -> None:
    """Application entry point."""
    parser = _build_parser()
    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        sys.exit(_handle_serve(args))
    if args.command == "export":
        sys.exit(_handle_export(args))

    config = get_client_config()
    if args.command == "ask":
        exit_code = asyncio.run(_handle_ask(args, config))
    else:
        exit_code = asyncio.run(_handle_upload(args, config))
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
