"""Session and document repositories.

The core reads and writes collections only through these interfaces, so
callers choose how they are backed. In-memory stores serve tests and
short-lived runs; JSON stores keep state between CLI invocations.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field, TypeAdapter

from kbclient.models.schemas import Document, Session

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionStore(Protocol):
    def list_sessions(self) -> list[Session]: ...
    def get(self, session_id: str) -> Session | None: ...
    def save(self, session: Session) -> None: ...
    def delete(self, session_id: str) -> None: ...
    def get_current_id(self) -> str | None: ...
    def set_current_id(self, session_id: str | None) -> None: ...


@runtime_checkable
class DocumentStore(Protocol):
    def list_documents(self) -> list[Document]: ...
    def get(self, document_id: str) -> Document | None: ...
    def upsert(self, document: Document) -> None: ...
    def replace(self, old_id: str, document: Document) -> None: ...
    def delete(self, document_id: str) -> None: ...
    def selected_ids(self) -> list[str]: ...
    def select(self, document_id: str, selected: bool) -> None: ...


class InMemorySessionStore:
    """Sessions kept in insertion order in a dict."""

    def __init__(self, sessions: list[Session] | None = None) -> None:
        self._sessions: dict[str, Session] = {s.id: s for s in sessions or []}
        self._current_id: str | None = None

    def list_sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def save(self, session: Session) -> None:
        self._sessions[session.id] = session

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        if self._current_id == session_id:
            self._current_id = None

    def get_current_id(self) -> str | None:
        return self._current_id

    def set_current_id(self, session_id: str | None) -> None:
        self._current_id = session_id


class InMemoryDocumentStore:
    """Documents kept as an ordered list, plus the ids the user selected."""

    def __init__(self, documents: list[Document] | None = None) -> None:
        self._documents: list[Document] = list(documents or [])
        self._selected: list[str] = []

    def _index(self, document_id: str) -> int | None:
        for i, doc in enumerate(self._documents):
            if doc.id == document_id:
                return i
        return None

    def list_documents(self) -> list[Document]:
        return list(self._documents)

    def get(self, document_id: str) -> Document | None:
        index = self._index(document_id)
        return None if index is None else self._documents[index]

    def upsert(self, document: Document) -> None:
        """Replace the document with the same id in place, or append it."""
        index = self._index(document.id)
        if index is None:
            self._documents.append(document)
        else:
            self._documents[index] = document

    def replace(self, old_id: str, document: Document) -> None:
        """Put document in the slot held by old_id, or append if there is none."""
        index = self._index(old_id)
        if index is None:
            self.upsert(document)
            return
        self._documents[index] = document
        if old_id in self._selected:
            self._selected = [document.id if i == old_id else i for i in self._selected]

    def delete(self, document_id: str) -> None:
        self._documents = [d for d in self._documents if d.id != document_id]
        self._selected = [i for i in self._selected if i != document_id]

    def selected_ids(self) -> list[str]:
        return list(self._selected)

    def select(self, document_id: str, selected: bool) -> None:
        if selected and document_id not in self._selected:
            self._selected.append(document_id)
        elif not selected:
            self._selected = [i for i in self._selected if i != document_id]


class _SessionFile(BaseModel):
    current_id: str | None = None
    sessions: list[Session] = Field(default_factory=list)


class _DocumentFile(BaseModel):
    selected: list[str] = Field(default_factory=list)
    documents: list[Document] = Field(default_factory=list)


def _write_atomic(path: Path, payload: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def _read_model(path: Path, adapter: TypeAdapter, default: BaseModel) -> BaseModel:
    if not path.exists():
        return default
    return adapter.validate_json(path.read_bytes())


class JsonSessionStore(InMemorySessionStore):
    """Session store persisted to a single JSON file after every write."""

    _adapter = TypeAdapter(_SessionFile)

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        data = _read_model(self._path, self._adapter, _SessionFile())
        super().__init__(data.sessions)
        self._current_id = data.current_id
        logger.debug(f"Loaded {len(data.sessions)} sessions from {self._path}")

    def _flush(self) -> None:
        data = _SessionFile(current_id=self._current_id, sessions=self.list_sessions())
        _write_atomic(self._path, self._adapter.dump_json(data, indent=2))

    def save(self, session: Session) -> None:
        super().save(session)
        self._flush()

    def delete(self, session_id: str) -> None:
        super().delete(session_id)
        self._flush()

    def set_current_id(self, session_id: str | None) -> None:
        super().set_current_id(session_id)
        self._flush()


class JsonDocumentStore(InMemoryDocumentStore):
    """Document store persisted to a single JSON file after every write."""

    _adapter = TypeAdapter(_DocumentFile)

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        data = _read_model(self._path, self._adapter, _DocumentFile())
        super().__init__(data.documents)
        self._selected = list(data.selected)
        logger.debug(f"Loaded {len(data.documents)} documents from {self._path}")

    def _flush(self) -> None:
        data = _DocumentFile(selected=self.selected_ids(), documents=self.list_documents())
        _write_atomic(self._path, self._adapter.dump_json(data, indent=2))

    def upsert(self, document: Document) -> None:
        super().upsert(document)
        self._flush()

    def replace(self, old_id: str, document: Document) -> None:
        super().replace(old_id, document)
        self._flush()

    def delete(self, document_id: str) -> None:
        super().delete(document_id)
        self._flush()

    def select(self, document_id: str, selected: bool) -> None:
        super().select(document_id, selected)
        self._flush()
