"""Local files prepared for upload."""

import io
import mimetypes
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

ProgressCallback = Callable[[float], None]

DEFAULT_CONTENT_TYPE = "application/octet-stream"

# mimetypes has no entry for markdown on some platforms
mimetypes.add_type("text/markdown", ".md")


class LocalFile(BaseModel):
    """A file held in memory, ready to be uploaded.

    Attributes:
        name: File name sent to the backend.
        content: Raw file bytes.
        content_type: MIME type of the content.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    content: bytes
    content_type: str = DEFAULT_CONTENT_TYPE

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: str | Path) -> "LocalFile":
        """Read a file from disk, guessing its content type from the name."""
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            content=path.read_bytes(),
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )


class ProgressReader(io.BytesIO):
    """In-memory file reporting how much of it has been read.

    The multipart encoder reads the body in chunks as it is sent. Each read
    reports the share read so far as a percentage. Reported values never
    decrease, even when the encoder rewinds the file.
    """

    def __init__(self, content: bytes, on_progress: ProgressCallback | None = None) -> None:
        super().__init__(content)
        self._total = len(content)
        self._on_progress = on_progress
        self._reported = 0.0

    def read(self, size: int | None = -1) -> bytes:
        chunk = super().read(size)
        if chunk:
            self.report(self.tell() * 100 / self._total)
        return chunk

    def report(self, percent: float) -> None:
        percent = min(percent, 100.0)
        if percent <= self._reported:
            return
        self._reported = percent
        if self._on_progress is not None:
            self._on_progress(percent)
