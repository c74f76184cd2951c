"""Server-Sent Events frame decoding.

Turns raw byte chunks from a streaming HTTP body into decoded JSON frames.
A frame is terminated by a blank line; one frame may span several network
chunks and one chunk may carry several frames plus a trailing partial one.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator

from kbclient.errors import ProtocolError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
FRAME_DELIMITER = "\n\n"

# Longest frame excerpt included in log messages
_LOG_EXCERPT = 200


def parse_frame(segment: str) -> dict | None:
    """Parse one complete frame.

    Args:
        segment: Frame text without its terminating blank line.

    Returns:
        The decoded JSON object, or None when the segment is not a data frame.

    Raises:
        ProtocolError: If the payload is not a JSON object.
    """
    segment = segment.lstrip("\n")
    if not segment.startswith(DATA_PREFIX):
        return None

    payload = segment[len(DATA_PREFIX):].strip()
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Malformed frame payload: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError(f"Frame payload is {type(data).__name__}, expected object")
    return data


class FrameDecoder:
    """Incremental decoder holding the carry-over buffer of one response.

    Use one instance per streaming response. Bytes are decoded with an
    incremental decoder so multi-byte characters split across chunks
    survive intact.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._text_decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._buffer = ""
        self.dropped = 0

    def feed(self, chunk: bytes) -> list[dict]:
        """Append a chunk and return every frame it completes.

        Malformed frames are logged and dropped; decoding continues with
        the next frame.

        Args:
            chunk: Raw bytes from the response body.

        Returns:
            Decoded frames in arrival order.
        """
        text = self._text_decoder.decode(chunk)
        self._buffer = (self._buffer + text).replace("\r\n", "\n")

        *complete, self._buffer = self._buffer.split(FRAME_DELIMITER)

        frames: list[dict] = []
        for segment in complete:
            try:
                frame = parse_frame(segment)
            except ProtocolError as e:
                self.dropped += 1
                logger.warning(f"Skipping frame: {e} ({segment[:_LOG_EXCERPT]!r})")
                continue
            if frame is not None:
                frames.append(frame)
        return frames

    def close(self) -> None:
        """Discard any unterminated trailing fragment."""
        leftover = self._buffer + self._text_decoder.decode(b"", final=True)
        if leftover.strip():
            logger.debug(f"Discarding unterminated fragment: {leftover[:_LOG_EXCERPT]!r}")
        self._buffer = ""


async def decode_frames(chunks: AsyncIterable[bytes]) -> AsyncIterator[dict]:
    """Lazily decode frames from an async byte stream.

    The output order matches the byte order of the stream and does not
    depend on how the bytes were chunked.

    Args:
        chunks: Async iterable of raw body chunks, e.g. response.aiter_bytes().

    Yields:
        Decoded JSON objects, one per complete data frame.
    """
    decoder = FrameDecoder()
    try:
        async for chunk in chunks:
            for frame in decoder.feed(chunk):
                yield frame
    finally:
        decoder.close()
