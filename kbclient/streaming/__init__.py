"""Streaming answer handling.

Turns a chunked Server-Sent Events body into session updates.

Responsibilities:
    - Re-assembling frames split across network chunks
    - Skipping malformed frames without aborting the stream
    - Mapping tagged frames to typed events
    - Applying events to per-conversation state, rejecting stale queries

Pure and transport-agnostic: the query orchestrator owns the HTTP side.
"""

from kbclient.streaming.dispatcher import dispatch, parse_full_answer, parse_stream_event
from kbclient.streaming.frame_decoder import FrameDecoder, decode_frames, parse_frame
from kbclient.streaming.state import StateTransitionError

__all__ = [
    "FrameDecoder",
    "StateTransitionError",
    "decode_frames",
    "dispatch",
    "parse_frame",
    "parse_full_answer",
    "parse_stream_event",
]
