"""Incremental NDJSON decoding of ``/api/chat`` streams.

Ollama writes exactly one JSON object per newline-terminated line, but
transport chunk boundaries are arbitrary: a chunk may end in the middle
of a line (or of a multi-byte character) or carry several lines at once.
``StreamProcessor`` buffers the unterminated tail between chunks and
turns every complete line into at most one ``StreamEvent``.
"""

from __future__ import annotations

import codecs
import json
import logging

from ollama_chat.errors import ProtocolError
from ollama_chat.types import (
    ContentDelta,
    Done,
    ServerFailure,
    StreamEvent,
    TransportFailure,
    is_terminal,
)

_logger = logging.getLogger(__name__)

# Cap on how much of a bad frame ends up in logs / error text
_FRAME_PREVIEW = 120


def _preview(frame: str) -> str:
    if len(frame) <= _FRAME_PREVIEW:
        return frame
    return frame[:_FRAME_PREVIEW] + "..."


# ---------------------------------------------------------------------------
# Frame classification
# ---------------------------------------------------------------------------

def decode_frame(line: str) -> StreamEvent | None:
    """Classify one complete frame.

    Returns ``None`` for frames that carry nothing for the consumer
    (e.g. an empty-content message while the model is loading).

    Raises
    ------
    ProtocolError
        The frame is not a JSON object, or has none of ``error``,
        ``done: true`` or a string ``message.content``.
    """
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"malformed frame: {e.msg}", frame=line) from e
    if not isinstance(obj, dict):
        raise ProtocolError(
            f"unexpected frame type {type(obj).__name__}", frame=line,
        )

    if "error" in obj:
        error = obj["error"]
        if isinstance(error, dict):
            error = error.get("message") or json.dumps(error)
        return ServerFailure(str(error) or "unknown server error")

    if obj.get("done") is True:
        return Done(summary=obj)

    message = obj.get("message")
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise ProtocolError("frame has no message content", frame=line)
    if content:
        return ContentDelta(content)
    return None


# ---------------------------------------------------------------------------
# Stream processor
# ---------------------------------------------------------------------------

class StreamProcessor:
    """Chunk-boundary-agnostic line splitter and frame classifier.

    Feed raw chunks with :meth:`feed` in arrival order, then call
    :meth:`finish` once the transport reports end-of-data.  After the
    first terminal event (``Done`` or ``ServerFailure``) everything else
    from the stream is ignored.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._finished = False
        self._last_frame_malformed = False
        self.malformed_frames = 0

    @property
    def finished(self) -> bool:
        """True once a terminal event has been produced."""
        return self._finished

    @property
    def carry_buffer(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[StreamEvent]:
        """Consume one transport chunk, return the events it completed."""
        if self._finished:
            return []
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        self._buffer += chunk

        *frames, self._buffer = self._buffer.split("\n")

        events: list[StreamEvent] = []
        for frame in frames:
            event = self._process_frame(frame)
            if event is None:
                continue
            events.append(event)
            if is_terminal(event):
                self._finished = True
                self._buffer = ""
                break
        return events

    def finish(self) -> list[StreamEvent]:
        """Signal end-of-data.  Returns a failure if the stream was cut short."""
        if self._finished:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        self._finished = True

        leftover = self._buffer.strip()
        self._buffer = ""
        if leftover:
            _logger.error(
                "Stream ended with unterminated data: %s", _preview(leftover),
            )
            return [TransportFailure(
                f"incomplete stream: {len(leftover)} characters of "
                "unterminated data at end of response"
            )]
        if self._last_frame_malformed:
            return [TransportFailure(
                "incomplete stream: final frame was malformed"
            )]
        _logger.error("Stream ended without a terminal frame")
        return [TransportFailure(
            "incomplete stream: server closed the response before it was done"
        )]

    def _process_frame(self, frame: str) -> StreamEvent | None:
        frame = frame.strip()
        if not frame:
            return None
        try:
            event = decode_frame(frame)
        except ProtocolError as e:
            self.malformed_frames += 1
            self._last_frame_malformed = True
            _logger.warning("Skipping %s: %s", e, _preview(frame))
            return None
        self._last_frame_malformed = False
        return event
