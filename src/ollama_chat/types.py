"""Shared data types for ollama-chat."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any, Union


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

class Role(str, enum.Enum):
    """Author of a message in the conversation."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"


@dataclass(frozen=True)
class Message:
    """A single turn in the conversation."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class RequestSpec:
    """Body of one ``POST /api/chat`` call.  Built fresh for every send."""

    model: str
    messages: tuple[Message, ...]
    stream: bool = True

    def to_payload(self) -> dict[str, Any]:
        # Error turns are local transcript entries, never sent to the server
        return {
            "model": self.model,
            "messages": [
                m.to_dict() for m in self.messages if m.role is not Role.ERROR
            ],
            "stream": self.stream,
        }


class SessionState(enum.Enum):
    """Lifecycle of the chat session controller."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"


# ---------------------------------------------------------------------------
# Stream events
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ContentDelta:
    """Incremental fragment of the assistant's reply."""

    text: str


@dataclass(frozen=True)
class Done:
    """Terminal frame of a successful stream.

    ``summary`` is the raw terminal object; Ollama puts token counts and
    timings there.
    """

    summary: dict[str, Any] = field(default_factory=dict)

    @property
    def done_reason(self) -> str:
        return str(self.summary.get("done_reason", "stop"))

    @property
    def usage(self) -> dict[str, int]:
        usage: dict[str, int] = {}
        if "prompt_eval_count" in self.summary:
            usage["prompt_tokens"] = self.summary["prompt_eval_count"]
        if "eval_count" in self.summary:
            usage["completion_tokens"] = self.summary["eval_count"]
        if usage:
            usage["total_tokens"] = usage.get("prompt_tokens", 0) + usage.get(
                "completion_tokens", 0,
            )
        return usage


@dataclass(frozen=True)
class ServerFailure:
    """The server reported an ``error`` field in the stream."""

    message: str


@dataclass(frozen=True)
class TransportFailure:
    """Connection, HTTP status or framing failure of the stream itself."""

    message: str


StreamEvent = Union[ContentDelta, Done, ServerFailure, TransportFailure]

TERMINAL_EVENTS = (Done, ServerFailure, TransportFailure)


def is_terminal(event: StreamEvent) -> bool:
    return isinstance(event, TERMINAL_EVENTS)


# ---------------------------------------------------------------------------
# Bus events
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Lifecycle events published by the chat session."""

    STATE_CHANGED = "session.state"
    REQUEST_SENT = "request.sent"
    RESPONSE_DONE = "response.done"
    RESPONSE_ERROR = "response.error"
    REQUEST_CANCELLED = "request.cancelled"
    MODEL_CHANGED = "model.changed"
    SESSION_SAVED = "session.saved"


@dataclass
class ChatEvent:
    """Event emitted by the chat session via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
