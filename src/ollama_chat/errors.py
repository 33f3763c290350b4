"""Exception taxonomy for ollama-chat.

    ChatError
    ├── TransportError   connection / DNS / timeout / non-2xx status
    ├── ProtocolError    malformed or unexpected frame, truncated stream
    ├── ServerError      the server reported an ``error`` field
    └── UsageError       caller misuse (model switch while a reply is in flight)
"""

from __future__ import annotations


class ChatError(Exception):
    """Base class for all ollama-chat errors."""


class TransportError(ChatError):
    """The request could not be carried out at the HTTP level."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolError(ChatError):
    """A frame from the server could not be understood."""

    def __init__(self, message: str, frame: str = "") -> None:
        super().__init__(message)
        self.frame = frame


class ServerError(ChatError):
    """The server answered, but with an error."""


class UsageError(ChatError):
    """The session was used in a way its current state does not allow."""
