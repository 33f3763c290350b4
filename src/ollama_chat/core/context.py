"""Outgoing-message window for chat requests.

The stored history is never modified; only the list sent to the server
is bounded.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ollama_chat.types import Message, Role

_logger = logging.getLogger(__name__)


def window_messages(
    messages: Sequence[Message],
    limit: int | None = None,
) -> list[Message]:
    """Return the messages to send for a request.

    Keeps the oldest system message plus the most recent *limit* other
    messages.  Error entries are transcript-only and always dropped.
    ``limit`` of ``None`` or ``<= 0`` keeps everything.
    """
    conversational = [m for m in messages if m.role is not Role.ERROR]
    if not limit or limit <= 0 or len(conversational) <= limit:
        return conversational

    system_idx = next(
        (i for i, m in enumerate(conversational) if m.role is Role.SYSTEM), None,
    )
    if system_idx is None:
        window = conversational[-limit:]
    else:
        rest = conversational[:system_idx] + conversational[system_idx + 1:]
        window = [conversational[system_idx]] + rest[-limit:]

    _logger.debug(
        "Context window: sending %d of %d messages", len(window), len(conversational),
    )
    return window
