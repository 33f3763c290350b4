"""Chat session core."""

from ollama_chat.core.context import window_messages
from ollama_chat.core.session import ChatSession

__all__ = ["ChatSession", "window_messages"]
