"""Chat session persistence."""

from ollama_chat.memory.store import SessionStore, SessionSummary

__all__ = ["SessionStore", "SessionSummary"]
