"""Session lifecycle events."""

from ollama_chat.events.bus import EventBus

__all__ = ["EventBus"]
