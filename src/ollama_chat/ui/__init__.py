"""Terminal rendering of the chat transcript."""

from ollama_chat.ui.renderer import ConsoleRenderer, Renderer

__all__ = ["ConsoleRenderer", "Renderer"]
