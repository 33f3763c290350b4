"""Streaming terminal chat for Ollama servers."""

__version__ = "0.1.0"
