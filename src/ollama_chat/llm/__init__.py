"""Ollama transport, stream decoding and model listing."""

from ollama_chat.llm.client import OllamaClient, StreamHandle
from ollama_chat.llm.models import ModelDirectory
from ollama_chat.llm.stream import StreamProcessor, decode_frame

__all__ = [
    "ModelDirectory",
    "OllamaClient",
    "StreamHandle",
    "StreamProcessor",
    "decode_frame",
]
