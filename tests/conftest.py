"""Shared fixtures: a fake Ollama server behind ``httpx.MockTransport``."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import httpx
import pytest

from ollama_chat.llm.client import OllamaClient

HELLO_LINES = (
    b'{"message":{"role":"assistant","content":"Hel"},"done":false}\n'
    b'{"message":{"role":"assistant","content":"lo"},"done":false}\n'
    b'{"done":true,"done_reason":"stop","prompt_eval_count":12,"eval_count":2}\n'
)


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered as the given chunks, in order.

    With *error*, the connection breaks after the last chunk.
    """

    def __init__(self, chunks: list[bytes], error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


class GatedStream(httpx.AsyncByteStream):
    """Response body whose chunks are pushed by the test while it runs."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()

    def push(self, chunk: bytes) -> None:
        self._queue.put_nowait(chunk)

    def end(self) -> None:
        self._queue.put_nowait(None)

    async def __aiter__(self):
        while True:
            chunk = await self._queue.get()
            if chunk is None:
                return
            yield chunk


class FakeOllama:
    """Minimal stand-in for the Ollama HTTP API."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.chat_bodies: list[dict[str, Any]] = []
        self.root_status = 200
        self.root_delay = 0.0
        self.tags: Any = {"models": [{"name": "qwen3:8b"}, {"name": "llama3:latest"}]}
        self.tags_status = 200
        self.error: Exception | None = None
        self._chat_responses: list[httpx.Response] = []

    def reply(
        self,
        chunks: list[bytes] | bytes,
        status: int = 200,
        error: Exception | None = None,
    ) -> None:
        if isinstance(chunks, bytes):
            chunks = [chunks]
        self._chat_responses.append(
            httpx.Response(status, stream=ChunkStream(chunks, error)),
        )

    def reply_gated(self) -> GatedStream:
        gate = GatedStream()
        self._chat_responses.append(httpx.Response(200, stream=gate))
        return gate

    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        path = request.url.path
        if path == "/":
            if self.root_delay:
                await asyncio.sleep(self.root_delay)
            return httpx.Response(self.root_status, text="Ollama is running")
        if path == "/api/tags":
            return httpx.Response(self.tags_status, json=self.tags)
        if path == "/api/chat":
            self.chat_bodies.append(json.loads(request.content))
            return self._chat_responses.pop(0)
        return httpx.Response(404, json={"error": "not found"})


class RecordingRenderer:
    """Renderer that records every call as ``(kind, text)``."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def on_user_message(self, text: str) -> None:
        self.calls.append(("user", text))

    def on_assistant_delta(self, text: str) -> None:
        self.calls.append(("delta", text))

    def on_assistant_final(self, full_text: str) -> None:
        self.calls.append(("final", full_text))

    def on_error(self, text: str) -> None:
        self.calls.append(("error", text))

    def on_system_notice(self, text: str) -> None:
        self.calls.append(("notice", text))

    def of(self, kind: str) -> list[str]:
        return [text for k, text in self.calls if k == kind]


@pytest.fixture
def fake_server() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
async def client(fake_server: FakeOllama):
    c = OllamaClient(
        "http://ollama.test:11434",
        timeout=5,
        transport=httpx.MockTransport(fake_server.handler),
    )
    yield c
    await c.close()


@pytest.fixture
def renderer() -> RecordingRenderer:
    return RecordingRenderer()


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.001)

    return _wait
