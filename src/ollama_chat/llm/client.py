"""Async client for the Ollama HTTP API.

Uses ``httpx.AsyncClient``.  A streaming chat request runs as its own
``asyncio.Task``; the events it produces reach the caller through the
returned :class:`StreamHandle`, in the order the server wrote them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator

import httpx

from ollama_chat.config import AppConfig
from ollama_chat.errors import ProtocolError, ServerError, TransportError
from ollama_chat.types import RequestSpec, StreamEvent, TransportFailure, is_terminal

from .stream import StreamProcessor

_logger = logging.getLogger(__name__)

# Connect timeout never exceeds this, whatever the request timeout is
_MAX_CONNECT_TIMEOUT = 30


def _describe_http_error(exc: httpx.HTTPError) -> str:
    detail = str(exc) or "no details"
    if isinstance(exc, httpx.TimeoutException):
        return f"request timed out ({type(exc).__name__}: {detail})"
    return f"{type(exc).__name__}: {detail}"


def _describe_status(status_code: int, body: bytes | str) -> str:
    """Human-readable text for a non-2xx response, using Ollama's ``error`` field."""
    if isinstance(body, bytes):
        body = body.decode(errors="replace")
    message = ""
    try:
        data = json.loads(body)
        if isinstance(data, dict):
            message = str(data.get("error", ""))
    except json.JSONDecodeError:
        message = body.strip()[:200]
    if message:
        return f"HTTP {status_code}: {message}"
    return f"HTTP {status_code}"


# ---------------------------------------------------------------------------
# Stream handle
# ---------------------------------------------------------------------------

class StreamHandle:
    """One in-flight ``/api/chat`` request.

    The transport task writes events into an internal queue; the owner
    drains them with :meth:`events` on its own loop.  :meth:`cancel`
    never blocks.
    """

    def __init__(self, spec: RequestSpec) -> None:
        self.spec = spec
        self._queue: asyncio.Queue[StreamEvent | None] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    def cancel(self) -> None:
        """Abort the request.  Events not yet consumed are discarded."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._close()

    async def events(self) -> AsyncIterator[StreamEvent]:
        """Yield events until a terminal one, cancellation, or end of stream."""
        while not self._cancelled:
            event = await self._queue.get()
            if event is None or self._cancelled:
                return
            yield event
            if is_terminal(event):
                return

    async def wait_closed(self) -> None:
        """Wait for the transport task to finish (cancelled or not)."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    # -- used by OllamaClient ------------------------------------------

    def _start(self, task: asyncio.Task[None]) -> None:
        self._task = task

    def _put(self, event: StreamEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    def _close(self) -> None:
        if not self._closed:
            self._closed = True
            self._queue.put_nowait(None)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class OllamaClient:
    """Async client for a local or remote Ollama server.

    Parameters
    ----------
    base_url:
        Server root, e.g. ``http://localhost:11434``.
    timeout:
        Request timeout in seconds (read timeout for streams).
    transport:
        Optional ``httpx`` transport; tests pass ``httpx.MockTransport``.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(
                timeout, connect=min(timeout, _MAX_CONNECT_TIMEOUT),
            ),
            transport=transport,
        )

    @classmethod
    def from_config(cls, config: AppConfig) -> OllamaClient:
        return cls(config.base_url, timeout=config.ollama.server.timeout)

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    async def probe(self) -> tuple[bool, str | None]:
        """Check that the server is reachable.

        Returns ``(available, error_message)``.
        """
        try:
            resp = await self._client.get("/")
        except httpx.HTTPError as e:
            msg = f"Server not reachable at {self.base_url}: {_describe_http_error(e)}"
            _logger.error(msg)
            return False, msg
        if not resp.is_success:
            msg = f"Server not reachable at {self.base_url}: HTTP {resp.status_code}"
            _logger.error(msg)
            return False, msg
        _logger.info("Ollama server available at %s", self.base_url)
        return True, None

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    async def list_models(self) -> list[str]:
        """Names of the models installed on the server (``GET /api/tags``)."""
        try:
            resp = await self._client.get("/api/tags")
        except httpx.HTTPError as e:
            raise TransportError(_describe_http_error(e)) from e
        if not resp.is_success:
            raise TransportError(
                _describe_status(resp.status_code, resp.content),
                status_code=resp.status_code,
            )
        try:
            data: Any = resp.json()
        except ValueError as e:
            raise ProtocolError("model list is not valid JSON", frame=resp.text) from e
        if isinstance(data, dict) and "error" in data:
            raise ServerError(str(data["error"]))
        if not isinstance(data, dict) or not isinstance(data.get("models"), list):
            raise ProtocolError("model list has no 'models' array", frame=resp.text)
        return [
            m["name"] for m in data["models"]
            if isinstance(m, dict) and isinstance(m.get("name"), str)
        ]

    # ------------------------------------------------------------------
    # Streaming chat
    # ------------------------------------------------------------------

    def open_stream(self, spec: RequestSpec) -> StreamHandle:
        """Start ``POST /api/chat`` in the background and return its handle.

        Must be called from a running event loop.
        """
        handle = StreamHandle(spec)
        task = asyncio.get_running_loop().create_task(
            self._run_stream(spec, handle), name=f"ollama-chat:{spec.model}",
        )
        handle._start(task)
        return handle

    async def _run_stream(self, spec: RequestSpec, handle: StreamHandle) -> None:
        payload = spec.to_payload()
        _logger.info(
            "stream_chat: model=%s messages=%d", spec.model, len(payload["messages"]),
        )
        _logger.debug("stream_chat: body=%s", json.dumps(payload))
        processor = StreamProcessor()
        try:
            async with self._client.stream("POST", "/api/chat", json=payload) as resp:
                if not resp.is_success:
                    body = await resp.aread()
                    msg = _describe_status(resp.status_code, body)
                    _logger.error("stream_chat failed: %s", msg)
                    handle._put(TransportFailure(msg))
                    return
                async for chunk in resp.aiter_bytes():
                    _logger.debug("Raw chunk received: %r", chunk)
                    for event in processor.feed(chunk):
                        handle._put(event)
                    if processor.finished:
                        break
            for event in processor.finish():
                handle._put(event)
        except httpx.HTTPError as e:
            msg = _describe_http_error(e)
            _logger.error("stream_chat failed: %s", msg)
            handle._put(TransportFailure(msg))
        finally:
            if processor.malformed_frames:
                _logger.warning(
                    "stream_chat: skipped %d malformed frame(s)",
                    processor.malformed_frames,
                )
            handle._close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> OllamaClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
