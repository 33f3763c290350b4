"""Chat session controller.

    idle --send--> sending --stream opened--> streaming --Done--> idle
                      |                           |
                      +------ failure ------------+--> idle (error surfaced)

The session owns the conversation history and is the only thing that
mutates it.  All mutation happens on the event loop that calls
:meth:`ChatSession.send`; the transport task hands events over through
its ``StreamHandle`` queue.  Every request gets a generation number, and
events from a request that is no longer current are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, Sequence

from ollama_chat.config import AppConfig
from ollama_chat.core.context import window_messages
from ollama_chat.errors import UsageError
from ollama_chat.events.bus import EventBus
from ollama_chat.llm.client import OllamaClient, StreamHandle
from ollama_chat.types import (
    ContentDelta,
    Done,
    EventType,
    Message,
    RequestSpec,
    Role,
    ServerFailure,
    SessionState,
    StreamEvent,
    TransportFailure,
    is_terminal,
)
from ollama_chat.ui.renderer import Renderer

_logger = logging.getLogger(__name__)


class SessionSaver(Protocol):
    def save_session(self, messages: Sequence[Message], model: str = "") -> str | None: ...


class ChatSession:
    """One conversation with an Ollama model.

    Parameters
    ----------
    client:
        Transport used for probing and streaming.
    renderer:
        UI collaborator that receives transcript updates.
    model:
        Model name for requests.
    event_bus:
        Receives lifecycle events (optional).
    store:
        Persists the history when the session ends (optional).
    context_window_limit:
        Send only the oldest system message plus the last N messages
        (0 = send everything).
    probe_before_send:
        Check server liveness before each request.
    system_prompt:
        Seeds the history with a system message when non-empty.
    """

    def __init__(
        self,
        client: OllamaClient,
        renderer: Renderer,
        model: str,
        event_bus: EventBus | None = None,
        store: SessionSaver | None = None,
        context_window_limit: int = 0,
        probe_before_send: bool = True,
        system_prompt: str = "",
    ) -> None:
        self._client = client
        self._renderer = renderer
        self._model = model
        self._event_bus = event_bus or EventBus()
        self._store = store
        self._context_window_limit = context_window_limit
        self._probe_before_send = probe_before_send
        self._system_prompt = system_prompt

        self._messages: list[Message] = []
        self._state = SessionState.IDLE
        self._generation = 0
        self._handle: StreamHandle | None = None
        self._probe: asyncio.Task[tuple[bool, str | None]] | None = None
        self._pending: list[str] = []
        self._seed()

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        client: OllamaClient,
        renderer: Renderer,
        event_bus: EventBus | None = None,
        store: SessionSaver | None = None,
    ) -> ChatSession:
        return cls(
            client,
            renderer,
            model=config.ollama.model,
            event_bus=event_bus,
            store=store,
            context_window_limit=config.chat.context_window_limit,
            probe_before_send=config.chat.probe_before_send,
            system_prompt=config.chat.system_prompt,
        )

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def thinking(self) -> bool:
        return self._state is not SessionState.IDLE

    @property
    def model(self) -> str:
        return self._model

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def pending_text(self) -> str:
        """Reply received so far for the request in flight."""
        return "".join(self._pending)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def ensure_idle(self) -> None:
        if self.thinking:
            raise UsageError("a reply is still being generated")

    def build_request(self) -> RequestSpec:
        """Request body for the current history (context window applied)."""
        return RequestSpec(
            model=self._model,
            messages=tuple(window_messages(self._messages, self._context_window_limit)),
        )

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, prompt: str) -> bool:
        """Send *prompt* and stream the reply; returns once the turn is over.

        Returns ``False`` without touching the session when the prompt is
        blank or a reply is already in progress.
        """
        generation = self._accept(prompt)
        if generation is None:
            return False
        await self._run_turn(generation, prompt)
        return True

    def submit(self, prompt: str) -> asyncio.Task[None] | None:
        """Like :meth:`send` but runs the turn as a task and returns it."""
        generation = self._accept(prompt)
        if generation is None:
            return None
        return asyncio.get_running_loop().create_task(
            self._run_turn(generation, prompt), name=f"chat-turn-{generation}",
        )

    def _accept(self, prompt: str) -> int | None:
        if not prompt or not prompt.strip():
            _logger.debug("Ignoring blank prompt")
            return None
        if self.thinking:
            _logger.info("Rejected prompt: already thinking (state=%s)", self._state.value)
            self._notify("Already thinking... wait for the reply or cancel it.")
            return None

        self._generation += 1
        self._messages.append(Message(Role.USER, prompt))
        self._state = SessionState.SENDING
        return self._generation

    async def _run_turn(self, generation: int, prompt: str) -> None:
        handle: StreamHandle | None = None
        try:
            self._renderer.on_user_message(prompt)
            await self._emit_state()
            if not self._is_current(generation):
                await self._emit_cancelled(generation)
                return

            if self._probe_before_send:
                result = await self._check_server(generation)
                if result is None:
                    await self._emit_cancelled(generation)
                    return
                available, error = result
                if not available:
                    await self._fail(generation, error or "Server not reachable")
                    return

            spec = self.build_request()
            handle = self._client.open_stream(spec)
            self._handle = handle
            self._pending = []
            self._state = SessionState.STREAMING
            await self._emit_state()
            await self._emit(EventType.REQUEST_SENT, {
                "model": spec.model,
                "messages": len(spec.messages),
                "generation": generation,
            })

            finished = False
            async for event in handle.events():
                if not self._is_current(generation):
                    break
                await self._dispatch(generation, event)
                if is_terminal(event):
                    finished = True
                    break

            if finished:
                # Observers may already have started the next turn
                return
            if not self._is_current(generation):
                await self._emit_cancelled(generation)
            elif self.thinking:
                await self._fail(generation, "Stream closed without a reply")

        except asyncio.CancelledError:
            if self._is_current(generation):
                if handle is not None:
                    handle.cancel()
                self._release()
            raise
        except Exception as e:
            _logger.exception("Chat turn %d failed", generation)
            if self._is_current(generation):
                await self._fail(generation, f"{type(e).__name__}: {e}")

    async def _check_server(self, generation: int) -> tuple[bool, str | None] | None:
        """Run the liveness probe as a task :meth:`cancel` can interrupt.

        Returns ``None`` when the turn was cancelled while probing.
        """
        probe = asyncio.get_running_loop().create_task(self._client.probe())
        self._probe = probe
        try:
            result = await probe
        except asyncio.CancelledError:
            if self._is_current(generation):
                raise
            return None
        finally:
            if self._probe is probe:
                self._probe = None
        if not self._is_current(generation):
            return None
        return result

    async def _dispatch(self, generation: int, event: StreamEvent) -> None:
        if isinstance(event, ContentDelta):
            self._pending.append(event.text)
            self._renderer.on_assistant_delta(event.text)

        elif isinstance(event, Done):
            content = "".join(self._pending)
            if content:
                self._messages.append(Message(Role.ASSISTANT, content))
            self._release()
            _logger.info(
                "Reply complete: %d chars, reason=%s", len(content), event.done_reason,
            )
            self._renderer.on_assistant_final(content)
            await self._emit_state()
            await self._emit(EventType.RESPONSE_DONE, {
                "generation": generation,
                "length": len(content),
                "usage": event.usage,
                "done_reason": event.done_reason,
            })

        elif isinstance(event, ServerFailure):
            await self._fail(generation, f"Server error: {event.message}")

        elif isinstance(event, TransportFailure):
            await self._fail(generation, f"Request failed: {event.message}")

    async def _fail(self, generation: int, message: str) -> None:
        """Release the session, then tell the UI.  Partial replies are dropped."""
        partial = len(self.pending_text)
        self._release()
        _logger.error(
            "Chat turn %d failed: %s (discarded %d chars)", generation, message, partial,
        )
        try:
            self._renderer.on_error(message)
        except Exception:
            _logger.exception("Renderer failed while reporting an error")
        await self._emit_state()
        await self._emit(EventType.RESPONSE_ERROR, {
            "generation": generation,
            "error": message,
        })

    def _release(self) -> None:
        if self._probe is not None and not self._probe.done():
            self._probe.cancel()
        if self._handle is not None and not self._handle.done:
            self._handle.cancel()
        self._handle = None
        self._pending = []
        self._state = SessionState.IDLE

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation

    # ------------------------------------------------------------------
    # Cancellation and lifecycle
    # ------------------------------------------------------------------

    def cancel(self) -> bool:
        """Abort the request in flight, if any.  Never blocks.

        Returns ``True`` if something was cancelled.
        """
        if not self.thinking:
            return False
        _logger.info("Cancelling request %d", self._generation)
        # Invalidate the running turn before anything else
        self._generation += 1
        self._release()
        self._notify("Request cancelled.")
        return True

    async def set_model(self, model: str) -> None:
        """Use *model* for subsequent requests."""
        self.ensure_idle()
        if model == self._model:
            return
        old, self._model = self._model, model
        _logger.info("Model changed: %s -> %s", old, model)
        self._notify(f"Model: {model}")
        await self._emit(EventType.MODEL_CHANGED, {"old": old, "new": model})

    async def reset(self) -> None:
        """End this conversation (persisting it) and start a fresh one."""
        self.cancel()
        await self._persist()
        self._messages.clear()
        self._seed()
        self._notify("New chat session.")

    async def close(self) -> None:
        """Cancel anything in flight and persist the history."""
        self.cancel()
        await self._persist()

    async def _persist(self) -> None:
        if self._store is None or len(self._messages) <= 1:
            return
        try:
            session_id = self._store.save_session(self._messages, model=self._model)
        except Exception:
            _logger.exception("Failed to save chat session")
            self._notify("Failed to save chat history.")
            return
        if session_id:
            await self._emit(EventType.SESSION_SAVED, {
                "session_id": session_id,
                "messages": len(self._messages),
            })

    def _seed(self) -> None:
        if self._system_prompt:
            self._messages.append(Message(Role.SYSTEM, self._system_prompt))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _notify(self, text: str) -> None:
        try:
            self._renderer.on_system_notice(text)
        except Exception:
            _logger.exception("Renderer failed to show notice")

    async def _emit_state(self) -> None:
        await self._emit(EventType.STATE_CHANGED, {"state": self._state.value})

    async def _emit_cancelled(self, generation: int) -> None:
        await self._emit(EventType.REQUEST_CANCELLED, {"generation": generation})

    async def _emit(self, event_type: EventType, data: dict[str, Any]) -> None:
        await self._event_bus.publish(event_type, data)
