"""Cached directory of the models installed on the server."""

from __future__ import annotations

import logging

from ollama_chat.errors import ChatError

from .client import OllamaClient

_logger = logging.getLogger(__name__)


class ModelDirectory:
    """Lazily fetched, explicitly invalidated list of model names.

    Failed lookups are not cached, so the next call retries the server.
    """

    def __init__(self, client: OllamaClient) -> None:
        self._client = client
        self._models: list[str] | None = None

    @property
    def cached(self) -> bool:
        return self._models is not None

    async def list_models(self) -> tuple[list[str], str | None]:
        """Return ``(models, error_message)``; never raises for server problems."""
        if self._models is not None:
            return list(self._models), None
        try:
            models = await self._client.list_models()
        except ChatError as e:
            msg = f"Could not list models: {e}"
            _logger.error(msg)
            return [], msg
        self._models = sorted(models)
        _logger.info("Found %d model(s) on %s", len(models), self._client.base_url)
        return list(self._models), None

    async def has_model(self, name: str) -> bool:
        models, _ = await self.list_models()
        if name in models:
            return True
        # "llama3" is shorthand for "llama3:latest"
        return ":" not in name and f"{name}:latest" in models

    def invalidate(self) -> None:
        self._models = None
