"""Configuration management for ollama-chat."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 11434
    timeout: float = 120  # seconds, applied to connect/read of every request


class OllamaConfig(BaseModel):
    server: ServerConfig = Field(default_factory=ServerConfig)
    model: str = "qwen3:8b"


class ChatConfig(BaseModel):
    context_window_limit: int = 0  # most recent N turns sent (0 = all)
    probe_before_send: bool = True
    system_prompt: str = ""


class HistoryConfig(BaseModel):
    enabled: bool = True
    db_path: str = "~/.ollama_chat/history.db"


class LogConfig(BaseModel):
    enabled: bool = True
    level: str = "INFO"
    path: str = "~/.ollama_chat/ollama_chat.log"

    @field_validator("level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()


class AppConfig(BaseModel):
    ollama: OllamaConfig = Field(default_factory=OllamaConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    @property
    def base_url(self) -> str:
        server = self.ollama.server
        return f"http://{server.host}:{server.port}"


CONFIG_FILENAME = "ollama_chat.yaml"


def load_config(
    config_path: str | Path | None = None,
) -> tuple[AppConfig, Path | None]:
    """Load configuration from YAML file.

    Returns (config, resolved_path).  *resolved_path* is ``None`` when
    no file was found and built-in defaults are used.

    Search order (first match wins):
      1. Explicit ``--config`` path
      2. Current working directory: ``./ollama_chat.yaml``
      3. User config dir: ``~/.ollama_chat/ollama_chat.yaml``
    """
    if config_path is None:
        for d in (Path.cwd(), Path.home() / ".ollama_chat"):
            p = d / CONFIG_FILENAME
            if p.exists():
                config_path = p
                break

    resolved: Path | None = Path(config_path).expanduser() if config_path else None
    if resolved and resolved.exists():
        with open(resolved) as f:
            raw: dict[str, Any] = yaml.safe_load(f) or {}
        return AppConfig.model_validate(raw), resolved.resolve()

    if config_path is not None:
        raise FileNotFoundError(f"Config file not found: {config_path}")

    return AppConfig(), None
