"""SQLite-backed store of finished chat sessions."""

from __future__ import annotations

import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from ollama_chat.types import Message, Role

_logger = logging.getLogger(__name__)


@dataclass
class SessionSummary:
    """One row of :meth:`SessionStore.list_sessions`."""

    session_id: str
    model: str
    message_count: int
    created_at: float
    preview: str


class SessionStore:
    """Persists chat sessions so they can be listed and reloaded later."""

    def __init__(self, db_path: str = "~/.ollama_chat/history.db"):
        if db_path == ":memory:":
            self.db_path = None
            self._conn = sqlite3.connect(":memory:")
        else:
            self.db_path = Path(db_path).expanduser()
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self.db_path))
        self._init_schema()

    def _init_schema(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                model TEXT NOT NULL DEFAULT '',
                created_at REAL NOT NULL
            );
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL REFERENCES sessions(id),
                position INTEGER NOT NULL,
                role TEXT NOT NULL,
                content TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_msg_session ON messages(session_id);
        """)
        self._conn.commit()

    def save_session(self, messages: Sequence[Message], model: str = "") -> str | None:
        """Persist *messages* as a new session.

        Sessions with zero or one message are not worth keeping and are
        skipped (returns ``None``).
        """
        if len(messages) <= 1:
            return None
        session_id = uuid.uuid4().hex[:12]
        with self._conn:
            self._conn.execute(
                "INSERT INTO sessions (id, model, created_at) VALUES (?, ?, ?)",
                (session_id, model, time.time()),
            )
            self._conn.executemany(
                "INSERT INTO messages (session_id, position, role, content) "
                "VALUES (?, ?, ?, ?)",
                [
                    (session_id, i, m.role.value, m.content)
                    for i, m in enumerate(messages)
                ],
            )
        _logger.info("Saved session %s (%d messages)", session_id, len(messages))
        return session_id

    def load_session(self, session_id: str) -> list[Message]:
        """Messages of a stored session, in conversation order."""
        rows = self._conn.execute(
            "SELECT role, content FROM messages WHERE session_id = ? "
            "ORDER BY position",
            (session_id,),
        ).fetchall()
        return [Message(role=Role(role), content=content) for role, content in rows]

    def list_sessions(self, limit: int = 20) -> list[SessionSummary]:
        """Most recent sessions first."""
        rows = self._conn.execute(
            """
            SELECT s.id, s.model, s.created_at, COUNT(m.id),
                   (SELECT content FROM messages
                    WHERE session_id = s.id AND role = 'user'
                    ORDER BY position LIMIT 1)
            FROM sessions s LEFT JOIN messages m ON m.session_id = s.id
            GROUP BY s.id
            ORDER BY s.created_at DESC
            LIMIT ?
            """,
            (limit,),
        ).fetchall()
        return [
            SessionSummary(
                session_id=sid,
                model=model,
                created_at=created,
                message_count=count,
                preview=(first_user or "")[:60],
            )
            for sid, model, created, count, first_user in rows
        ]

    def close(self):
        self._conn.close()
