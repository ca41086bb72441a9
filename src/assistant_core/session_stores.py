"""State storage backends: a single JSON file, or SQLite."""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


def empty_state() -> dict[str, Any]:
    return {"messages": [], "archived_chats": [], "active_session_id": None}


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class StateStore(Protocol):
    """Interface for engine state persistence backends."""

    def load(self) -> dict[str, Any]: ...

    def save(self, state: dict[str, Any]) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# JSON store
# ---------------------------------------------------------------------------


class JsonStateStore:
    """Persists the whole engine state as one JSON document."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        if not self._path.is_file():
            return empty_state()
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning("State file %s is corrupt; starting empty", self._path)
            return empty_state()
        if not isinstance(data, dict):
            return empty_state()
        state = empty_state()
        state.update(data)
        return state

    def save(self, state: dict[str, Any]) -> None:
        # Write-then-rename so a crash never leaves a half-written file
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(state, indent=2, default=str), encoding="utf-8")
        tmp.replace(self._path)

    def close(self) -> None:
        pass  # No resources to release


# ---------------------------------------------------------------------------
# SQLite store
# ---------------------------------------------------------------------------

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS sessions (
    session_id  TEXT PRIMARY KEY,
    title       TEXT NOT NULL DEFAULT '',
    created_at  TEXT NOT NULL,
    updated_at  TEXT NOT NULL,
    position    INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id    TEXT NOT NULL,
    message_id    TEXT NOT NULL,
    role          TEXT NOT NULL,
    text          TEXT NOT NULL,
    image_base64  TEXT,
    timestamp     TEXT DEFAULT '',
    position      INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS metadata (
    key   TEXT PRIMARY KEY,
    value TEXT
);

CREATE INDEX IF NOT EXISTS idx_messages_session ON messages(session_id, position);
"""

# Pseudo session id under which the live draft's messages are stored
DRAFT_ID = "__draft__"


class SqliteStateStore:
    """Persists engine state in a SQLite database."""

    def __init__(self, db_path: Path, json_path: Path | None = None) -> None:
        self._db_path = db_path
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(str(self._db_path))
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_SCHEMA_SQL)
            self._conn.commit()
        except sqlite3.DatabaseError as exc:
            logger.warning("SQLite DB corrupt or unreadable: %s", exc)
            raise

        if json_path is not None:
            self._migrate_from_json(json_path)

    def _get_meta(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM metadata WHERE key = ?", (key,)
        ).fetchone()
        return row[0] if row else None

    def _set_meta(self, key: str, value: str | None) -> None:
        self._conn.execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
            (key, value),
        )

    def _migrate_from_json(self, json_path: Path) -> None:
        """Import an existing JSON state file once."""
        if self._get_meta("migrated_from_json") is not None:
            return
        if json_path.is_file():
            state = JsonStateStore(json_path).load()
            self._write(state)
            logger.info(
                "Migrated %d sessions from %s to SQLite",
                len(state.get("archived_chats") or []),
                json_path,
            )
        self._set_meta("migrated_from_json", datetime.now(timezone.utc).isoformat())
        self._conn.commit()

    def _insert_messages(self, session_id: str, messages: list[dict[str, Any]]) -> None:
        for pos, msg in enumerate(messages):
            self._conn.execute(
                "INSERT INTO messages "
                "(session_id, message_id, role, text, image_base64, timestamp, position) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    session_id,
                    msg.get("id", ""),
                    msg.get("role", ""),
                    msg.get("text", ""),
                    msg.get("image_base64"),
                    msg.get("timestamp", ""),
                    pos,
                ),
            )

    def _load_messages(self, session_id: str) -> list[dict[str, Any]]:
        cursor = self._conn.execute(
            "SELECT message_id, role, text, image_base64, timestamp "
            "FROM messages WHERE session_id = ? ORDER BY position",
            (session_id,),
        )
        return [
            {
                "id": row[0],
                "role": row[1],
                "text": row[2],
                "image_base64": row[3],
                "timestamp": row[4] or "",
            }
            for row in cursor
        ]

    def _write(self, state: dict[str, Any]) -> None:
        # Full replace: the archive is small and a snapshot keeps order exact
        self._conn.execute("DELETE FROM messages")
        self._conn.execute("DELETE FROM sessions")
        for pos, session in enumerate(state.get("archived_chats") or []):
            sid = session["id"]
            self._conn.execute(
                "INSERT INTO sessions (session_id, title, created_at, updated_at, position) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    sid,
                    session.get("title", ""),
                    session.get("created_at", ""),
                    session.get("updated_at", ""),
                    pos,
                ),
            )
            self._insert_messages(sid, session.get("messages") or [])
        self._insert_messages(DRAFT_ID, state.get("messages") or [])
        self._set_meta("active_session_id", state.get("active_session_id"))

    def load(self) -> dict[str, Any]:
        state = empty_state()
        cursor = self._conn.execute(
            "SELECT session_id, title, created_at, updated_at "
            "FROM sessions ORDER BY position"
        )
        for sid, title, created_at, updated_at in cursor.fetchall():
            state["archived_chats"].append({
                "id": sid,
                "title": title,
                "created_at": created_at,
                "updated_at": updated_at,
                "messages": self._load_messages(sid),
            })
        state["messages"] = self._load_messages(DRAFT_ID)
        state["active_session_id"] = self._get_meta("active_session_id")
        return state

    def save(self, state: dict[str, Any]) -> None:
        try:
            self._write(state)
            self._conn.commit()
        except sqlite3.Error:
            self._conn.rollback()
            raise

    def close(self) -> None:
        if self._conn:
            self._conn.close()
