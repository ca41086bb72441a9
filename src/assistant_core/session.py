"""Session management: the live draft, archived sessions, and state persistence."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any

from assistant_core.config import ConfigManager
from assistant_core.models import Message, Session, new_id, now_iso
from assistant_core.session_stores import JsonStateStore, SqliteStateStore, StateStore

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Untitled chat"


class SessionNotFoundError(KeyError):
    """Raised when a session id does not match any archived session."""

    def __str__(self) -> str:
        return f"Session not found: {self.args[0]}" if self.args else "Session not found"


def default_title(messages: list[Message], max_length: int = 40) -> str:
    """Title from the first user message's leading text."""
    for msg in messages:
        if msg.role != "user":
            continue
        text = re.sub(r"\s+", " ", msg.text).strip()
        if not text:
            continue
        if len(text) > max_length:
            return text[:max_length].rstrip() + "…"
        return text
    return DEFAULT_TITLE


# ---------------------------------------------------------------------------
# Draft
# ---------------------------------------------------------------------------


class SessionDraft:
    """The current, not-yet-archived message list."""

    def __init__(
        self,
        messages: list[Message] | None = None,
        active_session_id: str | None = None,
    ) -> None:
        self.messages: list[Message] = list(messages or [])
        self.active_session_id = active_session_id
        self.attachment: str | None = None

    def append(self, message: Message) -> None:
        self.messages.append(message)

    def clear(self) -> None:
        self.messages = []
        self.attachment = None

    def is_empty(self) -> bool:
        return not self.messages

    def __len__(self) -> int:
        return len(self.messages)


# ---------------------------------------------------------------------------
# Archive
# ---------------------------------------------------------------------------


class ArchiveManager:
    """Creates, updates, loads, deletes and renames archived sessions.

    Every operation is synchronous. Loading a session while the draft holds
    unsaved messages archives the draft first, so nothing is dropped.
    """

    def __init__(
        self,
        draft: SessionDraft,
        sessions: list[Session] | None = None,
        *,
        title_max_length: int = 40,
    ) -> None:
        self._draft = draft
        self._sessions: list[Session] = list(sessions or [])
        self._title_max_length = title_max_length
        # A pointer to a session that no longer exists is dropped
        if draft.active_session_id and self._find(draft.active_session_id) is None:
            logger.warning(
                "Active session %s not in archive; detaching draft",
                draft.active_session_id,
            )
            draft.active_session_id = None

    @property
    def sessions(self) -> list[Session]:
        """Sessions in archive order (most recently created first)."""
        return list(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def _find(self, session_id: str) -> Session | None:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def get(self, session_id: str) -> Session:
        """Return a session by exact id or unique prefix."""
        session = self._find(session_id)
        if session is not None:
            return session
        matches = [s for s in self._sessions if s.id.startswith(session_id)]
        if session_id and len(matches) == 1:
            return matches[0]
        raise SessionNotFoundError(session_id)

    def archive(self, title: str | None = None) -> Session | None:
        """Snapshot the draft into the archive and clear it.

        Returns the created or updated session, or None when the draft was
        empty and nothing changed.
        """
        draft = self._draft
        if draft.is_empty():
            return None

        messages = list(draft.messages)
        active = draft.active_session_id
        session = self._find(active) if active else None

        if session is not None:
            session.messages = messages
            session.updated_at = now_iso()
            if title and title.strip():
                session.title = title.strip()
            logger.info("Updated session %s (%d messages)", session.id, len(messages))
        else:
            created = now_iso()
            session = Session(
                id=new_id(),
                title=(title or "").strip()
                or default_title(messages, self._title_max_length),
                messages=messages,
                created_at=created,
                updated_at=created,
            )
            self._sessions.insert(0, session)
            draft.active_session_id = None
            logger.info("Archived new session %s (%d messages)", session.id, len(messages))

        draft.clear()
        return session

    def load(self, session_id: str) -> Session:
        """Make ``session_id`` the draft, archiving unsaved work first."""
        target = self.get(session_id)
        if not self._draft.is_empty():
            self.archive()
        self._draft.messages = list(target.messages)
        self._draft.active_session_id = target.id
        self._draft.attachment = None
        return target

    def delete(self, session_id: str) -> Session:
        target = self.get(session_id)
        self._sessions.remove(target)
        if self._draft.active_session_id == target.id:
            self._draft.active_session_id = None
        logger.info("Deleted session %s", target.id)
        return target

    def rename(self, session_id: str, title: str) -> Session:
        target = self.get(session_id)
        title = title.strip()
        if not title:
            raise ValueError("Session title must not be empty")
        target.title = title
        return target

    def clear_draft(self) -> None:
        """Start a new chat without archiving the current draft."""
        self._draft.clear()
        self._draft.active_session_id = None

    def sorted_sessions(self) -> list[Session]:
        """Sessions sorted by most recent update first."""
        return sorted(self._sessions, key=lambda s: s.updated_at, reverse=True)

    def search(self, query: str) -> list[Session]:
        """Sessions whose title or any message text contains ``query``."""
        needle = query.strip().lower()
        sessions = self.sorted_sessions()
        if not needle:
            return sessions
        return [
            s for s in sessions
            if needle in s.title.lower()
            or any(needle in m.text.lower() for m in s.messages)
        ]


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def _build_store(config: ConfigManager) -> StateStore:
    """Construct the state store selected by config."""
    settings = config.settings
    json_path = Path(settings.state_path).expanduser()

    if settings.state_backend == "sqlite":
        db_path = Path(settings.state_db).expanduser()
        try:
            return SqliteStateStore(db_path, json_path=json_path)
        except Exception:
            logger.warning("SQLite init failed, falling back to JSON")

    return JsonStateStore(json_path)


def snapshot(draft: SessionDraft, archive: ArchiveManager) -> dict[str, Any]:
    """The persisted shape: {messages, archived_chats, active_session_id}."""
    return {
        "messages": [m.to_dict() for m in draft.messages],
        "archived_chats": [s.to_dict() for s in archive.sessions],
        "active_session_id": draft.active_session_id,
    }


class StatePersistence:
    """Wraps a state store so that failures never escape.

    Each failed operation is retried once. After a second failure the
    wrapper degrades to in-memory-only operation for the rest of its life.
    """

    def __init__(self, store: StateStore | None) -> None:
        self._store = store
        self._degraded = store is None

    @classmethod
    def from_config(cls, config: ConfigManager) -> StatePersistence:
        try:
            return cls(_build_store(config))
        except Exception:
            logger.warning("State store unavailable; running in memory", exc_info=True)
            return cls(None)

    @property
    def degraded(self) -> bool:
        return self._degraded

    def load(self) -> dict[str, Any]:
        state = self._attempt("load", lambda store: store.load())
        return state if isinstance(state, dict) else {}

    def save(self, state: dict[str, Any]) -> bool:
        return self._attempt("save", lambda store: store.save(state)) is not None

    def _attempt(self, action: str, op: Any) -> Any:
        if self._degraded or self._store is None:
            return None
        for attempt in (1, 2):
            try:
                result = op(self._store)
                return True if result is None else result
            except Exception:
                logger.warning(
                    "State %s failed (attempt %d)", action, attempt, exc_info=True
                )
        logger.warning("Persistence degraded to in-memory only")
        self._degraded = True
        return None

    def close(self) -> None:
        if self._store is not None:
            try:
                self._store.close()
            except Exception:
                logger.warning("Closing state store failed", exc_info=True)
            self._store = None


def restore(
    state: dict[str, Any], *, title_max_length: int = 40
) -> tuple[SessionDraft, ArchiveManager]:
    """Rebuild the draft and archive from a persisted state dict."""
    messages: list[Message] = []
    sessions: list[Session] = []
    for raw in state.get("messages") or []:
        if isinstance(raw, dict):
            messages.append(Message.from_dict(raw))
    for raw in state.get("archived_chats") or []:
        if isinstance(raw, dict) and raw.get("id"):
            sessions.append(Session.from_dict(raw))
    draft = SessionDraft(messages, state.get("active_session_id"))
    archive = ArchiveManager(draft, sessions, title_max_length=title_max_length)
    return draft, archive
