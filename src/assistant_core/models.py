"""Data classes for assistant-core. Structured data only, no business logic."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def now_iso() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Message:
    """A single chat message. Immutable once appended."""

    role: str  # "user" or "assistant"
    text: str
    id: str = field(default_factory=new_id)
    image_base64: str | None = None
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "image_base64": self.image_base64,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        return cls(
            role=data.get("role", "user"),
            text=data.get("text", ""),
            id=data.get("id") or new_id(),
            image_base64=data.get("image_base64"),
            timestamp=data.get("timestamp", ""),
        )


@dataclass
class Session:
    """A named, archived snapshot of a past draft."""

    id: str
    title: str
    messages: list[Message] = field(default_factory=list)
    created_at: str = field(default_factory=now_iso)
    updated_at: str = ""

    def __post_init__(self) -> None:
        if not self.updated_at or self.updated_at < self.created_at:
            self.updated_at = self.created_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        return cls(
            id=data["id"],
            title=data.get("title", ""),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            created_at=data.get("created_at", ""),
            updated_at=data.get("updated_at", ""),
        )


# ---------------------------------------------------------------------------
# Exchange state
# ---------------------------------------------------------------------------


class StreamPhase:
    """Phases of the single in-flight exchange."""

    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    DONE = "done"
    CANCELLED = "cancelled"
    ERROR = "error"

    IN_FLIGHT = frozenset({SENDING, STREAMING})


@dataclass
class StreamState:
    """The engine's one and only exchange state."""

    phase: str = StreamPhase.IDLE
    buffer: str = ""

    @property
    def in_flight(self) -> bool:
        return self.phase in StreamPhase.IN_FLIGHT


class EditStatus:
    APPLYING = "applying"
    DONE = "done"
    ERROR = "error"


@dataclass
class EditResult:
    """Transient per-segment status owned by the edit applier."""

    action: str  # "write" or "delete"
    file_path: str
    resolved_path: str = ""
    status: str = EditStatus.APPLYING
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status == EditStatus.DONE


@dataclass
class ExchangeOutcome:
    """How an exchange settled: exactly one of these statuses per send."""

    status: str  # completed | cancelled | error | rejected
    message: Message | None = None
    notice: str = ""
    edits: list[EditResult] = field(default_factory=list)

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ERROR = "error"
    REJECTED = "rejected"


# ---------------------------------------------------------------------------
# Backend contract
# ---------------------------------------------------------------------------


@dataclass
class GenerateResult:
    """Reply from a model backend."""

    text: str
    model: str = ""
    tokens_used: int | None = None


@dataclass
class IndexedFile:
    """A source file collected by the project indexer."""

    path: str  # relative to the indexed root
    content: str
    size_bytes: int
    extension: str
    truncated: bool = False


@dataclass
class IndexResult:
    files: list[IndexedFile] = field(default_factory=list)
    total_files: int = 0
    skipped_files: int = 0
    root_path: str = ""


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@dataclass
class AppSettings:
    """Application settings loaded from YAML config."""

    provider: str = "openai"
    models: dict[str, str] = field(default_factory=dict)
    local_url: str = "http://localhost:1234/api/v1/chat"
    max_tokens: int | None = None
    streaming: bool = True
    request_timeout: float = 600.0
    connect_timeout: float = 10.0
    state_backend: str = "json"
    state_path: str = "~/.assistant-core/state.json"
    state_db: str = "~/.assistant-core/state.db"
    title_max_length: int = 40
    context_max_files: int = 20
    context_max_chars: int = 3000
    blocked_write_patterns: list[str] = field(default_factory=list)
    system_prompt_extra: str = ""
