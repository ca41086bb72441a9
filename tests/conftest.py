"""Shared test fixtures."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest
import yaml

from assistant_core.applier import FileSystemError
from assistant_core.channel import DONE_EVENT, TOKEN_EVENT, EventChannel
from assistant_core.config import ConfigManager
from assistant_core.credentials import KEY_NAMES, CredentialStore
from assistant_core.engine import AssistantEngine
from assistant_core.models import GenerateResult
from assistant_core.providers import GenerateRequest, build_provider
from assistant_core.session import StatePersistence
from assistant_core.session_stores import JsonStateStore


# ---------------------------------------------------------------------------
# Environment isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point HOME and CWD at a temp dir and drop ASSISTANT_* / key variables."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)
    for name in (
        "ASSISTANT_PROVIDER",
        "ASSISTANT_MODEL",
        "ASSISTANT_MAX_TOKENS",
        "ASSISTANT_LOCAL_URL",
        "ASSISTANT_STATE_BACKEND",
        "ASSISTANT_VERBOSE",
        *KEY_NAMES.values(),
    ):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture
def config_dir(project_root: Path) -> Path:
    """Return the config directory."""
    return project_root / "config"


@pytest.fixture
def settings_file(tmp_path: Path) -> Path:
    settings = {
        "provider": "openai",
        "state_backend": "json",
        "state_path": str(tmp_path / "state" / "state.json"),
        "state_db": str(tmp_path / "state" / "state.db"),
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings))
    return path


@pytest.fixture
def mock_config(settings_file: Path) -> ConfigManager:
    """Create a ConfigManager with test overrides."""
    return ConfigManager(config_path=str(settings_file))


@pytest.fixture
def credentials(tmp_path: Path) -> CredentialStore:
    store = CredentialStore(env_path=tmp_path / "creds" / ".env")
    store.save_key("openai", "sk-test")
    return store


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class ScriptedBackend:
    """Streams fixed tokens over the channel, then pushes done."""

    def __init__(
        self,
        tokens: list[str] | None = None,
        *,
        delay: float = 0.0,
        push_done: bool = True,
        error: Exception | None = None,
    ) -> None:
        self.tokens = tokens if tokens is not None else ["Hello", ", ", "world."]
        self.delay = delay
        self.push_done = push_done
        self.error = error
        self.requests: list[GenerateRequest] = []
        self.aborted = 0

    async def generate(
        self, request: GenerateRequest, channel: EventChannel | None = None
    ) -> GenerateResult:
        self.requests.append(request)
        for token in self.tokens:
            if self.delay:
                await asyncio.sleep(self.delay)
            if channel is not None:
                channel.emit(TOKEN_EVENT, {"text": token})
        if self.error is not None:
            raise self.error
        text = "".join(self.tokens)
        if self.push_done and channel is not None:
            channel.emit(DONE_EVENT, {"text": text})
        return GenerateResult(text=text, model="fake")

    async def abort(self) -> None:
        self.aborted += 1


class HangingBackend:
    """Emits one token and then never responds."""

    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.aborted = 0
        self.requests: list[GenerateRequest] = []

    async def generate(
        self, request: GenerateRequest, channel: EventChannel | None = None
    ) -> GenerateResult:
        self.requests.append(request)
        if channel is not None:
            channel.emit(TOKEN_EVENT, {"text": "partial"})
        self.started.set()
        await asyncio.Event().wait()
        raise AssertionError("unreachable")

    async def abort(self) -> None:
        self.aborted += 1


class MemoryFileSystem:
    """In-memory file-system backend."""

    def __init__(self, files: dict[str, str] | None = None) -> None:
        self.files: dict[str, str] = dict(files or {})
        self.fail_on: set[str] = set()

    async def write_file(self, path: str, content: str) -> None:
        await asyncio.sleep(0)
        if path in self.fail_on:
            raise FileSystemError(f"Failed to write '{path}': disk full")
        self.files[path] = content

    async def delete_file(self, path: str) -> None:
        await asyncio.sleep(0)
        if path not in self.files:
            raise FileSystemError(f"File not found: {path}")
        del self.files[path]


class FailingStore:
    """A state store whose every call raises."""

    def __init__(self) -> None:
        self.calls = 0

    def load(self) -> dict[str, Any]:
        self.calls += 1
        raise OSError("quota exceeded")

    def save(self, state: dict[str, Any]) -> None:
        self.calls += 1
        raise OSError("quota exceeded")

    def close(self) -> None:
        pass


@pytest.fixture
def memory_fs() -> MemoryFileSystem:
    return MemoryFileSystem()


@pytest.fixture
def make_engine(
    mock_config: ConfigManager,
    credentials: CredentialStore,
    memory_fs: MemoryFileSystem,
    tmp_path: Path,
) -> Any:
    """Factory for engines wired to fakes and a temp JSON store."""

    def factory(backend: Any = None, **kwargs: Any) -> AssistantEngine:
        persistence = kwargs.pop(
            "persistence",
            StatePersistence(JsonStateStore(tmp_path / "state" / "state.json")),
        )
        return AssistantEngine(
            kwargs.pop("config", mock_config),
            backend=backend or ScriptedBackend(),
            fs=kwargs.pop("fs", memory_fs),
            persistence=persistence,
            credentials=credentials,
            **kwargs,
        )

    return factory


def make_request(max_tokens: int | None = None) -> GenerateRequest:
    return GenerateRequest(
        provider=build_provider("openai", api_key="sk-test"),
        prompt="hi",
        max_tokens=max_tokens,
    )
