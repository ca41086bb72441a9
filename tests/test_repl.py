"""Tests for REPL module."""

from __future__ import annotations

from io import StringIO
from pathlib import Path
from typing import Any

import pytest
from prompt_toolkit.completion import CompleteEvent
from prompt_toolkit.document import Document

from assistant_core.display import Display
from assistant_core.engine import AssistantEngine
from assistant_core.models import Message, Session
from assistant_core.repl import ReplSession, SlashCompleter
from conftest import ScriptedBackend


@pytest.fixture
def out() -> StringIO:
    return StringIO()


@pytest.fixture
def engine(make_engine: Any) -> AssistantEngine:
    return make_engine(ScriptedBackend(["Sure thing."]))


@pytest.fixture
def repl(engine: AssistantEngine, out: StringIO) -> ReplSession:
    return ReplSession(engine, Display(file=out))


def _completions(completer: SlashCompleter, text: str) -> list[str]:
    doc = Document(text, len(text))
    return [c.text for c in completer.get_completions(doc, CompleteEvent())]


class TestSlashCompleter:
    def test_command_prefix(self, engine: AssistantEngine) -> None:
        completer = SlashCompleter(engine)
        assert _completions(completer, "/s") == ["/save", "/sessions"]

    def test_plain_text_has_no_completions(self, engine: AssistantEngine) -> None:
        assert _completions(SlashCompleter(engine), "hello") == []

    def test_provider_names(self, engine: AssistantEngine) -> None:
        assert _completions(SlashCompleter(engine), "/provider o") == ["openai", "openrouter"]

    def test_max_tokens_options(self, engine: AssistantEngine) -> None:
        assert _completions(SlashCompleter(engine), "/max-tokens o") == ["off"]

    def test_session_ids(self, engine: AssistantEngine) -> None:
        engine.archive._sessions = [  # noqa: SLF001
            Session(id="abc123", title="One"),
            Session(id="abd456", title="Two"),
            Session(id="xyz789", title="Three"),
        ]
        assert sorted(_completions(SlashCompleter(engine), "/load ab")) == ["abc123", "abd456"]

    def test_paths(self, engine: AssistantEngine, tmp_path: Path) -> None:
        (tmp_path / "shot.png").write_bytes(b"x")
        completions = _completions(SlashCompleter(engine), f"/image {tmp_path}/sh")
        assert "ot.png" in completions


class TestCommands:
    @pytest.mark.asyncio
    async def test_help(self, repl: ReplSession, out: StringIO) -> None:
        await repl._handle_command("/help")
        assert "/max-tokens" in out.getvalue()

    @pytest.mark.asyncio
    async def test_unknown(self, repl: ReplSession, out: StringIO) -> None:
        await repl._handle_command("/frobnicate")
        assert "Unknown command: /frobnicate" in out.getvalue()

    @pytest.mark.asyncio
    async def test_save_empty(self, repl: ReplSession, out: StringIO) -> None:
        await repl._handle_command("/save")
        assert "Nothing to save" in out.getvalue()

    @pytest.mark.asyncio
    async def test_send_then_save_with_title(
        self, repl: ReplSession, engine: AssistantEngine, out: StringIO
    ) -> None:
        await repl._send_message("plan the sprint")
        assert "Sure thing." in out.getvalue()

        await repl._handle_command("/save Sprint plan")
        (session,) = engine.search_sessions()
        assert session.title == "Sprint plan"
        assert engine.messages == []

    @pytest.mark.asyncio
    async def test_new_starts_empty(self, repl: ReplSession, engine: AssistantEngine) -> None:
        engine.draft.append(Message(role="user", text="draft text"))
        await repl._handle_command("/new")
        assert engine.messages == []
        assert len(engine.search_sessions()) == 1

    @pytest.mark.asyncio
    async def test_load_and_rename(
        self, repl: ReplSession, engine: AssistantEngine, out: StringIO
    ) -> None:
        engine.draft.append(Message(role="user", text="old thread"))
        session = engine.archive_draft()
        assert session is not None

        await repl._handle_command(f"/load {session.id[:8]}")
        assert engine.draft.active_session_id == session.id
        assert "old thread" in out.getvalue()

        await repl._handle_command(f'/rename {session.id} "Better title"')
        assert session.title == "Better title"

    @pytest.mark.asyncio
    async def test_load_unknown_is_reported(self, repl: ReplSession, out: StringIO) -> None:
        await repl._handle_command("/load nope")
        assert "Session not found: nope" in out.getvalue()

    @pytest.mark.asyncio
    async def test_delete(self, repl: ReplSession, engine: AssistantEngine) -> None:
        engine.draft.append(Message(role="user", text="x"))
        session = engine.archive_draft()
        assert session is not None
        await repl._handle_command(f"/delete {session.id}")
        assert engine.search_sessions() == []

    @pytest.mark.asyncio
    async def test_provider_switch(self, repl: ReplSession, engine: AssistantEngine, out: StringIO) -> None:
        await repl._handle_command("/provider deepseek")
        assert engine.provider_name == "deepseek"
        assert "DeepSeek" in out.getvalue()

        await repl._handle_command("/provider bard")
        assert "Unknown provider 'bard'" in out.getvalue()
        assert engine.provider_name == "deepseek"

    @pytest.mark.asyncio
    async def test_model_and_max_tokens(self, repl: ReplSession, engine: AssistantEngine) -> None:
        await repl._handle_command("/model gpt-4o-mini")
        assert engine.current_provider().resolved_model == "gpt-4o-mini"

        await repl._handle_command("/max-tokens 512")
        assert engine.max_tokens == 512
        await repl._handle_command("/max-tokens off")
        assert engine.max_tokens is None

    @pytest.mark.asyncio
    async def test_bad_max_tokens(self, repl: ReplSession, engine: AssistantEngine, out: StringIO) -> None:
        await repl._handle_command("/max-tokens lots")
        assert engine.max_tokens is None
        assert "Error" in out.getvalue()

    @pytest.mark.asyncio
    async def test_index(self, repl: ReplSession, engine: AssistantEngine, tmp_path: Path, out: StringIO) -> None:
        project = tmp_path / "proj"
        project.mkdir()
        (project / "app.py").write_text("pass\n")
        await repl._handle_command(f"/index {project}")
        assert engine.indexer.root == str(project)
        assert "Indexed 1 file" in out.getvalue()

    @pytest.mark.asyncio
    async def test_image_attach_and_clear(
        self, repl: ReplSession, engine: AssistantEngine, tmp_path: Path
    ) -> None:
        image = tmp_path / "pic.png"
        image.write_bytes(b"\x89PNG")
        await repl._handle_command(f"/image {image}")
        assert engine.draft.attachment is not None
        await repl._handle_command("/image")
        assert engine.draft.attachment is None

    @pytest.mark.asyncio
    async def test_missing_image_is_reported(self, repl: ReplSession, out: StringIO) -> None:
        await repl._handle_command("/image /no/such/file.png")
        assert "Error" in out.getvalue()

    @pytest.mark.asyncio
    async def test_quit(self, repl: ReplSession, out: StringIO) -> None:
        repl._running = True
        await repl._handle_command("/quit")
        assert not repl._running
        assert "Goodbye" in out.getvalue()

    @pytest.mark.asyncio
    async def test_rejected_message_is_not_sent(
        self, repl: ReplSession, engine: AssistantEngine, out: StringIO
    ) -> None:
        engine.set_provider("claude")
        await repl._send_message("hello")
        assert "Claude API key is required" in out.getvalue()
        assert engine.messages == []
