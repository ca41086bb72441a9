"""Interactive REPL with slash commands and prompt_toolkit."""

from __future__ import annotations

import asyncio
import inspect
import logging
import shlex
import signal
from collections.abc import Iterable
from typing import Any

from prompt_toolkit import PromptSession
from prompt_toolkit.completion import CompleteEvent, Completer, Completion
from prompt_toolkit.completion import PathCompleter as _PathCompleter
from prompt_toolkit.document import Document
from prompt_toolkit.history import InMemoryHistory

from assistant_core import __version__
from assistant_core.controller import ExchangeInFlightError
from assistant_core.credentials import CredentialError
from assistant_core.display import Display
from assistant_core.engine import AssistantEngine
from assistant_core.indexer import IndexerError
from assistant_core.providers import PROVIDERS
from assistant_core.session import SessionNotFoundError

logger = logging.getLogger(__name__)


class SlashCompleter(Completer):
    """Autocomplete for REPL slash commands and their arguments."""

    COMMANDS: dict[str, str] = {
        "/help": "Show available commands",
        "/save": "Archive the current chat",
        "/new": "Archive and start a new chat",
        "/sessions": "List or search saved sessions",
        "/load": "Load a saved session",
        "/delete": "Delete a saved session",
        "/rename": "Rename a saved session",
        "/index": "Index a project directory for context",
        "/image": "Attach an image to the next message",
        "/provider": "Show or switch provider",
        "/model": "Show or switch model",
        "/max-tokens": "Set the output token cap (or 'off')",
        "/quit": "Save and exit",
    }

    def __init__(self, engine: AssistantEngine) -> None:
        self._engine = engine
        self._path_completer = _PathCompleter()

    def get_completions(
        self, document: Document, complete_event: CompleteEvent
    ) -> Iterable[Completion]:
        text = document.text_before_cursor

        if not text.startswith("/"):
            return

        if " " not in text:
            for cmd, desc in self.COMMANDS.items():
                if cmd.startswith(text):
                    yield Completion(
                        cmd, start_position=-len(text), display_meta=desc
                    )
            return

        cmd, _, arg_text = text.partition(" ")
        cmd = cmd.lower()

        if cmd == "/provider":
            for name in sorted(PROVIDERS):
                if name.startswith(arg_text):
                    yield Completion(name, start_position=-len(arg_text))

        elif cmd == "/max-tokens":
            for opt in ("off", "1024", "2048", "4096"):
                if opt.startswith(arg_text):
                    yield Completion(opt, start_position=-len(arg_text))

        elif cmd in ("/index", "/image"):
            sub_doc = Document(arg_text, len(arg_text))
            yield from self._path_completer.get_completions(
                sub_doc, complete_event
            )

        elif cmd in ("/load", "/delete", "/rename"):
            for session in self._engine.archive.sorted_sessions():
                if session.id.startswith(arg_text):
                    yield Completion(
                        session.id,
                        start_position=-len(arg_text),
                        display_meta=session.title[:40],
                    )


class ReplSession:
    """Interactive REPL session with slash commands."""

    def __init__(self, engine: AssistantEngine, display: Display) -> None:
        self._engine = engine
        self._display = display
        self._running = False

    async def run(self) -> None:
        """Main REPL loop."""
        provider = self._engine.current_provider()
        self._display.print_welcome(__version__, provider.label, provider.resolved_model)
        if self._engine.messages:
            self._display.print_conversation(self._engine.messages)

        prompt_session: PromptSession[str] = PromptSession(
            history=InMemoryHistory(),
            completer=SlashCompleter(self._engine),
        )
        self._running = True
        try:
            while self._running:
                try:
                    text = (await prompt_session.prompt_async("You> ")).strip()
                except KeyboardInterrupt:
                    self._display.print_info("Use /quit to save and exit.")
                    continue
                except EOFError:
                    break
                if not text:
                    continue
                if text.startswith("/"):
                    await self._handle_command(text)
                else:
                    await self._send_message(text)
        finally:
            await self._engine.aclose()

    async def _handle_command(self, text: str) -> None:
        """Dispatch slash commands."""
        parts = text.split(maxsplit=1)
        cmd = parts[0].lower()
        arg = parts[1].strip() if len(parts) > 1 else ""

        commands: dict[str, Any] = {
            "/help": self._handle_help,
            "/save": lambda: self._handle_save(arg),
            "/new": self._handle_new,
            "/sessions": lambda: self._handle_sessions(arg),
            "/load": lambda: self._handle_load(arg),
            "/delete": lambda: self._handle_delete(arg),
            "/rename": lambda: self._handle_rename(arg),
            "/index": lambda: self._handle_index(arg),
            "/image": lambda: self._handle_image(arg),
            "/provider": lambda: self._handle_provider(arg),
            "/model": lambda: self._handle_model(arg),
            "/max-tokens": lambda: self._handle_max_tokens(arg),
            "/quit": self._handle_quit,
            "/exit": self._handle_quit,
        }

        handler = commands.get(cmd)
        if handler is None:
            self._display.print_error(f"Unknown command: {cmd}. Type /help.")
            return
        try:
            result = handler()
            if inspect.isawaitable(result):
                await result
        except (
            SessionNotFoundError,
            ExchangeInFlightError,
            CredentialError,
            IndexerError,
            ValueError,
            OSError,
        ) as e:
            self._display.print_error(str(e))

    def _handle_help(self) -> None:
        """Show available commands."""
        help_text = """Available commands:
  /help                Show this help
  /save [title]        Archive the current chat
  /new                 Archive the current chat and start a new one
  /sessions [query]    List saved sessions (optionally filtered)
  /load <id>           Load a saved session (archives unsaved work first)
  /delete <id>         Delete a saved session
  /rename <id> <title> Rename a saved session
  /index <dir>         Index a project; edits resolve relative to it
  /image <file>        Attach an image to the next message
  /provider [name]     Show or switch provider
  /model [name]        Show or switch model
  /max-tokens <n|off>  Set the output token cap
  /quit                Save and exit

Ctrl+C while a reply is streaming cancels it."""
        self._display.print_info(help_text)

    def _handle_save(self, arg: str) -> None:
        session = self._engine.archive_draft(arg or None)
        if session is None:
            self._display.print_info("Nothing to save.")
        else:
            self._display.print_success(f"Saved '{session.title}' ({session.id[:8]})")

    def _handle_new(self) -> None:
        session = self._engine.new_chat()
        if session is not None:
            self._display.print_success(f"Saved '{session.title}' ({session.id[:8]})")
        self._display.print_info("Started a new chat.")

    def _handle_sessions(self, arg: str) -> None:
        self._display.print_sessions(
            self._engine.search_sessions(arg),
            active_id=self._engine.draft.active_session_id,
        )

    def _handle_load(self, arg: str) -> None:
        if not arg:
            self._display.print_error("Usage: /load <id>")
            return
        session = self._engine.load_session(arg)
        self._display.print_success(f"Loaded '{session.title}'")
        self._display.print_conversation(self._engine.messages)

    def _handle_delete(self, arg: str) -> None:
        if not arg:
            self._display.print_error("Usage: /delete <id>")
            return
        session = self._engine.delete_session(arg)
        self._display.print_success(f"Deleted '{session.title}'")

    def _handle_rename(self, arg: str) -> None:
        try:
            parts = shlex.split(arg)
        except ValueError:
            parts = arg.split()
        if len(parts) < 2:
            self._display.print_error("Usage: /rename <id> <title>")
            return
        session = self._engine.rename_session(parts[0], " ".join(parts[1:]))
        self._display.print_success(f"Renamed to '{session.title}'")

    async def _handle_index(self, arg: str) -> None:
        if not arg:
            root = self._engine.indexer.root
            self._display.print_info(f"Indexed project: {root or '(none)'}")
            return
        with self._display.spinner("Indexing..."):
            result = await self._engine.index_project(arg)
        self._display.print_index_summary(result)

    def _handle_image(self, arg: str) -> None:
        if not arg:
            self._engine.attach_image_data(None)
            self._display.print_info("Image attachment cleared.")
            return
        self._engine.attach_image(arg)
        self._display.print_success(f"Attached {arg} to the next message")

    def _handle_provider(self, arg: str) -> None:
        if arg:
            self._engine.set_provider(arg)
        provider = self._engine.current_provider()
        self._display.print_info(
            f"Provider: {provider.label} ({provider.resolved_model})"
        )

    def _handle_model(self, arg: str) -> None:
        if arg:
            self._engine.set_model(arg)
        self._display.print_info(
            f"Model: {self._engine.current_provider().resolved_model}"
        )

    def _handle_max_tokens(self, arg: str) -> None:
        if not arg:
            current = self._engine.max_tokens
            self._display.print_info(f"Max tokens: {current or 'provider default'}")
            return
        if arg.lower() in ("off", "none", "default"):
            self._engine.set_max_tokens(None)
        else:
            self._engine.set_max_tokens(int(arg))
        self._display.print_info(f"Max tokens: {self._engine.max_tokens or 'provider default'}")

    def _handle_quit(self) -> None:
        self._engine.save()
        self._display.print_info("State saved. Goodbye!")
        self._running = False

    async def _send_message(self, text: str) -> None:
        """Run one exchange; Ctrl+C cancels it instead of exiting."""
        streamed = False

        def on_token(token: str) -> None:
            nonlocal streamed
            streamed = True
            self._display.print_token(token)

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self._engine.cancel)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            handler_installed = False

        try:
            outcome = await self._engine.submit(text, on_token=on_token)
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)

        if streamed:
            self._display.end_stream()
        self._display.print_outcome(outcome, streamed=streamed)
