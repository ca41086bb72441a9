"""Terminal output rendering using rich."""

from __future__ import annotations

import sys
from typing import IO, Any

from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.table import Table

from assistant_core.edit_protocol import ProseSegment, WriteSegment, parse_segments
from assistant_core.models import EditResult, ExchangeOutcome, IndexResult, Message, Session


class Display:
    """Terminal display helpers powered by rich."""

    def __init__(self, file: IO[str] | None = None) -> None:
        self._file = file or sys.stdout
        self._console = Console(file=self._file)

    @property
    def console(self) -> Console:
        return self._console

    def print_welcome(self, version: str, provider: str, model: str) -> None:
        """Print the REPL welcome banner."""
        self._console.print(f"\n  Assistant Core v{version} | {provider}: {model}")
        self._console.print("  Type /help for commands, Ctrl+C cancels a reply\n")

    def print_message(self, message: Message) -> None:
        """Print a chat message. Edit blocks are summarized, not dumped."""
        if message.role != "assistant":
            attached = " [dim](image attached)[/dim]" if message.image_base64 else ""
            self._console.print(f"[bold]You>[/bold] {escape(message.text)}{attached}")
            return

        self._console.print()
        for segment in parse_segments(message.text):
            if isinstance(segment, ProseSegment):
                if segment.text.strip():
                    self._console.print(Markdown(segment.text))
            elif isinstance(segment, WriteSegment):
                lines = segment.content.count("\n")
                self._console.print(
                    f"  [cyan]✎ write[/cyan] {escape(segment.path)} [dim]({lines} lines)[/dim]"
                )
            else:
                self._console.print(f"  [magenta]✗ delete[/magenta] {escape(segment.path)}")
        self._console.print()

    def print_conversation(self, messages: list[Message]) -> None:
        for message in messages:
            self.print_message(message)

    def print_token(self, token: str) -> None:
        """Write a streamed token with no markup and no newline."""
        self._console.out(token, end="", highlight=False)
        self._file.flush()

    def end_stream(self) -> None:
        self._console.print()

    def print_outcome(self, outcome: ExchangeOutcome, streamed: bool = False) -> None:
        """Render how an exchange settled."""
        if outcome.status == ExchangeOutcome.REJECTED:
            self.print_warning(outcome.notice)
        elif outcome.status == ExchangeOutcome.CANCELLED:
            self.print_info("[dim]Reply cancelled.[/dim]")
        elif outcome.status == ExchangeOutcome.ERROR and outcome.message:
            self.print_error(outcome.message.text.removeprefix("**Error:** "))
        elif outcome.message and not streamed:
            self.print_message(outcome.message)
        if outcome.edits:
            self.print_edit_results(outcome.edits)

    def print_edit_results(self, results: list[EditResult]) -> None:
        for result in results:
            target = escape(result.resolved_path or result.file_path)
            if result.ok:
                verb = "Wrote" if result.action == "write" else "Deleted"
                self.print_success(f"{verb} {target}")
            else:
                self.print_error(f"{result.action} {target}: {escape(result.error)}")

    def print_error(self, message: str) -> None:
        """Print an error message in red."""
        self._console.print(f"[bold red]Error:[/bold red] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message in yellow."""
        self._console.print(f"[bold yellow]Warning:[/bold yellow] {message}")

    def print_success(self, message: str) -> None:
        """Print a success message in green."""
        self._console.print(f"[bold green]✓[/bold green] {message}")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        self._console.print(f"  {message}")

    def print_sessions(
        self, sessions: list[Session], active_id: str | None = None
    ) -> None:
        """Print archived sessions, newest first."""
        if not sessions:
            self.print_info("No saved sessions.")
            return
        table = Table(title="Saved Sessions")
        table.add_column("ID", style="cyan")
        table.add_column("Title")
        table.add_column("Messages", justify="right")
        table.add_column("Updated")

        for session in sessions:
            marker = " *" if session.id == active_id else ""
            table.add_row(
                session.id[:8] + marker,
                escape(session.title),
                str(len(session.messages)),
                session.updated_at[:19].replace("T", " "),
            )
        self._console.print(table)

    def print_providers(
        self, providers: list[dict[str, Any]], active: str | None = None
    ) -> None:
        table = Table(title="Providers")
        table.add_column("Name", style="cyan")
        table.add_column("Model")
        table.add_column("Streaming")
        table.add_column("Vision")
        table.add_column("Key")

        for info in providers:
            name = info["name"] + (" *" if info["name"] == active else "")
            table.add_row(
                name,
                info["model"],
                "yes" if info["streaming"] else "no",
                "yes" if info["vision"] else "no",
                "set" if info.get("configured") else "[red]missing[/red]",
            )
        self._console.print(table)

    def print_index_summary(self, result: IndexResult) -> None:
        self.print_success(
            f"Indexed {result.total_files} file{'s' if result.total_files != 1 else ''} "
            f"from {escape(result.root_path)} ({result.skipped_files} skipped)"
        )

    def spinner(self, message: str = "Thinking...") -> Any:
        """Return a rich status context manager."""
        return self._console.status(message)
