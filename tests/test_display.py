"""Tests for display module."""

from __future__ import annotations

from io import StringIO

from assistant_core.display import Display
from assistant_core.models import (
    EditResult,
    EditStatus,
    ExchangeOutcome,
    IndexResult,
    Message,
    Session,
)


def _display() -> tuple[Display, StringIO]:
    out = StringIO()
    return Display(file=out), out


class TestDisplay:
    def test_print_welcome(self) -> None:
        d, out = _display()
        d.print_welcome("0.3.0", "openai", "gpt-4o")
        text = out.getvalue()
        assert "0.3.0" in text
        assert "gpt-4o" in text

    def test_print_user_message(self) -> None:
        d, out = _display()
        d.print_message(Message(role="user", text="my question", image_base64="aW1n"))
        text = out.getvalue()
        assert "my question" in text
        assert "image attached" in text

    def test_assistant_edits_are_summarized(self) -> None:
        d, out = _display()
        reply = (
            "Here you go.\n"
            "<<<FILE:src/app.py>>>\nline1\nline2\n<<<END_FILE>>>\n"
            "<<<DELETE_FILE:legacy.py>>>"
        )
        d.print_message(Message(role="assistant", text=reply))
        text = out.getvalue()
        assert "Here you go." in text
        assert "write" in text and "src/app.py" in text and "2 lines" in text
        assert "delete" in text and "legacy.py" in text
        assert "<<<" not in text
        assert "line1" not in text

    def test_print_token_has_no_newline(self) -> None:
        d, out = _display()
        d.print_token("Hel")
        d.print_token("lo [b]")
        assert out.getvalue() == "Hello [b]"

    def test_print_error(self) -> None:
        d, out = _display()
        d.print_error("something broke")
        assert "something broke" in out.getvalue()


class TestPrintOutcome:
    def test_rejected(self) -> None:
        d, out = _display()
        d.print_outcome(ExchangeOutcome(status=ExchangeOutcome.REJECTED, notice="Type a message first."))
        assert "Type a message first." in out.getvalue()

    def test_cancelled(self) -> None:
        d, out = _display()
        d.print_outcome(ExchangeOutcome(status=ExchangeOutcome.CANCELLED))
        assert "cancelled" in out.getvalue()

    def test_error_strips_prefix(self) -> None:
        d, out = _display()
        message = Message(role="assistant", text="**Error:** OpenAI 500: boom")
        d.print_outcome(ExchangeOutcome(status=ExchangeOutcome.ERROR, message=message))
        text = out.getvalue()
        assert "OpenAI 500: boom" in text
        assert "**Error:**" not in text

    def test_completed_not_streamed_prints_message(self) -> None:
        d, out = _display()
        message = Message(role="assistant", text="The reply.")
        d.print_outcome(ExchangeOutcome(status=ExchangeOutcome.COMPLETED, message=message))
        assert "The reply." in out.getvalue()

    def test_completed_streamed_skips_message(self) -> None:
        d, out = _display()
        message = Message(role="assistant", text="The reply.")
        d.print_outcome(
            ExchangeOutcome(status=ExchangeOutcome.COMPLETED, message=message), streamed=True
        )
        assert "The reply." not in out.getvalue()

    def test_edit_results(self) -> None:
        d, out = _display()
        d.print_edit_results([
            EditResult(action="write", file_path="a.py", resolved_path="/p/a.py", status=EditStatus.DONE),
            EditResult(action="delete", file_path="b.py", status=EditStatus.ERROR, error="File not found: b.py"),
        ])
        text = out.getvalue()
        assert "Wrote /p/a.py" in text
        assert "File not found: b.py" in text


class TestTables:
    def test_sessions_empty(self) -> None:
        d, out = _display()
        d.print_sessions([])
        assert "No saved sessions" in out.getvalue()

    def test_sessions(self) -> None:
        d, out = _display()
        session = Session(
            id="abcdef12-3456", title="Refactor",
            messages=[Message(role="user", text="x")],
            created_at="2026-05-01T12:30:00+00:00",
        )
        d.print_sessions([session], active_id="abcdef12-3456")
        text = out.getvalue()
        assert "abcdef12 *" in text
        assert "Refactor" in text
        assert "2026-05-01 12:30:00" in text

    def test_providers(self) -> None:
        d, out = _display()
        d.print_providers(
            [{"name": "openai", "model": "gpt-4o", "streaming": True, "vision": True, "configured": False}],
            active="openai",
        )
        text = out.getvalue()
        assert "openai *" in text
        assert "missing" in text

    def test_index_summary(self) -> None:
        d, out = _display()
        d.print_index_summary(IndexResult(total_files=1, skipped_files=2, root_path="/proj"))
        text = out.getvalue()
        assert "1 file from /proj" in text
        assert "2 skipped" in text
