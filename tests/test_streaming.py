"""Tests for streaming module."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from assistant_core.streaming import aparse_sse_lines, parse_sse_line, parse_sse_lines


class TestParseSseLine:
    def test_data_line(self) -> None:
        assert parse_sse_line('data: {"a": 1}') == {"a": 1}

    def test_no_space_after_prefix(self) -> None:
        assert parse_sse_line('data:{"a": 1}') == {"a": 1}

    def test_done(self) -> None:
        assert parse_sse_line("data: [DONE]") is True

    @pytest.mark.parametrize(
        "line",
        ["", "   ", ": keep-alive", "event: message_start", "data: not json", 'data: "hello"'],
    )
    def test_skipped(self, line: str) -> None:
        assert parse_sse_line(line) is None


class TestParseSseLines:
    def test_basic(self) -> None:
        lines = ['data: {"t": "Hello"}', "", 'data: {"t": " world"}', "data: [DONE]"]
        assert [c["t"] for c in parse_sse_lines(lines)] == ["Hello", " world"]

    def test_done_stops(self) -> None:
        lines = ['data: {"t": "A"}', "data: [DONE]", 'data: {"t": "B"}']
        assert [c["t"] for c in parse_sse_lines(lines)] == ["A"]

    def test_without_done(self) -> None:
        assert len(list(parse_sse_lines(['data: {"x": 1}', 'data: {"x": 2}']))) == 2


class TestAsyncParse:
    @pytest.mark.asyncio
    async def test_async_lines(self) -> None:
        async def lines() -> AsyncIterator[str]:
            for line in ["event: delta", 'data: {"t": "a"}', 'data: {"t": "b"}', "data: [DONE]"]:
                yield line

        chunks = [c async for c in aparse_sse_lines(lines())]
        assert [c["t"] for c in chunks] == ["a", "b"]
