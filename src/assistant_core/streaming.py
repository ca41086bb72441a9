"""Server-sent event decoding for streaming chat completions."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable, Iterator
from typing import Any

DATA_PREFIX = "data:"
DONE_SIGNAL = "[DONE]"


def parse_sse_line(line: str) -> dict[str, Any] | None | bool:
    """Decode one SSE line.

    Returns the JSON object for a data line, ``True`` for the done signal,
    and ``None`` for anything to skip (blank lines, comments, ``event:``
    lines, non-object or malformed payloads).
    """
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if not line.startswith(DATA_PREFIX):
        return None
    payload = line[len(DATA_PREFIX):].strip()
    if payload == DONE_SIGNAL:
        return True
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def parse_sse_lines(lines: Iterable[str]) -> Iterator[dict[str, Any]]:
    """Yield JSON chunks from SSE text lines, stopping at ``[DONE]``."""
    for line in lines:
        parsed = parse_sse_line(line)
        if parsed is True:
            return
        if parsed:
            yield parsed


async def aparse_sse_lines(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    """Async variant of ``parse_sse_lines`` for ``httpx.Response.aiter_lines()``."""
    async for line in lines:
        parsed = parse_sse_line(line)
        if parsed is True:
            return
        if parsed:
            yield parsed
