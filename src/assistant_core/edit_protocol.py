"""Edit protocol: split assistant replies into prose, file-write and file-delete segments.

Wire format:

    <<<FILE:path/to/file>>>
    full replacement content, may be empty
    <<<END_FILE>>>

    <<<DELETE_FILE:path/to/file>>>
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Union

FILE_OPEN = "<<<FILE:"
FILE_CLOSE = "<<<END_FILE>>>"
DELETE_OPEN = "<<<DELETE_FILE:"
MARKER_END = ">>>"


# ---------------------------------------------------------------------------
# Segments
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProseSegment:
    """Plain reply text between (or around) edit blocks."""

    text: str

    @property
    def raw(self) -> str:
        return self.text


@dataclass(frozen=True)
class WriteSegment:
    """Create or overwrite ``path`` with ``content``."""

    path: str
    content: str
    raw: str


@dataclass(frozen=True)
class DeleteSegment:
    """Delete ``path``."""

    path: str
    raw: str


Segment = Union[ProseSegment, WriteSegment, DeleteSegment]


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

# Delete markers and write blocks are alternatives of one left-to-right scan.
# The write body is non-greedy so adjacent blocks never merge.
_SEGMENT_PATTERN = re.compile(
    r"<<<DELETE_FILE:([^\n>]+)>>>"
    r"|<<<FILE:([^\n>]+)>>>\n(.*?)<<<END_FILE>>>",
    re.DOTALL,
)


def parse_segments(text: str) -> list[Segment]:
    """Split ``text`` into ordered, non-overlapping segments.

    Concatenating ``segment.raw`` over the result reproduces ``text``
    exactly. A text without markers yields a single prose segment.
    """
    if FILE_OPEN not in text and DELETE_OPEN not in text:
        return [ProseSegment(text)]

    segments: list[Segment] = []
    last = 0
    for match in _SEGMENT_PATTERN.finditer(text):
        if match.start() > last:
            segments.append(ProseSegment(text[last:match.start()]))
        if match.group(1) is not None:
            segments.append(DeleteSegment(
                path=match.group(1).strip(),
                raw=match.group(0),
            ))
        else:
            segments.append(WriteSegment(
                path=match.group(2).strip(),
                content=match.group(3),
                raw=match.group(0),
            ))
        last = match.end()

    if last < len(text) or not segments:
        segments.append(ProseSegment(text[last:]))
    return segments


def edit_segments(segments: list[Segment]) -> list[WriteSegment | DeleteSegment]:
    """Return only the segments that carry a filesystem effect."""
    return [s for s in segments if not isinstance(s, ProseSegment)]


def has_edit_markers(text: str) -> bool:
    """True when ``text`` contains at least one complete write or delete block."""
    return _SEGMENT_PATTERN.search(text) is not None


def strip_edit_markers(text: str) -> str:
    """Remove every edit block, leaving only the prose."""
    return "".join(
        s.text for s in parse_segments(text) if isinstance(s, ProseSegment)
    )


def format_write(path: str, content: str) -> str:
    """Render a write block in wire format."""
    return f"{FILE_OPEN}{path}{MARKER_END}\n{content}{FILE_CLOSE}"


def format_delete(path: str) -> str:
    """Render a delete marker in wire format."""
    return f"{DELETE_OPEN}{path}{MARKER_END}"
