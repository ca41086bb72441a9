"""Edit applier: carry out write/delete segments from an assistant reply."""

from __future__ import annotations

import asyncio
import fnmatch
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Protocol, runtime_checkable

from assistant_core.edit_protocol import (
    DeleteSegment,
    Segment,
    WriteSegment,
    edit_segments,
)
from assistant_core.models import EditResult, EditStatus

logger = logging.getLogger(__name__)


class FileSystemError(Exception):
    """Raised by a file-system backend when a write or delete fails."""


# ---------------------------------------------------------------------------
# File-system collaborator
# ---------------------------------------------------------------------------


@runtime_checkable
class FileSystemBackend(Protocol):
    """Interface for the file-system effects an edit can request."""

    async def write_file(self, path: str, content: str) -> None: ...

    async def delete_file(self, path: str) -> None: ...


class LocalFileSystem:
    """Applies edits to the local disk. Blocking I/O runs in a worker thread."""

    async def write_file(self, path: str, content: str) -> None:
        await asyncio.to_thread(self._write, path, content)

    async def delete_file(self, path: str) -> None:
        await asyncio.to_thread(self._delete, path)

    @staticmethod
    def _write(path: str, content: str) -> None:
        if not path.strip():
            raise FileSystemError("File path is empty")
        target = Path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as e:
            raise FileSystemError(f"Failed to write '{path}': {e.strerror or e}") from e

    @staticmethod
    def _delete(path: str) -> None:
        if not path.strip():
            raise FileSystemError("File path is empty")
        target = Path(path)
        if not target.exists():
            raise FileSystemError(f"File not found: {path}")
        if target.is_dir():
            raise FileSystemError(f"'{path}' is a directory, not a file")
        try:
            target.unlink()
        except OSError as e:
            raise FileSystemError(f"Failed to delete '{path}': {e.strerror or e}") from e


# ---------------------------------------------------------------------------
# Applier
# ---------------------------------------------------------------------------


RootProvider = Callable[[], "str | None"]
StatusCallback = Callable[[EditResult], None]


class EditApplier:
    """Applies every edit segment of a reply, each tracked to its own status.

    Segments run concurrently. A failing segment is marked ``error`` and
    never blocks or rolls back the others.
    """

    def __init__(
        self,
        fs: FileSystemBackend,
        root_provider: RootProvider | None = None,
        blocked_patterns: list[str] | None = None,
        status_callback: StatusCallback | None = None,
    ) -> None:
        self._fs = fs
        self._root_provider = root_provider or (lambda: None)
        self._blocked = list(blocked_patterns or [])
        self._status_callback = status_callback

    def resolve_path(self, path: str) -> str:
        """Absolute paths are kept; relative ones join the project root."""
        if Path(path).is_absolute():
            return path
        root = self._root_provider()
        if not root:
            return path
        return str(Path(root) / path)

    def is_blocked(self, resolved: str) -> bool:
        name = Path(resolved).name
        for pattern in self._blocked:
            if fnmatch.fnmatch(resolved, pattern):
                return True
            # Bare patterns like "*.env" also match by file name
            if "/" not in pattern and fnmatch.fnmatch(name, pattern):
                return True
        return False

    def _report(self, result: EditResult) -> None:
        if self._status_callback is None:
            return
        try:
            self._status_callback(result)
        except Exception:
            logger.exception("Edit status callback failed")

    async def apply(self, segments: list[Segment]) -> list[EditResult]:
        """Apply all write/delete segments; prose segments are ignored."""
        edits = edit_segments(segments)
        if not edits:
            return []
        return list(await asyncio.gather(*(self._apply_one(seg) for seg in edits)))

    async def _apply_one(self, segment: WriteSegment | DeleteSegment) -> EditResult:
        action = "write" if isinstance(segment, WriteSegment) else "delete"
        result = EditResult(action=action, file_path=segment.path)
        self._report(result)
        try:
            resolved = self.resolve_path(segment.path)
            result.resolved_path = resolved
            if self.is_blocked(resolved):
                raise FileSystemError(f"Blocked write pattern: {segment.path}")
            if isinstance(segment, WriteSegment):
                await self._fs.write_file(resolved, segment.content)
            else:
                await self._fs.delete_file(resolved)
        except Exception as e:
            result.status = EditStatus.ERROR
            result.error = str(e) or e.__class__.__name__
            logger.warning("Edit %s %s failed: %s", action, segment.path, result.error)
        else:
            result.status = EditStatus.DONE
            logger.info("Edit %s %s applied", action, result.resolved_path)
        self._report(result)
        return result
