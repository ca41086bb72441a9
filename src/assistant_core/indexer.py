"""Project indexer: collect source files as read-only context for prompts."""

from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path

from assistant_core.models import IndexedFile, IndexResult

logger = logging.getLogger(__name__)

MAX_FILE_SIZE_BYTES = 100_000
MAX_FILE_CONTENT_CHARS = 8_000
MAX_TOTAL_FILES = 250

ALLOWED_EXTENSIONS = frozenset({
    # compiled
    "rs", "go", "cpp", "c", "h", "hpp", "cs", "java", "swift", "kt",
    # scripted
    "ts", "tsx", "js", "jsx", "py", "rb", "php",
    # web
    "html", "css", "scss", "sass", "vue", "svelte",
    # config / data
    "toml", "yaml", "yml", "json", "env", "sh", "bash", "zsh",
    # docs
    "md", "mdx", "txt",
})

IGNORED_DIRS = frozenset({
    ".git", "node_modules", "target", ".next", "dist", "build",
    "__pycache__", ".venv", "venv", ".idea", ".vscode", ".cargo",
    "out", ".turbo", "coverage", ".pytest_cache",
})


class IndexerError(Exception):
    """Raised when a directory cannot be indexed."""


def is_ignored_dir(name: str) -> bool:
    """Known noise directories and any hidden directory."""
    return name in IGNORED_DIRS or (name.startswith(".") and len(name) > 1)


def _extension(path: Path) -> str:
    return path.suffix[1:].lower() if path.suffix else ""


def scan_directory(dir_path: str | Path) -> IndexResult:
    """Walk ``dir_path`` and read every eligible source file.

    Files are skipped (and counted) when their extension is not allowed,
    when they exceed the size limit, when they cannot be decoded as UTF-8,
    or once the file-count limit is reached.
    """
    root = Path(dir_path).expanduser()
    if not root.is_dir():
        raise IndexerError(f"'{dir_path}' is not a valid directory")

    files: list[IndexedFile] = []
    skipped = 0

    for current, dirs, names in os.walk(root):
        # Prune ignored directories in place
        dirs[:] = sorted(d for d in dirs if not is_ignored_dir(d))
        current_path = Path(current)

        for name in sorted(names):
            if len(files) >= MAX_TOTAL_FILES:
                skipped += 1
                continue

            path = current_path / name
            ext = _extension(path)
            if ext not in ALLOWED_EXTENSIONS:
                skipped += 1
                continue

            try:
                size = path.stat().st_size
            except OSError:
                skipped += 1
                continue
            if size > MAX_FILE_SIZE_BYTES:
                skipped += 1
                continue

            try:
                raw = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                skipped += 1
                continue

            truncated = len(raw) > MAX_FILE_CONTENT_CHARS
            content = raw
            if truncated:
                content = (
                    f"{raw[:MAX_FILE_CONTENT_CHARS]}\n\n"
                    f"[… truncated at {MAX_FILE_CONTENT_CHARS} chars …]"
                )

            files.append(IndexedFile(
                path=path.relative_to(root).as_posix(),
                content=content,
                size_bytes=size,
                extension=ext,
                truncated=truncated,
            ))

    logger.info("Indexed %d files from '%s' (%d skipped)", len(files), root, skipped)
    return IndexResult(
        files=files,
        total_files=len(files),
        skipped_files=skipped,
        root_path=str(root),
    )


def format_context_block(file: IndexedFile, max_chars: int) -> str:
    return f"### {file.path}\n```{file.extension}\n{file.content[:max_chars]}\n```"


class ProjectIndexer:
    """Holds the currently indexed project and renders its context blocks."""

    def __init__(self) -> None:
        self._result: IndexResult | None = None

    @property
    def root(self) -> str | None:
        """Root directory of the indexed project, or None."""
        return self._result.root_path if self._result else None

    @property
    def files(self) -> list[IndexedFile]:
        return list(self._result.files) if self._result else []

    @property
    def result(self) -> IndexResult | None:
        return self._result

    async def index_directory(self, dir_path: str | Path) -> IndexResult:
        """Index ``dir_path`` in a worker thread and make it the current project."""
        result = await asyncio.to_thread(scan_directory, dir_path)
        self._result = result
        return result

    def context_blocks(self, max_files: int = 20, max_chars: int = 3000) -> list[str]:
        return [format_context_block(f, max_chars) for f in self.files[:max_files]]

    def clear(self) -> None:
        self._result = None
