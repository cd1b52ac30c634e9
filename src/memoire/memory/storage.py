"""Durable path → text store under a single storage root.

Reads are unqueued. ``write`` and ``append`` go through the WriteQueue keyed
by the absolute path, so two mutations of one file never interleave. Blocking
filesystem calls run in a worker thread to keep the event loop free.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import frontmatter

from memoire.memory.write_queue import WriteQueue

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9]")


def sanitize_id(raw: str) -> str:
    """Turn an external chat/participant id into a filename-safe token.

    The ``@`` delimiter becomes ``--`` while every other non-alphanumeric
    character becomes ``_``, so ``user@example.net`` and ``user_example.net``
    stay distinct::

        123@s.whatsapp.net → 123--s_whatsapp_net
        user_example.net   → user_example_net
    """
    return "--".join(_UNSAFE_CHARS.sub("_", part) for part in raw.split("@"))


@dataclass
class FileStats:
    size: int
    mtime: datetime
    ctime: datetime


class MemoryStorage:
    """Async text/structured storage rooted at ``base_path``."""

    def __init__(self, base_path: Path, queue: WriteQueue | None = None) -> None:
        self.base_path = Path(base_path)
        self.queue = queue or WriteQueue()

    def full_path(self, relative_path: str) -> Path:
        return self.base_path / relative_path

    async def ensure_dir(self, relative_path: str = "") -> None:
        """Create a directory (and parents) below the root. Idempotent."""
        path = self.full_path(relative_path)
        await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)

    # ── Text ──────────────────────────────────────────────────

    async def read(self, relative_path: str) -> str | None:
        """File content, or None when the file does not exist."""
        path = self.full_path(relative_path)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None

    async def write(self, relative_path: str, content: str) -> None:
        path = self.full_path(relative_path)

        async def _write() -> None:
            await asyncio.to_thread(_write_text, path, content)

        await self.queue.run(str(path.resolve()), _write)

    async def append(self, relative_path: str, content: str, header: str | None = None) -> None:
        """Append ``content``; when the file is missing or empty write ``header`` first.

        The header check and both writes happen inside one queued operation,
        so concurrent first appends still produce exactly one header.
        """
        path = self.full_path(relative_path)

        async def _append() -> None:
            await asyncio.to_thread(_append_text, path, content, header)

        await self.queue.run(str(path.resolve()), _append)

    async def list(self, relative_path: str = "") -> list[str]:
        """Sorted entry names of a directory, [] when it does not exist."""
        path = self.full_path(relative_path)
        try:
            names = await asyncio.to_thread(lambda: [p.name for p in path.iterdir()])
        except FileNotFoundError:
            return []
        return sorted(names)

    async def list_files(self, relative_path: str = "") -> list[str]:
        """Like ``list`` but regular files only."""
        path = self.full_path(relative_path)
        try:
            names = await asyncio.to_thread(
                lambda: [p.name for p in path.iterdir() if p.is_file()]
            )
        except FileNotFoundError:
            return []
        return sorted(names)

    async def exists(self, relative_path: str) -> bool:
        return await asyncio.to_thread(self.full_path(relative_path).exists)

    async def size(self, relative_path: str) -> int:
        """Size in bytes, 0 when the file does not exist."""
        try:
            st = await asyncio.to_thread(self.full_path(relative_path).stat)
        except FileNotFoundError:
            return 0
        return st.st_size

    async def stats(self, relative_path: str) -> FileStats | None:
        try:
            st = await asyncio.to_thread(self.full_path(relative_path).stat)
        except FileNotFoundError:
            return None
        return FileStats(
            size=st.st_size,
            mtime=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            ctime=datetime.fromtimestamp(st.st_ctime, tz=timezone.utc),
        )

    # ── Structured ────────────────────────────────────────────

    async def read_json(self, relative_path: str) -> Any | None:
        """Parsed JSON, or None when missing or malformed."""
        content = await self.read(relative_path)
        if not content:
            return None
        try:
            return json.loads(content)
        except json.JSONDecodeError:
            logger.warning("Malformed JSON in %s, ignoring", relative_path)
            return None

    async def write_json(self, relative_path: str, data: Any) -> None:
        await self.write(relative_path, json.dumps(data, ensure_ascii=False, indent=2))

    async def read_document(self, relative_path: str) -> tuple[dict, str] | None:
        """(front-matter metadata, body) of a Markdown document, or None."""
        content = await self.read(relative_path)
        if not content:
            return None
        try:
            post = frontmatter.loads(content)
        except Exception as e:
            logger.warning("Malformed front-matter in %s: %s", relative_path, e)
            return None
        return dict(post.metadata), post.content.strip()

    async def write_document(self, relative_path: str, metadata: dict, body: str) -> None:
        post = frontmatter.Post(body, **metadata)
        await self.write(relative_path, frontmatter.dumps(post) + "\n")


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _append_text(path: Path, content: str, header: str | None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    needs_header = header is not None and (not path.exists() or path.stat().st_size == 0)
    with path.open("a", encoding="utf-8") as f:
        if needs_header:
            f.write(header)
        f.write(content)
