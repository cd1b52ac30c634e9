"""Curated durable facts: one global ledger plus one private ledger per participant.

Ledgers are human-readable Markdown and the source of truth. Each ledger is
parsed once into a typed index (``LedgerEntry``) that is kept current on
every append, so filtered queries do not re-parse the file.

Layout::

    MEMORY.md            # global ledger, every fact
    users/<participant>.md   # private ledger, facts related to that participant
"""

from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Literal

from memoire.clock import Clock, system_clock
from memoire.memory.storage import MemoryStorage, sanitize_id

logger = logging.getLogger(__name__)

MemoryCategory = Literal["fact", "preference", "project", "relationship", "event", "other"]
Importance = Literal["low", "medium", "high"]

CATEGORIES: tuple[str, ...] = ("fact", "preference", "project", "relationship", "event", "other")
IMPORTANCE_LEVELS: tuple[str, ...] = ("low", "medium", "high")

MEMORY_FILE = "MEMORY.md"
USERS_DIR = "users"
SECTION_SPLIT = "\n### "

GLOBAL_HEADER = (
    "# Long-Term Memory\n\n"
    "This file contains curated, important memories that should be remembered "
    "across conversations.\n\n"
)

_FIELD = re.compile(r"^- \*\*(ID|Category|Importance|Date)\*\*:\s*(.*)$")


@dataclass
class LongTermFact:
    """A durable fact. Never edited in place; corrections supersede by id."""

    subject: str
    content: str
    category: str = "fact"
    importance: str = "medium"
    related_participant_ids: list[str] = field(default_factory=list)
    id: str = ""
    timestamp: datetime | None = None
    supersedes: str | None = None


@dataclass
class LedgerEntry:
    fact: LongTermFact
    block: str


def generate_id() -> str:
    return f"mem_{uuid.uuid4()}"


def _one_line(text: str) -> str:
    return " ".join(text.split())


def _escape_content(text: str) -> str:
    lines = text.strip().replace("\r\n", "\n").split("\n")
    return "\n".join("\\" + line if line.startswith(("#", "---")) else line for line in lines)


def format_fact(fact: LongTermFact) -> str:
    day = fact.timestamp.date().isoformat() if fact.timestamp else ""
    lines = [
        "",
        f"### {_one_line(fact.subject)}",
        f"- **ID**: {fact.id}",
        f"- **Category**: {fact.category}",
        f"- **Importance**: {fact.importance}",
        f"- **Date**: {day}",
    ]
    if fact.related_participant_ids:
        lines.append(f"Related: {', '.join(fact.related_participant_ids)}")
    if fact.supersedes:
        lines.append(f"Supersedes: {fact.supersedes}")
    lines += ["", _escape_content(fact.content), "", "---", ""]
    return "\n".join(lines)


def parse_block(section: str) -> LedgerEntry:
    """Parse one ``### subject`` block (without its leading ``### ``).

    Metadata is only read from the header lines before the first blank line;
    everything after it is content, whatever it looks like.
    """
    lines = section.split("\n")
    fact = LongTermFact(subject=lines[0].strip(), content="")
    body: list[str] = []
    in_header = True
    for line in lines[1:]:
        if in_header and not line.strip():
            in_header = False
            continue
        if not in_header:
            if line.strip() == "---":
                break
            body.append(line)
            continue
        match = _FIELD.match(line)
        if match:
            key, value = match.group(1), match.group(2).strip()
            if key == "ID":
                fact.id = value
            elif key == "Category":
                fact.category = value
            elif key == "Importance":
                fact.importance = value
            elif key == "Date":
                try:
                    fact.timestamp = datetime.fromisoformat(value).replace(tzinfo=timezone.utc)
                except ValueError:
                    pass
        elif line.startswith("Related:"):
            ids = line[len("Related:"):].split(",")
            fact.related_participant_ids = [i.strip() for i in ids if i.strip()]
        elif line.startswith("Supersedes:"):
            fact.supersedes = line[len("Supersedes:"):].strip() or None
        elif line.strip() == "---":
            break
        else:
            body.append(line)
    fact.content = "\n".join(body).strip()
    return LedgerEntry(fact=fact, block=f"### {section}".rstrip("\n"))


def parse_ledger(text: str) -> list[LedgerEntry]:
    return [parse_block(section) for section in text.split(SECTION_SPLIT)[1:]]


class LongTermMemory:
    """Append-only fact ledgers with a typed read index."""

    def __init__(self, storage: MemoryStorage, clock: Clock = system_clock) -> None:
        self.storage = storage
        self._clock = clock
        self._index: dict[str, list[LedgerEntry]] = {}
        self._writes: dict[str, int] = {}

    # ── Paths ─────────────────────────────────────────────────

    def user_path(self, participant_id: str) -> str:
        return f"{USERS_DIR}/{sanitize_id(participant_id)}.md"

    # ── Index ─────────────────────────────────────────────────

    async def _entries(self, path: str) -> list[LedgerEntry]:
        """Index for a ledger, parsed from disk on first use."""
        while path not in self._index:
            generation = self._writes.get(path, 0)
            text = await self.storage.read(path)
            # An append that finished during the read would be missing from it.
            if self._writes.get(path, 0) == generation:
                self._index[path] = parse_ledger(text) if text else []
        return self._index[path]

    async def _append(self, path: str, header: str, fact: LongTermFact) -> None:
        block = format_fact(fact)
        await self.storage.append(path, block, header=header)
        self._writes[path] = self._writes.get(path, 0) + 1
        if path in self._index:
            self._index[path].append(LedgerEntry(fact=fact, block=block.strip("\n")))

    @staticmethod
    def _live(entries: list[LedgerEntry]) -> list[LedgerEntry]:
        superseded = {e.fact.supersedes for e in entries if e.fact.supersedes}
        return [e for e in entries if e.fact.id not in superseded]

    # ── Writes ────────────────────────────────────────────────

    async def add_memory(
        self,
        subject: str,
        content: str,
        category: str = "fact",
        importance: str = "medium",
        related_participant_ids: list[str] | None = None,
        supersedes: str | None = None,
    ) -> LongTermFact:
        """Record a fact in the global ledger and every related private ledger."""
        if category not in CATEGORIES:
            raise ValueError(f"Unknown memory category: {category!r}")
        if importance not in IMPORTANCE_LEVELS:
            raise ValueError(f"Unknown importance: {importance!r}")

        related: list[str] = []
        for pid in related_participant_ids or []:
            if pid and pid not in related:
                related.append(pid)

        fact = LongTermFact(
            subject=subject,
            content=content,
            category=category,
            importance=importance,
            related_participant_ids=related,
            id=generate_id(),
            timestamp=self._clock(),
            supersedes=supersedes,
        )

        await self._append(MEMORY_FILE, GLOBAL_HEADER, fact)
        for pid in related:
            await self._append(self.user_path(pid), f"# Memories for {pid}\n\n", fact)

        logger.info("Stored memory %s (%s/%s)", fact.id, category, importance)
        return fact

    async def supersede_memory(self, memory_id: str, **changes) -> LongTermFact | None:
        """Append a corrected copy of ``memory_id`` that hides the original.

        ``changes`` may override subject, content, category, importance or
        related_participant_ids. Returns None when the id is unknown.
        """
        original = await self.get_memory(memory_id)
        if original is None:
            return None
        updated = replace(original, **changes)
        return await self.add_memory(
            subject=updated.subject,
            content=updated.content,
            category=updated.category,
            importance=updated.importance,
            related_participant_ids=updated.related_participant_ids,
            supersedes=memory_id,
        )

    # ── Reads ─────────────────────────────────────────────────

    async def get_all_memories(self) -> str | None:
        return await self.storage.read(MEMORY_FILE)

    async def get_user_memories(self, participant_id: str) -> str | None:
        return await self.storage.read(self.user_path(participant_id))

    async def get_memory(self, memory_id: str) -> LongTermFact | None:
        for entry in await self._entries(MEMORY_FILE):
            if entry.fact.id == memory_id:
                return entry.fact
        return None

    async def search_memories(self, query: str, participant_id: str | None = None) -> list[str]:
        """Blocks containing ``query`` (case-insensitive), in ledger order."""
        path = self.user_path(participant_id) if participant_id else MEMORY_FILE
        q = query.lower()
        return [e.block for e in self._live(await self._entries(path)) if q in e.block.lower()]

    async def get_memories_by_category(self, category: str) -> list[str]:
        entries = self._live(await self._entries(MEMORY_FILE))
        return [e.block for e in entries if e.fact.category == category]

    async def get_high_importance_memories(self) -> list[str]:
        entries = self._live(await self._entries(MEMORY_FILE))
        return [e.block for e in entries if e.fact.importance == "high"]

    async def get_user_high_importance_memories(self, participant_id: str) -> list[str]:
        """High-importance blocks from this participant's private ledger only."""
        entries = self._live(await self._entries(self.user_path(participant_id)))
        return [e.block for e in entries if e.fact.importance == "high"]

    async def get_facts(self, participant_id: str | None = None) -> list[LongTermFact]:
        """Typed view of a ledger with superseded facts removed."""
        path = self.user_path(participant_id) if participant_id else MEMORY_FILE
        return [e.fact for e in self._live(await self._entries(path))]
