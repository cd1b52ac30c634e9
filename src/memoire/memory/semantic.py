"""Meaning-based recall over memory text.

The index is an in-process list of embedded snippets, derived from the
ledgers and daily logs and snapshotted to ``semantic-vectors.json`` for a warm
start. Results are advisory: callers degrade gracefully when the embedding
provider fails.

Privacy: an entry tagged with a sender (or chat) is only ever compared
against queries scoped to that same sender (or chat). The filter runs before
scoring, so no similarity value can pull another participant's entry in.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

import numpy as np

from memoire.clock import Clock, system_clock
from memoire.llm.base import EmbeddingProvider
from memoire.memory.daily_notes import CHAT_TAG, DAILY_DIR, DATE_PATTERN, split_entries
from memoire.memory.long_term import LongTermMemory
from memoire.memory.storage import MemoryStorage

logger = logging.getLogger(__name__)

VECTOR_FILE = "semantic-vectors.json"
VECTOR_STORE_VERSION = 1
MAX_EMBED_CHARS = 8000
MIN_TEXT_LENGTH = 10
SIMILARITY_THRESHOLD = 0.7
MAX_ENTRIES = 10000
SNIPPET_CHARS = 500
BACKFILL_DAYS = 7


@dataclass
class SemanticIndexEntry:
    id: str
    text: str
    source: str
    embedding: list[float]
    metadata: dict = field(default_factory=dict)


@dataclass
class SemanticSearchResult:
    text: str
    score: float
    source: str
    metadata: dict


def cosine_scores(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity of ``query`` against each row of ``matrix``."""
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
    dots = matrix @ query
    return np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)


class SemanticMemory:
    """Embedding index with privacy-filtered similarity search."""

    def __init__(
        self,
        storage: MemoryStorage,
        embedder: EmbeddingProvider | None,
        long_term: LongTermMemory | None = None,
        enabled: bool = True,
        clock: Clock = system_clock,
        max_entries: int = MAX_ENTRIES,
    ) -> None:
        self.storage = storage
        self.embedder = embedder
        self.long_term = long_term
        self.enabled = enabled and embedder is not None
        self.max_entries = max_entries
        self._clock = clock
        self.entries: list[SemanticIndexEntry] = []
        self.last_updated: datetime = clock()
        self._initialized = False

    # ── Snapshot ──────────────────────────────────────────────

    async def initialize(self) -> None:
        """Load the snapshot once. A missing or mismatched snapshot starts empty."""
        if not self.enabled or self._initialized:
            return
        data = await self.storage.read_json(VECTOR_FILE)
        if isinstance(data, dict) and data.get("version") == VECTOR_STORE_VERSION:
            try:
                self.entries = [SemanticIndexEntry(**e) for e in data.get("entries", [])]
            except TypeError as e:
                logger.warning("Discarding malformed vector snapshot: %s", e)
                self.entries = []
        elif data is not None:
            logger.warning("Vector store version mismatch, starting fresh")
        self._initialized = True
        logger.info("Semantic memory initialized (%d entries)", len(self.entries))

    async def save(self) -> None:
        await self.storage.write_json(
            VECTOR_FILE,
            {
                "version": VECTOR_STORE_VERSION,
                "last_updated": self.last_updated.isoformat(),
                "entries": [asdict(e) for e in self.entries],
            },
        )

    # ── Embedding ─────────────────────────────────────────────

    async def generate_embedding(self, text: str) -> list[float]:
        if self.embedder is None:
            raise RuntimeError("No embedding provider configured")
        return await self.embedder.embed(text[:MAX_EMBED_CHARS])

    # ── Writes ────────────────────────────────────────────────

    def _has_duplicate(self, text: str, source: str, metadata: dict) -> bool:
        for entry in self.entries:
            if (
                entry.text == text
                and entry.source == source
                and entry.metadata.get("sender_id") == metadata.get("sender_id")
                and entry.metadata.get("chat_id") == metadata.get("chat_id")
            ):
                return True
        return False

    async def add_memory(
        self,
        text: str,
        source: str,
        metadata: dict | None = None,
        persist: bool = True,
    ) -> SemanticIndexEntry | None:
        """Embed and index ``text``. Skips short or duplicate text; never raises."""
        if not self.enabled or not text or len(text) < MIN_TEXT_LENGTH:
            return None
        meta = {k: v for k, v in (metadata or {}).items() if v is not None}
        if self._has_duplicate(text, source, meta):
            logger.debug("Identical %s entry already indexed, skipping", source)
            return None

        try:
            embedding = await self.generate_embedding(text)
        except Exception as e:
            logger.warning("Failed to add semantic memory: %s", e)
            return None

        meta.setdefault("timestamp", self._clock().isoformat())
        entry = SemanticIndexEntry(
            id=f"vec_{uuid.uuid4().hex[:12]}",
            text=text,
            source=source,
            embedding=[float(x) for x in embedding],
            metadata=meta,
        )
        self.entries.append(entry)
        self.last_updated = self._clock()

        if len(self.entries) > self.max_entries:
            self.entries.sort(key=lambda e: e.metadata.get("timestamp", ""), reverse=True)
            evicted = len(self.entries) - self.max_entries
            del self.entries[self.max_entries:]
            logger.info("Evicted %d old semantic memory entries", evicted)

        if persist:
            await self.save()
        logger.debug("Added semantic memory %s (%s)", entry.id, source)
        return entry

    # ── Search ────────────────────────────────────────────────

    def _visible(
        self,
        entry: SemanticIndexEntry,
        sender_id: str | None,
        chat_id: str | None,
        source: str | None,
    ) -> bool:
        if source and entry.source != source:
            return False
        owner = entry.metadata.get("sender_id")
        if owner is not None and owner != sender_id:
            return False
        entry_chat = entry.metadata.get("chat_id")
        if chat_id is not None and entry_chat is not None and entry_chat != chat_id:
            return False
        return True

    async def search(
        self,
        query: str,
        top_k: int = 5,
        threshold: float = SIMILARITY_THRESHOLD,
        sender_id: str | None = None,
        chat_id: str | None = None,
        source: str | None = None,
    ) -> list[SemanticSearchResult]:
        """Top entries at or above ``threshold``, best first.

        Entries owned by a sender other than ``sender_id`` are excluded before
        ranking; unowned entries are shared. Embedding errors propagate.
        """
        if not self.enabled:
            return []
        candidates = [e for e in self.entries if self._visible(e, sender_id, chat_id, source)]
        if not candidates:
            return []

        query_vec = np.asarray(await self.generate_embedding(query), dtype=float)
        dim = query_vec.shape[0]
        candidates = [e for e in candidates if len(e.embedding) == dim]
        if not candidates:
            return []

        matrix = np.asarray([e.embedding for e in candidates], dtype=float)
        scores = cosine_scores(query_vec, matrix)
        ranked = sorted(
            ((float(s), e) for s, e in zip(scores, candidates) if s >= threshold),
            key=lambda pair: pair[0],
            reverse=True,
        )[:top_k]

        logger.debug("Semantic search %r → %d results", query[:50], len(ranked))
        return [
            SemanticSearchResult(text=e.text, score=round(s, 2), source=e.source, metadata=e.metadata)
            for s, e in ranked
        ]

    async def find_similar(
        self,
        text: str,
        top_k: int = 3,
        sender_id: str | None = None,
        chat_id: str | None = None,
    ) -> list[SemanticSearchResult]:
        """Near neighbours of ``text`` under a looser threshold than ``search``."""
        return await self.search(text, top_k=top_k, threshold=0.6, sender_id=sender_id, chat_id=chat_id)

    # ── Backfill ──────────────────────────────────────────────

    async def index_existing_memories(self) -> int:
        """Backfill from the global ledger and the last week of daily logs.

        Returns the number of entries added. Identical entries already in the
        index are skipped, so repeated runs do not double-count.
        """
        if not self.enabled:
            return 0
        logger.info("Indexing existing memories...")
        added = 0
        try:
            if self.long_term is not None:
                for fact in await self.long_term.get_facts():
                    text = f"{fact.subject}: {' '.join(fact.content.split())}"[:SNIPPET_CHARS]
                    owners = fact.related_participant_ids or [None]
                    for owner in owners:
                        entry = await self.add_memory(
                            text,
                            "long-term",
                            {"sender_id": owner, "category": fact.category},
                            persist=False,
                        )
                        added += entry is not None

            cutoff = (self._clock() - timedelta(days=BACKFILL_DAYS)).date().isoformat()
            for name in await self.storage.list_files(DAILY_DIR):
                match = DATE_PATTERN.search(name)
                if not match or match.group(1) < cutoff:
                    continue
                notes = await self.storage.read(f"{DAILY_DIR}/{name}")
                for block in split_entries(notes or ""):
                    tag = CHAT_TAG.search(block)
                    if tag is None:
                        continue
                    lines = [
                        ln.strip() for ln in block.split("\n")[1:]
                        if ln.strip() and not ln.startswith("<!--")
                    ]
                    entry = await self.add_memory(
                        " ".join(lines)[:SNIPPET_CHARS],
                        "daily",
                        {
                            "chat_id": tag.group(1),
                            "sender_id": tag.group(2),
                            "timestamp": match.group(1),
                        },
                        persist=False,
                    )
                    added += entry is not None
        except Exception as e:
            logger.error("Failed to index existing memories: %s", e)
        finally:
            if added:
                await self.save()
        logger.info("Finished indexing memories (+%d, total %d)", added, len(self.entries))
        return added

    def get_stats(self) -> dict:
        return {"total_entries": len(self.entries), "last_updated": self.last_updated}
