"""Memoire engine: one wired instance graph over every memory tier.

Responsibilities:
1. Build storage, ledgers, index, summarizer and extractor from one config
2. Log completed turns and mine them for facts without blocking the reply
3. Assemble per-request prompt context
4. Run maintenance (rotation, summaries) on demand for the scheduler
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from memoire.clock import Clock, system_clock
from memoire.config import MemoireConfig
from memoire.memory.context import BuiltContext, ContextBuilder
from memoire.memory.daily_notes import DAILY_DIR, DailyConversationTurn, DailyNotes
from memoire.memory.extractor import AutoMemoryExtractor
from memoire.memory.long_term import USERS_DIR, LongTermFact, LongTermMemory
from memoire.memory.rotation import ARCHIVE_DIR, MemoryRotation
from memoire.memory.semantic import SemanticMemory
from memoire.memory.storage import MemoryStorage
from memoire.memory.summarizer import SUMMARIES_DIR, ConversationSummarizer, DailySummary

if TYPE_CHECKING:
    from memoire.llm.base import ChatProvider, EmbeddingProvider

logger = logging.getLogger(__name__)


class MemoryEngine:
    """Façade exposing the memory operations a conversational agent needs."""

    def __init__(
        self,
        config: MemoireConfig,
        chat: ChatProvider | None = None,
        embedder: EmbeddingProvider | None = None,
        clock: Clock = system_clock,
    ) -> None:
        self.config = config
        self.clock = clock
        features = config.features
        self.storage = MemoryStorage(config.memory_dir)
        self.daily_notes = DailyNotes(self.storage, config.assistant_name, clock=clock)
        self.long_term = LongTermMemory(self.storage, clock=clock)
        self.semantic = SemanticMemory(
            self.storage,
            embedder,
            long_term=self.long_term,
            enabled=features.semantic_memory,
            clock=clock,
        )
        self.rotation = MemoryRotation(self.storage, config.retention_days, clock=clock)
        self.summarizer = ConversationSummarizer(
            self.storage,
            chat,
            enabled=features.conversation_summaries,
            clock=clock,
        )
        self.extractor = AutoMemoryExtractor(
            chat,
            self.long_term,
            semantic=self.semantic if self.semantic.enabled else None,
            enabled=features.auto_memory_extraction,
            clock=clock,
        )
        self.context = ContextBuilder(
            self.daily_notes,
            self.long_term,
            semantic=self.semantic,
            summarizer=self.summarizer,
        )
        self._background: set[asyncio.Task] = set()

    # ── Lifecycle ─────────────────────────────────────────────

    async def initialize(self) -> None:
        """Create the storage tree, rotate expired logs, warm the semantic index."""
        for directory in ("", DAILY_DIR, ARCHIVE_DIR, USERS_DIR, SUMMARIES_DIR):
            await self.storage.ensure_dir(directory)

        try:
            await self.rotation.rotate_old_daily_notes()
        except Exception as e:
            logger.error("Startup rotation failed (non-fatal): %s", e)

        if self.semantic.enabled:
            await self.semantic.initialize()
            await self.semantic.index_existing_memories()

        logger.info(
            "Memory engine ready at %s (semantic=%s, extraction=%s, summaries=%s)",
            self.storage.base_path,
            self.semantic.enabled,
            self.extractor.enabled,
            self.summarizer.enabled,
        )

    async def drain(self) -> None:
        """Wait for every background job started so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def stop(self) -> None:
        await self.drain()
        if self.semantic.enabled and self.semantic.entries:
            await self.semantic.save()
        logger.info("Memory engine stopped")

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)
        return task

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background job %s failed: %s", task.get_name(), exc)

    # ── Turns ─────────────────────────────────────────────────

    async def log_conversation(self, turn: DailyConversationTurn) -> None:
        await self.daily_notes.log_conversation(turn)

    async def record_turn(self, turn: DailyConversationTurn) -> asyncio.Task | None:
        """Log ``turn`` and start fact mining in the background.

        Returns the background task (or None when nothing was started), so
        callers never wait on the model before replying.
        """
        await self.log_conversation(turn)
        if not (self.extractor.enabled or self.semantic.enabled):
            return None
        return self._spawn(self._after_turn(turn), name=f"after-turn:{turn.chat_id}")

    async def _after_turn(self, turn: DailyConversationTurn) -> None:
        if self.semantic.enabled:
            await self.semantic.add_memory(
                f"{turn.sender_name}: {turn.user_message}",
                "daily",
                {
                    "chat_id": turn.chat_id,
                    "sender_id": turn.sender_id,
                    "timestamp": turn.timestamp.isoformat(),
                },
            )
        if self.extractor.enabled:
            await self.extractor.process_conversation(turn)

    # ── Long-term ─────────────────────────────────────────────

    async def add_memory(
        self,
        subject: str,
        content: str,
        category: str = "fact",
        importance: str = "medium",
        related_participant_ids: list[str] | None = None,
    ) -> LongTermFact:
        """Record a fact explicitly; indexed semantically when enabled."""
        fact = await self.long_term.add_memory(
            subject=subject,
            content=content,
            category=category,
            importance=importance,
            related_participant_ids=related_participant_ids,
        )
        if self.semantic.enabled:
            owners = fact.related_participant_ids or [None]
            for owner in owners:
                await self.semantic.add_memory(
                    f"{fact.subject}: {fact.content}",
                    "long-term",
                    {"sender_id": owner, "category": fact.category},
                )
        return fact

    async def search_memories(self, query: str, participant_id: str | None = None) -> list[str]:
        return await self.long_term.search_memories(query, participant_id)

    # ── Context ───────────────────────────────────────────────

    async def get_context(
        self,
        chat_id: str,
        sender_id: str,
        sender_name: str = "",
        is_group: bool = False,
        group_name: str | None = None,
        max_messages: int = 10,
        query: str | None = None,
        include_summary: bool = False,
    ) -> BuiltContext:
        return await self.context.build_context(
            chat_id,
            sender_id,
            sender_name,
            is_group,
            group_name,
            max_messages=max_messages,
            query=query,
            include_summary=include_summary,
        )

    async def get_chat_summary(self, chat_id: str) -> str:
        return await self.context.get_summary_for_chat(chat_id)

    # ── Maintenance ───────────────────────────────────────────

    async def summarize_chat(self, chat_id: str) -> DailySummary | None:
        """Summarize today's log for ``chat_id`` unless a fresh summary exists."""
        notes = await self.daily_notes.get_todays_notes(chat_id)
        if not notes:
            return None
        return await self.summarizer.analyze_and_summarize(chat_id, notes)

    async def summarize_active_chats(self) -> int:
        if not self.summarizer.enabled:
            return 0
        created = 0
        for chat_id in await self.daily_notes.active_chats():
            if await self.summarize_chat(chat_id):
                created += 1
        return created

    async def rotate(self) -> int:
        return await self.rotation.rotate_old_daily_notes()
