"""Assemble per-request prompt context from every memory tier.

Only the sender's private ledger and this chat's own daily logs are read;
the global ledger is never injected into a prompt.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from memoire.llm.base import Message

if TYPE_CHECKING:
    from memoire.memory.daily_notes import DailyNotes
    from memoire.memory.long_term import LongTermMemory
    from memoire.memory.semantic import SemanticMemory
    from memoire.memory.summarizer import ConversationSummarizer

logger = logging.getLogger(__name__)

USER_MEMORY_CHARS = 2000
MAX_IMPORTANT = 5
SEMANTIC_TOP_K = 3
SEMANTIC_THRESHOLD = 0.7
DAILY_LOOKBACK = 3
DAILY_BLOCKS = 5
DAILY_CHARS = 3000
HISTORY_LOOKBACK = 3

_TAGGED = re.compile(r"^\*\*(.+?)\*\*:\s?(.*)$")


@dataclass
class BuiltContext:
    system_context: str
    recent_messages: list[Message] = field(default_factory=list)


class ContextBuilder:
    """Façade over the memory tiers for one request."""

    def __init__(
        self,
        daily_notes: DailyNotes,
        long_term: LongTermMemory,
        semantic: SemanticMemory | None = None,
        summarizer: ConversationSummarizer | None = None,
    ) -> None:
        self.daily_notes = daily_notes
        self.long_term = long_term
        self.semantic = semantic
        self.summarizer = summarizer

    async def build_context(
        self,
        chat_id: str,
        sender_id: str,
        sender_name: str = "",
        is_group: bool = False,
        group_name: str | None = None,
        max_messages: int = 10,
        include_long_term: bool = True,
        include_daily: bool = True,
        query: str | None = None,
        include_summary: bool = False,
    ) -> BuiltContext:
        """Prompt context for one request by ``sender_id`` in ``chat_id``.

        Sections with nothing to say are left out entirely; an empty result
        has an empty ``system_context``.
        """
        parts: list[str] = []

        memory_sections: list[str] = []
        if include_long_term:
            memory_sections += await self._long_term_sections(sender_id)
        if query:
            semantic_section = await self._semantic_section(query, sender_id, chat_id)
            if semantic_section:
                memory_sections.append(semantic_section)
        if memory_sections:
            parts.append("# Memory Context\n\n" + "\n\n".join(memory_sections))

        if include_daily:
            daily = await self._daily_section(chat_id)
            if daily:
                parts.append(daily)

        if include_summary and self.summarizer is not None:
            summary = await self.summarizer.get_summary_for_context(chat_id)
            if summary:
                parts.append(summary.rstrip())

        logger.debug(
            "Built context for %s in %s (%s): %d sections",
            sender_name or sender_id,
            group_name or chat_id,
            "group" if is_group else "dm",
            len(parts),
        )
        recent = await self.extract_recent_messages(chat_id, max_messages)
        return BuiltContext(system_context="\n\n".join(parts), recent_messages=recent)

    async def _long_term_sections(self, sender_id: str) -> list[str]:
        sections = []
        user_memories = await self.long_term.get_user_memories(sender_id)
        if user_memories:
            sections.append(f"## About This User\n{user_memories[:USER_MEMORY_CHARS]}")

        important = await self.long_term.get_user_high_importance_memories(sender_id)
        if important:
            sections.append("## Important Memories\n" + "\n".join(important[:MAX_IMPORTANT]))
        return sections

    async def _semantic_section(self, query: str, sender_id: str, chat_id: str) -> str | None:
        if self.semantic is None or not self.semantic.enabled:
            return None
        try:
            results = await self.semantic.search(
                query,
                top_k=SEMANTIC_TOP_K,
                threshold=SEMANTIC_THRESHOLD,
                sender_id=sender_id,
                chat_id=chat_id,
            )
        except Exception as e:
            logger.warning("Semantic memory search failed (non-critical): %s", e)
            return None
        if not results:
            return None
        lines = [f"- {r.text} (relevance: {round(r.score * 100)}%)" for r in results]
        return "## Related Memories\n" + "\n".join(lines)

    async def _daily_section(self, chat_id: str) -> str | None:
        conversations = await self.daily_notes.search_conversations(chat_id, DAILY_LOOKBACK)
        if not conversations:
            return None
        recent = "\n".join(conversations[-DAILY_BLOCKS:])
        return f"# Recent Conversations\n\n{recent[-DAILY_CHARS:]}"

    async def extract_recent_messages(self, chat_id: str, max_messages: int) -> list[Message]:
        """Up to ``max_messages`` turns re-parsed from this chat's logs, oldest first."""
        assistant = self.daily_notes.assistant_name
        messages: list[Message] = []
        for block in await self.daily_notes.search_conversations(chat_id, HISTORY_LOOKBACK):
            current: Message | None = None
            for line in block.split("\n")[1:]:
                if line.startswith("<!--"):
                    continue
                match = _TAGGED.match(line)
                if match:
                    role = "assistant" if match.group(1) == assistant else "user"
                    current = Message(role=role, content=match.group(2))
                    messages.append(current)
                elif current is not None and line.strip():
                    text = line[1:] if line.startswith("\\") else line
                    current.content += "\n" + text
        if max_messages <= 0:
            return []
        return messages[-max_messages:]

    async def get_summary_for_chat(self, chat_id: str) -> str:
        """Diagnostic line set; not meant for prompting."""
        conversations = await self.daily_notes.search_conversations(chat_id, 7)
        has_memories = bool(await self.long_term.get_facts())
        return (
            f"Chat: {chat_id}\n"
            f"Recent conversations: {len(conversations)} in the last 7 days\n"
            f"Has stored memories: {'Yes' if has_memories else 'No'}"
        )
