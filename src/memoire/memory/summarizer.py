"""Per-chat daily conversation summaries.

Summaries are generated by the chat model at most when the cached one has
gone stale, and are stored as Markdown documents with YAML front-matter::

    summaries/<chat>_<date>.md
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone

from memoire.clock import Clock, system_clock
from memoire.llm.base import ChatProvider, ChatRequest, Message, clean_json_response
from memoire.memory.storage import MemoryStorage, sanitize_id

logger = logging.getLogger(__name__)

SUMMARIES_DIR = "summaries"
MIN_MESSAGES = 10
FRESHNESS_HOURS = 24
REGROWTH_MESSAGES = 20
MAX_LIST_ITEMS = 20

_MESSAGE_LINE = re.compile(r"^\*\*(.+?)\*\*:\s*(.+)$")

SUMMARY_SYSTEM_PROMPT = (
    "You are a conversation summarization assistant. Always respond with valid JSON."
)

SUMMARY_PROMPT_TEMPLATE = """\
Summarize the following conversation concisely.

Focus on:
1. Main topics discussed
2. Important decisions or conclusions
3. Key information shared
4. Action items (if any)

Conversation:
{conversation}

Provide your summary in this JSON format:
{{
  "summary": "2-3 sentence overview of the conversation",
  "keyTopics": ["topic1", "topic2", "topic3"],
  "importantDecisions": ["decision1", "decision2"],
  "messageCount": {message_count}
}}

Keep the summary concise but informative."""


@dataclass
class DailySummary:
    chat_id: str
    date: str
    summary: str
    message_count: int
    timestamp: datetime
    key_topics: list[str] = field(default_factory=list)
    important_decisions: list[str] = field(default_factory=list)
    id: str = ""


def parse_messages(content: str) -> list[tuple[str, str]]:
    """(sender, message) pairs from the speaker lines of a daily log."""
    messages = []
    for line in content.split("\n"):
        match = _MESSAGE_LINE.match(line.strip())
        if match:
            messages.append((match.group(1).strip(), match.group(2).strip()))
    return messages


def build_summary_prompt(messages: list[tuple[str, str]]) -> str:
    conversation = "\n".join(f"{sender}: {text}" for sender, text in messages)
    return SUMMARY_PROMPT_TEMPLATE.format(
        conversation=conversation, message_count=len(messages)
    )


def parse_summary_response(response_text: str) -> dict | None:
    """Validated {summary, keyTopics, importantDecisions}, or None."""
    try:
        parsed = json.loads(clean_json_response(response_text))
    except json.JSONDecodeError:
        logger.warning("Failed to parse summary response: %s", response_text[:200])
        return None
    if not isinstance(parsed, dict):
        return None

    summary = parsed.get("summary")
    summary = summary.strip() if isinstance(summary, str) else ""
    if not 10 <= len(summary) <= 5000:
        logger.warning("Summary failed validation (%d chars)", len(summary))
        return None

    def _strings(value) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(v) for v in value if str(v).strip()][:MAX_LIST_ITEMS]

    return {
        "summary": summary,
        "keyTopics": _strings(parsed.get("keyTopics")),
        "importantDecisions": _strings(parsed.get("importantDecisions")),
    }


def _parse_timestamp(value) -> datetime | None:
    if isinstance(value, datetime):
        ts = value
    else:
        try:
            ts = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class ConversationSummarizer:
    """Generate, cache and format per-chat daily summaries."""

    def __init__(
        self,
        storage: MemoryStorage,
        chat: ChatProvider | None,
        enabled: bool = True,
        clock: Clock = system_clock,
        max_tokens: int = 600,
    ) -> None:
        self.storage = storage
        self.chat = chat
        self.enabled = enabled and chat is not None
        self.max_tokens = max_tokens
        self._clock = clock

    def _summary_path(self, chat_id: str, date_str: str) -> str:
        return f"{SUMMARIES_DIR}/{sanitize_id(chat_id)}_{date_str}.md"

    def is_fresh(self, existing: DailySummary, message_count: int) -> bool:
        """Young enough and no material growth since it was generated."""
        age_hours = (self._clock() - existing.timestamp).total_seconds() / 3600
        grown = message_count - existing.message_count
        return age_hours < FRESHNESS_HOURS and grown < REGROWTH_MESSAGES

    async def analyze_and_summarize(self, chat_id: str, daily_content: str) -> DailySummary | None:
        """Summarize a chat's log unless disabled, too short, or already fresh."""
        if not self.enabled:
            return None

        messages = parse_messages(daily_content or "")
        if len(messages) < MIN_MESSAGES:
            return None

        try:
            existing = await self.get_latest_summary(chat_id)
            if existing and self.is_fresh(existing, len(messages)):
                logger.debug("Fresh summary exists for %s, skipping", chat_id)
                return None

            summary = await self._generate_summary(chat_id, messages)
            if summary:
                await self._save_summary(summary)
                logger.info("Created conversation summary for %s (%d messages)", chat_id, len(messages))
            return summary
        except Exception as e:
            logger.error("Failed to analyze conversation %s: %s", chat_id, e)
            return None

    async def _generate_summary(
        self, chat_id: str, messages: list[tuple[str, str]]
    ) -> DailySummary | None:
        response = await self.chat.chat(
            ChatRequest(
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                messages=[Message(role="user", content=build_summary_prompt(messages))],
                max_tokens=self.max_tokens,
            )
        )
        parsed = parse_summary_response(response.content)
        if not parsed:
            return None

        now = self._clock()
        date_str = now.date().isoformat()
        digest = hashlib.md5(f"{chat_id}_{date_str}_{now.timestamp()}".encode()).hexdigest()
        return DailySummary(
            id=f"sum_{digest[:12]}",
            chat_id=chat_id,
            date=date_str,
            summary=parsed["summary"],
            message_count=len(messages),
            timestamp=now,
            key_topics=parsed["keyTopics"],
            important_decisions=parsed["importantDecisions"],
        )

    async def _save_summary(self, summary: DailySummary) -> None:
        await self.storage.write_document(
            self._summary_path(summary.chat_id, summary.date),
            {
                "id": summary.id,
                "chat_id": summary.chat_id,
                "date": summary.date,
                "message_count": summary.message_count,
                "key_topics": summary.key_topics,
                "important_decisions": summary.important_decisions,
                "timestamp": summary.timestamp.isoformat(),
            },
            summary.summary,
        )

    async def _load(self, name: str) -> DailySummary | None:
        doc = await self.storage.read_document(f"{SUMMARIES_DIR}/{name}")
        if doc is None:
            return None
        meta, body = doc
        timestamp = _parse_timestamp(meta.get("timestamp"))
        if timestamp is None or not body.strip():
            return None
        try:
            return DailySummary(
                id=str(meta.get("id", "")),
                chat_id=str(meta["chat_id"]),
                date=str(meta["date"]),
                summary=body.strip(),
                message_count=int(meta.get("message_count", 0)),
                timestamp=timestamp,
                key_topics=list(meta.get("key_topics") or []),
                important_decisions=list(meta.get("important_decisions") or []),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("Ignoring malformed summary %s", name)
            return None

    async def get_all_summaries(self, chat_id: str) -> list[DailySummary]:
        """Every stored summary for this chat, newest first."""
        pattern = re.compile(rf"^{re.escape(sanitize_id(chat_id))}_(\d{{4}}-\d{{2}}-\d{{2}})\.md$")
        summaries = []
        for name in await self.storage.list_files(SUMMARIES_DIR):
            if pattern.match(name):
                summary = await self._load(name)
                if summary:
                    summaries.append(summary)
        summaries.sort(key=lambda s: (s.date, s.timestamp), reverse=True)
        return summaries

    async def get_latest_summary(self, chat_id: str) -> DailySummary | None:
        summaries = await self.get_all_summaries(chat_id)
        return summaries[0] if summaries else None

    async def get_summary_for_context(self, chat_id: str) -> str | None:
        """The latest summary as a prompt-ready section, or None."""
        summary = await self.get_latest_summary(chat_id)
        if not summary:
            return None

        context = f"## Previous Conversation Summary ({summary.date})\n\n{summary.summary}\n"
        if summary.key_topics:
            context += f"\n**Topics:** {', '.join(summary.key_topics)}\n"
        if summary.important_decisions:
            context += "\n**Decisions:**\n"
            context += "".join(f"- {d}\n" for d in summary.important_decisions)
        return context
