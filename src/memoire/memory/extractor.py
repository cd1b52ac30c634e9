"""Mine durable facts from completed turns.

Runs in the background after a reply has been delivered. A per-chat cooldown
bounds LLM cost; the stamp is set before the call and rolled back when the
call fails or yields nothing.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from memoire.clock import Clock, system_clock
from memoire.llm.base import ChatProvider, ChatRequest, Message, clean_json_response
from memoire.memory.cooldown import Cooldown
from memoire.memory.long_term import CATEGORIES, IMPORTANCE_LEVELS, LongTermFact, LongTermMemory

if TYPE_CHECKING:
    from memoire.memory.daily_notes import DailyConversationTurn
    from memoire.memory.semantic import SemanticMemory

logger = logging.getLogger(__name__)

COOLDOWN_SECONDS = 60
MIN_MESSAGE_LENGTH = 20
MAX_MEMORIES = 3

EXTRACTION_SYSTEM_PROMPT = "You are a memory extraction assistant. Always respond with valid JSON."

EXTRACTION_PROMPT_TEMPLATE = """\
You extract important facts from conversations for long-term memory storage.

Analyze the conversation below and extract any important facts, preferences,
relationships, events, or projects that should be remembered for future
conversations.

Only extract information that is:
- Factually stated (not speculation)
- Likely to be relevant in future conversations
- About the user, their preferences, relationships, or ongoing matters

Do NOT extract:
- Casual greetings or small talk
- Temporary information (weather, time-sensitive news)
- Questions without answers
- General knowledge

Respond in JSON format:
{{
  "memories": [
    {{
      "content": "Clear, concise statement of the fact",
      "category": "fact|preference|project|relationship|event|other",
      "subject": "Who/what this is about",
      "importance": "low|medium|high",
      "reason": "Why this is worth remembering"
    }}
  ]
}}

If no memories should be extracted, return {{"memories": []}}.
Maximum {max_memories} memories per conversation. Be selective.

Conversation:
User ({sender_name}): {user_message}
Assistant: {assistant_response}
"""


@dataclass
class ExtractedMemory:
    content: str
    category: str
    subject: str
    importance: str
    reason: str = ""


def build_extraction_prompt(turn: DailyConversationTurn) -> str:
    return EXTRACTION_PROMPT_TEMPLATE.format(
        max_memories=MAX_MEMORIES,
        sender_name=turn.sender_name,
        user_message=turn.user_message,
        assistant_response=turn.assistant_response,
    )


def parse_extraction_response(response_text: str) -> list[ExtractedMemory]:
    """Validated candidates from the model reply, at most ``MAX_MEMORIES``."""
    try:
        parsed = json.loads(clean_json_response(response_text))
    except json.JSONDecodeError:
        logger.warning("Failed to parse extraction response: %s", response_text[:200])
        return []
    if not isinstance(parsed, dict) or not isinstance(parsed.get("memories"), list):
        return []

    memories = []
    for raw in parsed["memories"]:
        if not isinstance(raw, dict):
            continue
        content = str(raw.get("content") or "").strip()
        subject = str(raw.get("subject") or "").strip()
        category = str(raw.get("category") or "").strip().lower()
        importance = str(raw.get("importance") or "").strip().lower()
        if len(content) <= 5 or not subject or not category or not importance:
            continue
        memories.append(
            ExtractedMemory(
                content=content,
                category=category if category in CATEGORIES else "other",
                subject=subject,
                importance=importance if importance in IMPORTANCE_LEVELS else "medium",
                reason=str(raw.get("reason") or ""),
            )
        )
    return memories[:MAX_MEMORIES]


class AutoMemoryExtractor:
    """Cooldown-gated LLM fact mining feeding Long-Term Memory."""

    def __init__(
        self,
        chat: ChatProvider | None,
        long_term: LongTermMemory,
        semantic: SemanticMemory | None = None,
        enabled: bool = True,
        clock: Clock = system_clock,
        cooldown_seconds: float = COOLDOWN_SECONDS,
        max_tokens: int = 800,
    ) -> None:
        self.chat = chat
        self.long_term = long_term
        self.semantic = semantic
        self.enabled = enabled and chat is not None
        self.cooldown = Cooldown(cooldown_seconds, clock=clock)
        self.max_tokens = max_tokens

    async def extract_memories(self, turn: DailyConversationTurn) -> list[ExtractedMemory]:
        if not self.enabled or len(turn.user_message) < MIN_MESSAGE_LENGTH:
            return []

        key = turn.chat_id
        if not self.cooldown.try_acquire(key):
            logger.debug("Extraction cooldown active for %s", key)
            return []

        try:
            response = await self.chat.chat(
                ChatRequest(
                    system_prompt=EXTRACTION_SYSTEM_PROMPT,
                    messages=[Message(role="user", content=build_extraction_prompt(turn))],
                    max_tokens=self.max_tokens,
                )
            )
            extracted = parse_extraction_response(response.content)
        except Exception as e:
            self.cooldown.release(key)
            logger.error("Failed to extract memories for %s: %s", key, e)
            return []

        if extracted:
            logger.info("Extracted %d memories from %s", len(extracted), key)
        else:
            self.cooldown.release(key)
        return extracted

    async def store_memories(
        self, memories: list[ExtractedMemory], turn: DailyConversationTurn
    ) -> list[LongTermFact]:
        """Persist candidates as facts related to the turn's sender."""
        stored: list[LongTermFact] = []
        for memory in memories:
            try:
                fact = await self.long_term.add_memory(
                    subject=memory.subject,
                    content=memory.content,
                    category=memory.category,
                    importance=memory.importance,
                    related_participant_ids=[turn.sender_id],
                )
            except Exception as e:
                logger.error("Failed to store memory %r: %s", memory.subject, e)
                continue
            stored.append(fact)
            if self.semantic is not None:
                try:
                    await self.semantic.add_memory(
                        f"{fact.subject}: {fact.content}",
                        "user",
                        {"sender_id": turn.sender_id, "category": fact.category},
                    )
                except OSError as e:
                    logger.warning("Failed to index memory %s: %s", fact.id, e)
        if stored:
            logger.info("Stored %d auto-extracted memories for %s", len(stored), turn.sender_name)
        return stored

    async def process_conversation(self, turn: DailyConversationTurn) -> list[LongTermFact]:
        memories = await self.extract_memories(turn)
        if not memories:
            return []
        return await self.store_memories(memories, turn)
