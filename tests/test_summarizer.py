"""Tests for per-chat conversation summaries."""

from __future__ import annotations

import pytest

from memoire.memory.daily_notes import DailyNotes
from memoire.memory.storage import MemoryStorage
from memoire.memory.summarizer import (
    ConversationSummarizer,
    DailySummary,
    parse_messages,
    parse_summary_response,
)

from conftest import START, FakeChat, FakeClock, make_turn

GOOD_REPLY = """```json
{
  "summary": "Alice planned a trip to Lisbon and booked flights.",
  "keyTopics": ["travel", "flights"],
  "importantDecisions": ["Fly on May 3rd"],
  "messageCount": 10
}
```"""


async def _log_turns(storage: MemoryStorage, clock: FakeClock, n: int, chat_id: str = "c1") -> str:
    notes = DailyNotes(storage, clock=clock)
    for i in range(n):
        await notes.log_conversation(
            make_turn(chat_id=chat_id, user_message=f"message {i}", timestamp=clock.now)
        )
    return await notes.get_todays_notes(chat_id)


class TestParsing:
    def test_parse_messages(self):
        content = "# Daily Notes\n\n## 10:00:00 [DM: A]\n**Alice**: hi\n**Assistant**: hello\n"
        assert parse_messages(content) == [("Alice", "hi"), ("Assistant", "hello")]

    def test_response_validation(self):
        assert parse_summary_response("not json") is None
        assert parse_summary_response('{"summary": "short"}') is None
        parsed = parse_summary_response(GOOD_REPLY)
        assert parsed["keyTopics"] == ["travel", "flights"]
        assert parsed["importantDecisions"] == ["Fly on May 3rd"]

    def test_lists_capped(self):
        reply = '{"summary": "A long enough summary.", "keyTopics": %s}' % str(
            [f"t{i}" for i in range(30)]
        ).replace("'", '"')
        assert len(parse_summary_response(reply)["keyTopics"]) == 20


class TestAnalyzeAndSummarize:
    @pytest.mark.asyncio
    async def test_creates_and_persists(self, storage: MemoryStorage, clock: FakeClock):
        content = await _log_turns(storage, clock, 5)
        chat = FakeChat(GOOD_REPLY)
        summarizer = ConversationSummarizer(storage, chat, clock=clock)

        summary = await summarizer.analyze_and_summarize("c1", content)
        assert summary is not None
        assert summary.id.startswith("sum_") and len(summary.id) == 16
        assert summary.message_count == 10
        assert summary.key_topics == ["travel", "flights"]
        assert await storage.exists("summaries/c1_2026-03-15.md")

        latest = await summarizer.get_latest_summary("c1")
        assert latest.summary == summary.summary
        assert latest.timestamp == START

    @pytest.mark.asyncio
    async def test_too_few_messages(self, storage: MemoryStorage, clock: FakeClock):
        content = await _log_turns(storage, clock, 4)
        chat = FakeChat(GOOD_REPLY)
        summarizer = ConversationSummarizer(storage, chat, clock=clock)
        assert await summarizer.analyze_and_summarize("c1", content) is None
        assert chat.calls == 0

    @pytest.mark.asyncio
    async def test_fresh_summary_skips_llm(self, storage: MemoryStorage, clock: FakeClock):
        content = await _log_turns(storage, clock, 5)
        chat = FakeChat(GOOD_REPLY, GOOD_REPLY)
        summarizer = ConversationSummarizer(storage, chat, clock=clock)

        await summarizer.analyze_and_summarize("c1", content)
        clock.advance(hours=2)
        assert await summarizer.analyze_and_summarize("c1", content) is None
        assert chat.calls == 1

    @pytest.mark.asyncio
    async def test_stale_summary_regenerated(self, storage: MemoryStorage, clock: FakeClock):
        content = await _log_turns(storage, clock, 5)
        chat = FakeChat(GOOD_REPLY, GOOD_REPLY)
        summarizer = ConversationSummarizer(storage, chat, clock=clock)

        await summarizer.analyze_and_summarize("c1", content)
        clock.advance(hours=25)
        assert await summarizer.analyze_and_summarize("c1", content) is not None
        assert chat.calls == 2

    @pytest.mark.asyncio
    async def test_llm_failure_returns_none(self, storage: MemoryStorage, clock: FakeClock):
        content = await _log_turns(storage, clock, 5)
        summarizer = ConversationSummarizer(storage, FakeChat(RuntimeError("rate limited")), clock=clock)
        assert await summarizer.analyze_and_summarize("c1", content) is None
        assert await summarizer.get_latest_summary("c1") is None

    @pytest.mark.asyncio
    async def test_disabled(self, storage: MemoryStorage, clock: FakeClock):
        content = await _log_turns(storage, clock, 5)
        assert await ConversationSummarizer(storage, None).analyze_and_summarize("c1", content) is None
        chat = FakeChat(GOOD_REPLY)
        off = ConversationSummarizer(storage, chat, enabled=False)
        assert await off.analyze_and_summarize("c1", content) is None
        assert chat.calls == 0


class TestFreshness:
    def test_growth_makes_stale(self, storage: MemoryStorage, clock: FakeClock):
        summarizer = ConversationSummarizer(storage, FakeChat(), clock=clock)
        existing = DailySummary(chat_id="c1", date="2026-03-15", summary="s", message_count=10, timestamp=START)
        assert summarizer.is_fresh(existing, 29) is True
        assert summarizer.is_fresh(existing, 30) is False


class TestLookups:
    @pytest.mark.asyncio
    async def test_context_section(self, storage: MemoryStorage, clock: FakeClock):
        content = await _log_turns(storage, clock, 5)
        summarizer = ConversationSummarizer(storage, FakeChat(GOOD_REPLY), clock=clock)
        assert await summarizer.get_summary_for_context("c1") is None

        await summarizer.analyze_and_summarize("c1", content)
        section = await summarizer.get_summary_for_context("c1")
        assert section.startswith("## Previous Conversation Summary (2026-03-15)")
        assert "**Topics:** travel, flights" in section
        assert "- Fly on May 3rd" in section

    @pytest.mark.asyncio
    async def test_all_summaries_newest_first(self, storage: MemoryStorage, clock: FakeClock):
        summarizer = ConversationSummarizer(storage, FakeChat(GOOD_REPLY, GOOD_REPLY), clock=clock)
        content = await _log_turns(storage, clock, 5)
        await summarizer.analyze_and_summarize("c1", content)
        clock.advance(days=1)
        content = await _log_turns(storage, clock, 5)
        await summarizer.analyze_and_summarize("c1", content)

        summaries = await summarizer.get_all_summaries("c1")
        assert [s.date for s in summaries] == ["2026-03-16", "2026-03-15"]
        assert await summarizer.get_all_summaries("c1_other") == []

    @pytest.mark.asyncio
    async def test_malformed_summary_ignored(self, storage: MemoryStorage, clock: FakeClock):
        await storage.write("summaries/c1_2026-03-14.md", "---\nbroken: [\n---\nbody")
        summarizer = ConversationSummarizer(storage, FakeChat(), clock=clock)
        assert await summarizer.get_all_summaries("c1") == []
