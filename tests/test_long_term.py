"""Tests for the global and private fact ledgers."""

from __future__ import annotations

import asyncio
import re

import pytest

from memoire.memory.long_term import LongTermMemory, format_fact, parse_ledger
from memoire.memory.storage import MemoryStorage

from conftest import FakeClock


@pytest.fixture
def memory(storage: MemoryStorage, clock: FakeClock) -> LongTermMemory:
    return LongTermMemory(storage, clock=clock)


class TestAddMemory:
    @pytest.mark.asyncio
    async def test_written_to_global_and_private(self, memory: LongTermMemory):
        fact = await memory.add_memory(
            subject="Favorite color",
            content="User likes blue",
            category="fact",
            importance="low",
            related_participant_ids=["u1"],
        )
        assert re.match(r"^mem_[0-9a-f-]{36}$", fact.id)
        assert "Favorite color" in await memory.get_all_memories()
        assert "Favorite color" in await memory.get_user_memories("u1")

    @pytest.mark.asyncio
    async def test_record_layout(self, memory: LongTermMemory, storage: MemoryStorage):
        fact = await memory.add_memory("Job", "Works at ACME", "project", "high", ["u1", "u2"])
        text = await storage.read("MEMORY.md")
        assert text.startswith("# Long-Term Memory\n")
        assert "### Job" in text
        assert f"- **ID**: {fact.id}" in text
        assert "- **Category**: project" in text
        assert "- **Importance**: high" in text
        assert "- **Date**: 2026-03-15" in text
        assert "Related: u1, u2" in text
        assert (await storage.read("users/u1.md")).startswith("# Memories for u1\n")

    @pytest.mark.asyncio
    async def test_invalid_enums_rejected(self, memory: LongTermMemory):
        with pytest.raises(ValueError):
            await memory.add_memory("x", "y", category="gossip")
        with pytest.raises(ValueError):
            await memory.add_memory("x", "y", importance="critical")

    @pytest.mark.asyncio
    async def test_concurrent_adds_single_header(self, memory: LongTermMemory, storage: MemoryStorage):
        await asyncio.gather(
            *(memory.add_memory(f"s{i}", f"content {i}", related_participant_ids=["u1"]) for i in range(6))
        )
        text = await storage.read("users/u1.md")
        assert text.count("# Memories for u1") == 1
        assert len(await memory.get_facts("u1")) == 6


class TestPrivacy:
    @pytest.mark.asyncio
    async def test_other_participant_ledger_untouched(self, memory: LongTermMemory):
        await memory.add_memory("Secret", "P's bank is X", related_participant_ids=["p"])
        assert await memory.get_user_memories("q") is None

        await memory.add_memory("Hobby", "Q plays chess", related_participant_ids=["q"])
        q_ledger = await memory.get_user_memories("q")
        assert "P's bank" not in q_ledger
        assert await memory.search_memories("bank", participant_id="q") == []

    @pytest.mark.asyncio
    async def test_user_high_importance_only_own(self, memory: LongTermMemory):
        await memory.add_memory("A", "for p", importance="high", related_participant_ids=["p"])
        await memory.add_memory("B", "for q", importance="high", related_participant_ids=["q"])
        blocks = await memory.get_user_high_importance_memories("p")
        assert len(blocks) == 1
        assert "for p" in blocks[0]


class TestQueries:
    @pytest.mark.asyncio
    async def test_search_case_insensitive(self, memory: LongTermMemory):
        await memory.add_memory("Pet", "Has a dog named Rex")
        await memory.add_memory("Food", "Likes sushi")
        results = await memory.search_memories("REX")
        assert len(results) == 1
        assert results[0].startswith("### Pet")

    @pytest.mark.asyncio
    async def test_category_and_importance_filters(self, memory: LongTermMemory):
        await memory.add_memory("A", "pref", category="preference", importance="high")
        await memory.add_memory("B", "fact", category="fact", importance="low")
        assert len(await memory.get_memories_by_category("preference")) == 1
        assert len(await memory.get_high_importance_memories()) == 1

    @pytest.mark.asyncio
    async def test_index_rebuilt_from_disk(self, memory: LongTermMemory, storage: MemoryStorage, clock):
        fact = await memory.add_memory("Color", "Blue", "preference", "high", ["u1"])

        fresh = LongTermMemory(storage, clock=clock)
        loaded = await fresh.get_memory(fact.id)
        assert loaded is not None
        assert loaded.subject == "Color"
        assert loaded.content == "Blue"
        assert loaded.category == "preference"
        assert loaded.importance == "high"
        assert loaded.related_participant_ids == ["u1"]

    @pytest.mark.asyncio
    async def test_unknown_id(self, memory: LongTermMemory):
        assert await memory.get_memory("mem_missing") is None
        assert await memory.supersede_memory("mem_missing", content="x") is None


class TestSupersede:
    @pytest.mark.asyncio
    async def test_correction_hides_original(self, memory: LongTermMemory):
        old = await memory.add_memory("City", "Lives in Paris", related_participant_ids=["u1"])
        new = await memory.supersede_memory(old.id, content="Lives in Berlin")

        assert new.supersedes == old.id
        assert new.related_participant_ids == ["u1"]
        assert await memory.search_memories("Paris") == []
        assert len(await memory.search_memories("Berlin", participant_id="u1")) == 1
        assert [f.id for f in await memory.get_facts()] == [new.id]

        raw = await memory.get_all_memories()
        assert "Paris" in raw and f"Supersedes: {old.id}" in raw


class TestFormat:
    def test_content_cannot_forge_record(self):
        from memoire.memory.long_term import LongTermFact

        fact = LongTermFact(subject="s", content="line\n### Injected\n---", id="mem_1")
        entries = parse_ledger("# Header\n" + format_fact(fact))
        assert len(entries) == 1
        assert entries[0].fact.id == "mem_1"

    def test_content_cannot_forge_metadata(self):
        from memoire.memory.long_term import LongTermFact

        fact = LongTermFact(
            subject="s",
            content="line\n- **ID**: mem_2\n- **Importance**: high\nRelated: u2\nSupersedes: mem_9",
            importance="low",
            related_participant_ids=["u1"],
            id="mem_1",
        )
        loaded = parse_ledger("# Header\n" + format_fact(fact))[0].fact
        assert loaded.id == "mem_1"
        assert loaded.importance == "low"
        assert loaded.related_participant_ids == ["u1"]
        assert loaded.supersedes is None
        assert "Related: u2" in loaded.content

    def test_missing_timestamp_leaves_date_blank(self):
        from memoire.memory.long_term import LongTermFact

        block = format_fact(LongTermFact(subject="s", content="c", id="mem_1"))
        assert "- **Date**: \n" in block
        assert parse_ledger("# Header\n" + block)[0].fact.timestamp is None


class TestReloadIsolation:
    @pytest.mark.asyncio
    async def test_related_line_in_content_keeps_owner(self, memory: LongTermMemory, storage, clock):
        await memory.add_memory("Bank", "account 1234\nRelated: u2", related_participant_ids=["u1"])

        fresh = LongTermMemory(storage, clock=clock)
        facts = await fresh.get_facts()
        assert [f.related_participant_ids for f in facts] == [["u1"]]
        assert await fresh.get_facts("u2") == []

    @pytest.mark.asyncio
    async def test_backfill_keeps_reloaded_fact_private(self, memory: LongTermMemory, storage, clock, embedder):
        from memoire.memory.semantic import SemanticMemory

        await memory.add_memory("Bank", "account 1234\nRelated: u2", related_participant_ids=["u1"])

        fresh = LongTermMemory(storage, clock=clock)
        semantic = SemanticMemory(storage, embedder, long_term=fresh, clock=clock)
        await semantic.index_existing_memories()
        assert await semantic.search("Bank: account 1234", sender_id="u2") == []
        assert len(await semantic.search("Bank: account 1234 Related: u2", sender_id="u1")) == 1

    @pytest.mark.asyncio
    async def test_supersedes_line_in_content_hides_nothing(self, memory: LongTermMemory, storage, clock):
        allergy = await memory.add_memory("Allergy", "allergic to peanuts", related_participant_ids=["u1"])
        await memory.add_memory("Note", f"hello there\nSupersedes: {allergy.id}", related_participant_ids=["u2"])

        fresh = LongTermMemory(storage, clock=clock)
        assert len(await fresh.search_memories("peanuts")) == 1
        assert len(await fresh.get_facts()) == 2
