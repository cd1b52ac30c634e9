"""Tests for daily log rotation."""

from __future__ import annotations

from datetime import timedelta

import pytest

from memoire.memory.daily_notes import DailyNotes
from memoire.memory.rotation import MemoryRotation, condense
from memoire.memory.storage import MemoryStorage

from conftest import START, FakeClock, make_turn


@pytest.fixture
def notes(storage: MemoryStorage, clock: FakeClock) -> DailyNotes:
    return DailyNotes(storage, clock=clock)


class TestRotation:
    @pytest.mark.asyncio
    async def test_old_archived_recent_untouched(self, storage: MemoryStorage, notes: DailyNotes, clock):
        await notes.log_conversation(
            make_turn(user_message="old question", assistant_response="old answer", timestamp=START - timedelta(days=10))
        )
        await notes.log_conversation(make_turn(user_message="new question", timestamp=START - timedelta(days=2)))
        recent_before = await storage.read("daily/c1_2026-03-13.md")

        rotation = MemoryRotation(storage, retention_days=7, clock=clock)
        assert await rotation.rotate_old_daily_notes() == 1

        stub = await storage.read("daily/c1_2026-03-05.md")
        assert stub.startswith("# Archived - 2026-03-05")
        assert "daily/archive/c1_2026-03-05.md" in stub

        archive = await storage.read("daily/archive/c1_2026-03-05.md")
        assert archive.startswith("# Archive Summary - 2026-03-05")
        assert "**Alice**: old question" in archive
        assert "**Assistant**: old answer" in archive
        assert "Total conversations: 1" in archive

        assert await storage.read("daily/c1_2026-03-13.md") == recent_before

    @pytest.mark.asyncio
    async def test_second_run_keeps_archive(self, storage: MemoryStorage, notes: DailyNotes, clock):
        await notes.log_conversation(make_turn(timestamp=START - timedelta(days=40)))
        rotation = MemoryRotation(storage, retention_days=30, clock=clock)
        assert await rotation.rotate_old_daily_notes() == 1
        archive = await storage.read("daily/archive/c1_2026-02-03.md")

        assert await rotation.rotate_old_daily_notes() == 0
        assert await storage.read("daily/archive/c1_2026-02-03.md") == archive

    @pytest.mark.asyncio
    async def test_ignores_unrelated_files(self, storage: MemoryStorage, clock):
        await storage.write("daily/notes.txt", "not a log")
        rotation = MemoryRotation(storage, retention_days=1, clock=clock)
        assert await rotation.rotate_old_daily_notes() == 0
        assert await storage.read("daily/notes.txt") == "not a log"

    @pytest.mark.asyncio
    async def test_missing_dir_is_noop(self, storage: MemoryStorage, clock):
        rotation = MemoryRotation(storage, clock=clock)
        assert await rotation.rotate_old_daily_notes() == 0


class TestCondense:
    def test_keeps_markers_and_tagged_lines(self):
        content = (
            "# Daily Notes - 2026-01-01\n"
            "\n## 09:00:00 [DM: Alice]\n<!-- chat:c1 sender:u1 -->\n"
            "**Alice**: hi\ncontinued\n**Assistant**: hello\n"
            "\n## 10:00:00 [Group: Team]\n<!-- chat:c1 sender:u2 -->\n"
            "**Bob**: yo\n**Assistant**: hey\n"
        )
        summary = condense(content, "2026-01-01")
        assert "## 09:00:00 [DM: Alice]" in summary
        assert "## 10:00:00 [Group: Team]" in summary
        assert "**Bob**: yo" in summary
        assert "continued" not in summary
        assert "<!--" not in summary
        assert summary.rstrip().endswith("Total conversations: 2")
