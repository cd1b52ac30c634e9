"""Append-only per-chat, per-day conversation log.

Each chat gets its own file per UTC day, so reading one chat's history never
touches another chat's data.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timezone

from memoire.clock import Clock, system_clock
from memoire.memory.storage import MemoryStorage, sanitize_id

logger = logging.getLogger(__name__)

DAILY_DIR = "daily"
DATE_PATTERN = re.compile(r"(\d{4}-\d{2}-\d{2})\.md$")
SECTION_SPLIT = "\n## "
CHAT_TAG = re.compile(r"^<!-- chat:(\S+) sender:(\S+) -->$", re.MULTILINE)


@dataclass(frozen=True)
class DailyConversationTurn:
    """One completed exchange. Immutable once logged."""

    timestamp: datetime
    chat_id: str
    chat_name: str
    sender_id: str
    sender_name: str
    user_message: str
    assistant_response: str
    is_group: bool = False


def _display_name(name: str) -> str:
    cleaned = name.replace("*", "").replace("\r", " ").replace("\n", " ").strip()
    return cleaned or "unknown"


def _escape_message(text: str) -> str:
    """Keep message lines from starting a new section or tag."""
    lines = text.replace("\r\n", "\n").split("\n")
    escaped = [lines[0]]
    for line in lines[1:]:
        escaped.append("\\" + line if line.startswith(("#", "**", "<!--")) else line)
    return "\n".join(escaped)


def _to_date(value: datetime | date) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


class DailyNotes:
    """Read/write access to ``daily/<chat>_<date>.md`` logs."""

    def __init__(
        self,
        storage: MemoryStorage,
        assistant_name: str = "Assistant",
        clock: Clock = system_clock,
    ) -> None:
        self.storage = storage
        self.assistant_name = _display_name(assistant_name)
        self._clock = clock

    def file_name(self, chat_id: str, day: datetime | date) -> str:
        return f"{sanitize_id(chat_id)}_{_to_date(day).isoformat()}.md"

    def file_path(self, chat_id: str, day: datetime | date) -> str:
        return f"{DAILY_DIR}/{self.file_name(chat_id, day)}"

    def format_entry(self, turn: DailyConversationTurn) -> str:
        ts = turn.timestamp
        if ts.tzinfo is not None:
            ts = ts.astimezone(timezone.utc)
        kind = "Group" if turn.is_group else "DM"
        return (
            f"\n## {ts.strftime('%H:%M:%S')} [{kind}: {_display_name(turn.chat_name)}]\n"
            f"<!-- chat:{turn.chat_id} sender:{turn.sender_id} -->\n"
            f"**{_display_name(turn.sender_name)}**: {_escape_message(turn.user_message)}\n"
            f"**{self.assistant_name}**: {_escape_message(turn.assistant_response)}\n"
        )

    async def log_conversation(self, turn: DailyConversationTurn) -> None:
        header = f"# Daily Notes - {_to_date(turn.timestamp).isoformat()}\n"
        await self.storage.append(
            self.file_path(turn.chat_id, turn.timestamp),
            self.format_entry(turn),
            header=header,
        )

    async def get_todays_notes(self, chat_id: str) -> str | None:
        return await self.storage.read(self.file_path(chat_id, self._clock()))

    async def get_notes_for_date(self, chat_id: str, day: datetime | date) -> str | None:
        return await self.storage.read(self.file_path(chat_id, day))

    async def _chat_dates(self, chat_id: str) -> list[str]:
        """Dates that have a log file for exactly this chat, newest first."""
        pattern = re.compile(rf"^{re.escape(sanitize_id(chat_id))}_(\d{{4}}-\d{{2}}-\d{{2}})\.md$")
        dates = []
        for name in await self.storage.list_files(DAILY_DIR):
            match = pattern.match(name)
            if match:
                dates.append(match.group(1))
        return sorted(dates, reverse=True)

    async def get_recent_days(self, chat_id: str, days: int = 7) -> dict[str, str]:
        """date → content for the ``days`` most recent logs of this chat, newest first."""
        result: dict[str, str] = {}
        if days <= 0:
            return result
        for date_str in (await self._chat_dates(chat_id))[:days]:
            notes = await self.storage.read(f"{DAILY_DIR}/{sanitize_id(chat_id)}_{date_str}.md")
            if notes:
                result[date_str] = notes
        return result

    async def search_conversations(self, chat_id: str, days: int = 7) -> list[str]:
        """Entry blocks from this chat's recent logs, oldest first."""
        results: list[str] = []
        recent = await self.get_recent_days(chat_id, days)
        for date_str in sorted(recent):
            for block in split_entries(recent[date_str]):
                results.append(block)
        return results

    async def active_chats(self, day: datetime | date | None = None) -> list[str]:
        """Raw chat ids that logged at least one turn on ``day`` (default today)."""
        date_str = _to_date(day or self._clock()).isoformat()
        chats: set[str] = set()
        for name in await self.storage.list_files(DAILY_DIR):
            match = DATE_PATTERN.search(name)
            if not match or match.group(1) != date_str:
                continue
            content = await self.storage.read(f"{DAILY_DIR}/{name}")
            if not content:
                continue
            for tag in CHAT_TAG.finditer(content):
                chats.add(tag.group(1))
        return sorted(chats)

    async def get_todays_size(self, chat_id: str) -> int:
        return await self.storage.size(self.file_path(chat_id, self._clock()))


def split_entries(notes: str) -> list[str]:
    """Split a daily log into ``## ...`` blocks, dropping the header."""
    return [f"## {section}" for section in notes.split(SECTION_SPLIT)[1:]]
