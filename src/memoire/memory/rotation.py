"""Condense daily logs that have aged past the retention window.

There is no delete primitive: an expired log is copied, condensed, to
``daily/archive/<same name>`` and the original is overwritten with a short
stub pointing at the archive.
"""

from __future__ import annotations

import logging
import re
from datetime import date, timedelta

from memoire.clock import Clock, system_clock
from memoire.memory.daily_notes import DAILY_DIR, DATE_PATTERN
from memoire.memory.storage import MemoryStorage

logger = logging.getLogger(__name__)

ARCHIVE_DIR = f"{DAILY_DIR}/archive"
ARCHIVED_MARKER = "# Archived"
SECTION_MARKER = re.compile(r"^## \d{2}:\d{2}:\d{2} \[.+\]$")
TAGGED_LINE = re.compile(r"^\*\*.+?\*\*:")


def condense(content: str, date_str: str) -> str:
    """Keep section markers and speaker lines, drop the rest, count the turns."""
    parts = [f"# Archive Summary - {date_str}", ""]
    count = 0
    for line in content.split("\n"):
        if SECTION_MARKER.match(line):
            count += 1
            parts.append("")
            parts.append(line)
        elif TAGGED_LINE.match(line):
            parts.append(line)
    parts += ["", "---", f"Total conversations: {count}", ""]
    return "\n".join(parts)


class MemoryRotation:
    """Archive daily logs older than ``retention_days``."""

    def __init__(
        self,
        storage: MemoryStorage,
        retention_days: int = 30,
        clock: Clock = system_clock,
    ) -> None:
        self.storage = storage
        self.retention_days = retention_days
        self._clock = clock

    def cutoff(self) -> date:
        return (self._clock() - timedelta(days=self.retention_days)).date()

    async def rotate_old_daily_notes(self) -> int:
        """Archive every expired log. Failures are logged; returns files archived."""
        cutoff = self.cutoff()
        rotated = 0
        try:
            files = await self.storage.list_files(DAILY_DIR)
        except Exception as e:
            logger.error("Failed to rotate daily notes: %s", e)
            return 0

        for name in files:
            match = DATE_PATTERN.search(name)
            if not match:
                continue
            try:
                file_date = date.fromisoformat(match.group(1))
            except ValueError:
                continue
            if file_date >= cutoff:
                continue
            try:
                if await self._archive_file(name, match.group(1)):
                    rotated += 1
            except Exception as e:
                logger.error("Failed to archive %s: %s", name, e)

        if rotated:
            logger.info("Rotated %d old daily notes (retention=%dd)", rotated, self.retention_days)
        return rotated

    async def _archive_file(self, name: str, date_str: str) -> bool:
        source_path = f"{DAILY_DIR}/{name}"
        content = await self.storage.read(source_path)
        if not content or content.startswith(ARCHIVED_MARKER):
            return False

        archive_path = f"{ARCHIVE_DIR}/{name}"
        await self.storage.write(archive_path, condense(content, date_str))
        await self.storage.write(
            source_path,
            f"{ARCHIVED_MARKER} - {date_str}\n\nThis file has been archived to {archive_path}\n",
        )
        logger.debug("Archived daily note %s", name)
        return True
