"""Scheduler for periodic memory maintenance using pure asyncio.

Jobs:
- Rotation: archive daily logs past retention, once a day at the cron hour
- Summaries: summarize every chat active today, on each tick
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from memoire.config import MemoireConfig
    from memoire.core import MemoryEngine

logger = logging.getLogger(__name__)


def _parse_cron_hour(cron_expr: str) -> int:
    """Extract hour from simple cron expression like '0 3 * * *'."""
    parts = cron_expr.split()
    if len(parts) >= 2:
        try:
            hour = int(parts[1])
        except ValueError:
            return 3
        if 0 <= hour <= 23:
            return hour
    return 3  # default: 3 AM UTC


class Scheduler:
    """Simple asyncio-based scheduler for memory maintenance."""

    def __init__(self, engine: MemoryEngine, config: MemoireConfig) -> None:
        self._engine = engine
        self._rotation_hour = _parse_cron_hour(config.scheduler.rotation_cron)
        self._tick_interval = config.scheduler.tick_interval
        self._last_rotation_date: str | None = None

    async def start(self, shutdown_event: asyncio.Event) -> None:
        """Run scheduled jobs until shutdown_event is set."""
        logger.info(
            "Scheduler started (tick=%ds, rotation@%02d:00 UTC)",
            self._tick_interval,
            self._rotation_hour,
        )

        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self._tick_interval)
                break  # shutdown requested
            except asyncio.TimeoutError:
                pass  # interval elapsed, run jobs

            await self.tick()

        logger.info("Scheduler stopped.")

    async def tick(self) -> None:
        """One scheduling pass: daily rotation when due, then summaries."""
        now = self._engine.clock()
        today = now.date().isoformat()
        if now.hour == self._rotation_hour and self._last_rotation_date != today:
            await self._rotate()
            self._last_rotation_date = today

        await self._summarize()

    async def _rotate(self) -> None:
        try:
            rotated = await self._engine.rotate()
        except OSError as e:
            logger.error("Daily rotation failed: %s", e)
            return
        logger.info("Daily rotation finished (%d files archived)", rotated)

    async def _summarize(self) -> None:
        try:
            created = await self._engine.summarize_active_chats()
        except Exception as e:
            logger.error("Summary job failed: %s", e)
            return
        if created:
            logger.info("Created %d conversation summaries", created)
