"""Daemon process: always-on memory maintenance.

Usage: python -m memoire serve

Wires the engine to its LLM backends, runs the scheduler and holds a PID
file so two daemons never rotate the same memory directory.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal

from memoire.config import MemoireConfig, load_config
from memoire.core import MemoryEngine
from memoire.scheduler.jobs import Scheduler

logger = logging.getLogger(__name__)


class DaemonAlreadyRunning(RuntimeError):
    def __init__(self, pid: int) -> None:
        super().__init__(f"Memoire daemon already running (pid={pid})")
        self.pid = pid


class MemoireDaemon:
    """Always-on daemon process."""

    def __init__(self, config: MemoireConfig | None = None) -> None:
        self.config = config or load_config()
        self._shutdown_event = asyncio.Event()

    def _claim_pid_file(self) -> None:
        """Take over the PID file unless a live daemon still owns it."""
        pid_file = self.config.pid_file
        try:
            owner = int(pid_file.read_text().strip())
        except (FileNotFoundError, ValueError):
            owner = None
        if owner is not None and owner != os.getpid():
            try:
                os.kill(owner, 0)
            except ProcessLookupError:
                logger.info("Replacing stale PID file (pid=%d)", owner)
            except PermissionError:
                raise DaemonAlreadyRunning(owner) from None
            else:
                raise DaemonAlreadyRunning(owner)
        pid_file.parent.mkdir(parents=True, exist_ok=True)
        pid_file.write_text(str(os.getpid()))

    def _release_pid_file(self) -> None:
        self.config.pid_file.unlink(missing_ok=True)

    def request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    # ── Build components ─────────────────────────────────────

    def _build_chat(self):
        features = self.config.features
        if not (features.auto_memory_extraction or features.conversation_summaries):
            return None
        from memoire.llm.anthropic_api import AnthropicChat

        try:
            return AnthropicChat(
                model=self.config.chat.model,
                max_tokens=self.config.chat.max_tokens,
                timeout=self.config.chat.timeout,
            )
        except Exception as e:
            logger.warning("Chat backend unavailable, LLM features disabled: %s", e)
            return None

    def _build_embedder(self):
        if not self.config.features.semantic_memory:
            return None
        from memoire.llm.openai_embed import OpenAIEmbedder

        try:
            return OpenAIEmbedder(
                model=self.config.embedding.model,
                dimension=self.config.embedding.dimension,
            )
        except Exception as e:
            logger.warning("Embedding backend unavailable, semantic memory disabled: %s", e)
            return None

    def build_engine(self) -> MemoryEngine:
        return MemoryEngine(
            self.config,
            chat=self._build_chat(),
            embedder=self._build_embedder(),
        )

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._claim_pid_file()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self.request_shutdown)

        engine = self.build_engine()
        scheduler = Scheduler(engine, self.config)
        logger.info("Memoire daemon starting (memory_dir=%s)", self.config.memory_dir)

        try:
            await engine.initialize()
            await scheduler.start(self._shutdown_event)
        finally:
            await engine.stop()
            self._release_pid_file()
            logger.info("Memoire daemon stopped.")
