"""Entry point: python -m memoire [serve|rotate|index|stats <chat-id>]

- "serve":  Daemon mode (scheduler: rotation + summaries)
- "rotate": Archive expired daily logs once and exit
- "index":  Backfill the semantic index from ledgers and recent logs
- "stats":  Print the diagnostic summary for one chat
"""

from __future__ import annotations

import asyncio
import logging
import sys

from memoire.config import load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_serve() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from memoire.daemon import DaemonAlreadyRunning, MemoireDaemon

    daemon = MemoireDaemon(config)
    try:
        asyncio.run(daemon.run())
    except DaemonAlreadyRunning as e:
        print(f"{e}. Exiting.", file=sys.stderr)
        sys.exit(1)


def _run_rotate() -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from memoire.core import MemoryEngine

    async def _rotate() -> int:
        engine = MemoryEngine(config)
        await engine.storage.ensure_dir()
        return await engine.rotate()

    print(f"Archived {asyncio.run(_rotate())} daily notes")


def _run_index() -> None:
    config = load_config()
    _setup_logging(config.log_level)
    config.features.semantic_memory = True

    from memoire.daemon import MemoireDaemon

    async def _index() -> dict:
        engine = MemoireDaemon(config).build_engine()
        if not engine.semantic.enabled:
            print("Semantic memory unavailable (no embedding backend)", file=sys.stderr)
            sys.exit(1)
        await engine.initialize()
        await engine.stop()
        return engine.semantic.get_stats()

    stats = asyncio.run(_index())
    print(f"Semantic index: {stats['total_entries']} entries")


def _run_stats(chat_id: str) -> None:
    config = load_config()
    _setup_logging(config.log_level)

    from memoire.core import MemoryEngine

    engine = MemoryEngine(config)
    print(asyncio.run(engine.get_chat_summary(chat_id)))


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "serve"

    if cmd == "serve":
        _run_serve()
    elif cmd == "rotate":
        _run_rotate()
    elif cmd == "index":
        _run_index()
    elif cmd == "stats" and len(sys.argv) > 2:
        _run_stats(sys.argv[2])
    else:
        print("Usage: python -m memoire [serve|rotate|index|stats <chat-id>]")
        print("  serve   - Daemon mode with scheduler (default)")
        print("  rotate  - Archive daily notes past retention")
        print("  index   - Backfill the semantic index")
        print("  stats   - Diagnostic summary for one chat")
        sys.exit(1)


if __name__ == "__main__":
    main()
