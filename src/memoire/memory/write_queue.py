"""Per-path write serialization.

Every mutation of a file goes through ``WriteQueue.run`` keyed by the file's
absolute path. Operations on one key run strictly one after another in
arrival order; different keys never wait on each other.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class WriteQueue:
    """Lane locks keyed by path, released even when an operation fails."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, int] = {}

    def _get_lock(self, key: str) -> asyncio.Lock:
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        return self._locks[key]

    async def run(self, key: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` after every earlier operation queued on ``key``."""
        lock = self._get_lock(key)
        self._pending[key] = self._pending.get(key, 0) + 1
        try:
            async with lock:
                return await operation()
        finally:
            remaining = self._pending.get(key, 1) - 1
            if remaining > 0:
                self._pending[key] = remaining
            else:
                self._pending.pop(key, None)
                self._locks.pop(key, None)

    def pending(self, key: str) -> int:
        """Number of queued or running operations for ``key``."""
        return self._pending.get(key, 0)

