"""Keyed rate gate for cost-bounded background work."""

from __future__ import annotations

from datetime import datetime

from memoire.clock import Clock, system_clock


class Cooldown:
    """Allow one trigger per key per ``window`` seconds.

    ``try_acquire`` stamps the key immediately so concurrent callers cannot
    slip through while the first one is still working; ``release`` rolls the
    stamp back when the work produced nothing and should be retried sooner.
    """

    def __init__(self, window: float, clock: Clock = system_clock) -> None:
        self.window = window
        self._clock = clock
        self._last: dict[str, datetime] = {}

    def remaining(self, key: str) -> float:
        """Seconds until ``key`` may trigger again (0 when open)."""
        last = self._last.get(key)
        if last is None:
            return 0.0
        elapsed = (self._clock() - last).total_seconds()
        return max(0.0, self.window - elapsed)

    def try_acquire(self, key: str) -> bool:
        if self.remaining(key) > 0:
            return False
        self._last[key] = self._clock()
        return True

    def release(self, key: str) -> None:
        self._last.pop(key, None)
