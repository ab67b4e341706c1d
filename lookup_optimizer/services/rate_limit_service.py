"""Sliding-window limiter for failed admin key exchanges. State is lost on restart."""

from __future__ import annotations

from collections import deque
from datetime import UTC, datetime


class FailedAttemptLimiter:
    """Block a key after ``max_failures`` failures within ``window_seconds``.

    Thread-safety: safe under asyncio's single-threaded cooperative model.
    No method awaits, so check-and-record sequences cannot interleave.
    """

    def __init__(self, max_failures: int, window_seconds: int) -> None:
        self.max_failures = max_failures
        self.window_seconds = window_seconds
        self._failures: dict[str, deque[float]] = {}

    def _live(self, key: str, now: float) -> deque[float]:
        failures = self._failures.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while failures and failures[0] < cutoff:
            failures.popleft()
        return failures

    def retry_after(self, key: str) -> int:
        """Seconds until the key may try again; 0 if it is not blocked."""
        now = datetime.now(UTC).timestamp()
        failures = self._live(key, now)
        if not failures:
            del self._failures[key]
            return 0
        if len(failures) < self.max_failures:
            return 0
        return max(int(failures[0] + self.window_seconds - now) + 1, 1)

    def record_failure(self, key: str) -> None:
        now = datetime.now(UTC).timestamp()
        self._live(key, now).append(now)

    def clear(self, key: str) -> None:
        self._failures.pop(key, None)
