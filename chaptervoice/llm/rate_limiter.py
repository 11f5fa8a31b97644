"""Rate limiting abstraction for provider calls.

Responsibilities:
- Provide a single hook to enforce provider request pacing.
- Keep retry/rate-limit policy independent from provider adapters.
- Stay safe when worker threads share one limiter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import threading
from time import monotonic, sleep
from typing import Callable


@dataclass(slots=True)
class RateLimiter:
    """Per-key minimum-interval limiter used around provider requests.

    Each caller reserves the next free slot under a lock and sleeps outside it,
    so concurrent callers of one key are spaced by `min_interval_seconds`.
    """

    min_interval_seconds: float = 0.05
    clock: Callable[[], float] = monotonic
    sleeper: Callable[[float], None] = sleep
    _next_allowed_at: dict[str, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def acquire(self, key: str) -> None:
        """Block until request key is allowed under the interval policy."""

        if self.min_interval_seconds <= 0.0:
            return
        with self._lock:
            now = self.clock()
            start_at = max(now, self._next_allowed_at.get(key, 0.0))
            self._next_allowed_at[key] = start_at + self.min_interval_seconds
        wait_seconds = start_at - now
        if wait_seconds > 0.0:
            self.sleeper(wait_seconds)
