"""Per-actor sliding-window admission control."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from threading import Lock


class RateLimiter:
    """Sliding-window counter keyed by actor id.

    State is per process. Under a multi-instance deployment each instance
    enforces its own window; losing the state only resets the limiter.
    """

    def __init__(
        self,
        max_actions: int = 5,
        window_seconds: float = 10.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_actions = max_actions
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._lock = Lock()

    def _pruned(self, actor_id: str, now: float) -> list[float]:
        cutoff = now - self.window_seconds
        hits = [t for t in self._hits.get(actor_id, []) if t > cutoff]
        if hits:
            self._hits[actor_id] = hits
        else:
            self._hits.pop(actor_id, None)
        return hits

    def consume(self, actor_id: str) -> bool:
        """Record an action and return True, or return False when over the limit."""
        now = self._clock()
        with self._lock:
            hits = self._pruned(actor_id, now)
            if len(hits) >= self.max_actions:
                return False
            hits.append(now)
            self._hits[actor_id] = hits
            return True

    def retry_after(self, actor_id: str) -> int:
        """Return whole seconds until the actor may act again; 0 when not limited."""
        now = self._clock()
        with self._lock:
            hits = self._pruned(actor_id, now)
            if len(hits) < self.max_actions:
                return 0
            retry_at = hits[0] + self.window_seconds
        return max(1, math.ceil(retry_at - now))

    def reset(self, actor_id: str | None = None) -> None:
        """Forget one actor's history, or everyone's."""
        with self._lock:
            if actor_id is None:
                self._hits.clear()
            else:
                self._hits.pop(actor_id, None)
