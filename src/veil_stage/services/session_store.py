"""TTL-bound storage for committed results awaiting disclosure.

Two interchangeable backends satisfy :class:`SessionStore`:

- :class:`MemorySessionStore` keeps entries in-process and sweeps expired ones
  periodically. Every read also checks freshness, so correctness never depends
  on sweep timing.
- :class:`RedisSessionStore` relies on native key expiry and performs ``claim``
  as one Lua script so only a single caller, across all processes, can win.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
from threading import Lock
from typing import Protocol, runtime_checkable

from redis.asyncio import Redis
from redis.exceptions import RedisError

from veil_stage.core.errors import BackendUnavailableError
from veil_stage.models.session import SessionEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_MS = 10 * 60 * 1000
SWEEP_INTERVAL_SECONDS = 60.0

# Atomic get-and-delete; returns nil when the key is absent.
CLAIM_SCRIPT = """
local val = redis.call('GET', KEYS[1])
if val then
  redis.call('DEL', KEYS[1])
end
return val
"""



def _detached(entry: SessionEntry) -> SessionEntry:
    """Return a copy of ``entry`` whose payload shares nothing with the original."""
    return dataclasses.replace(entry, payload=copy.deepcopy(dict(entry.payload)))

@runtime_checkable
class SessionStore(Protocol):
    """Contract shared by the memory and Redis session stores."""

    ttl_ms: int

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def put(self, entry: SessionEntry) -> None: ...

    async def get(self, session_id: str) -> SessionEntry | None: ...

    async def claim(self, session_id: str) -> SessionEntry | None: ...

    async def delete(self, session_id: str) -> bool: ...

    async def approximate_size(self) -> int: ...


class MemorySessionStore:
    """In-process session store with a low-frequency background sweep."""

    def __init__(
        self,
        ttl_ms: int = DEFAULT_TTL_MS,
        *,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.ttl_ms = ttl_ms
        self._sweep_interval = max(0.01, float(sweep_interval))
        self._entries: dict[str, SessionEntry] = {}
        self._lock = Lock()
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    async def start(self) -> None:
        """Start the periodic sweep. Calling twice is harmless."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._sweep_interval)
            except TimeoutError:
                removed = self.sweep()
                if removed:
                    logger.debug(
                        "Swept %d expired session(s)",
                        removed,
                        extra={"event": "session-sweep", "count": removed},
                    )

    def sweep(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        with self._lock:
            expired = [
                session_id
                for session_id, entry in self._entries.items()
                if entry.is_expired(self.ttl_ms)
            ]
            for session_id in expired:
                del self._entries[session_id]
        return len(expired)

    async def put(self, entry: SessionEntry) -> None:
        with self._lock:
            self._entries[entry.id] = _detached(entry)

    async def get(self, session_id: str) -> SessionEntry | None:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            if entry.is_expired(self.ttl_ms):
                del self._entries[session_id]
                return None
            return _detached(entry)

    async def claim(self, session_id: str) -> SessionEntry | None:
        """Remove and return the entry; exactly one caller can receive it."""
        with self._lock:
            entry = self._entries.pop(session_id, None)
        if entry is None or entry.is_expired(self.ttl_ms):
            return None
        return _detached(entry)

    async def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._entries.pop(session_id, None) is not None

    async def approximate_size(self) -> int:
        """Return the number of held entries, possibly including expired ones."""
        with self._lock:
            return len(self._entries)


class RedisSessionStore:
    """Redis-backed session store using native expiry and a Lua claim script."""

    def __init__(
        self,
        redis: Redis,
        ttl_ms: int = DEFAULT_TTL_MS,
        *,
        key_prefix: str = "veil",
    ) -> None:
        self.ttl_ms = ttl_ms
        self._redis = redis
        self._prefix = key_prefix
        self._claim = redis.register_script(CLAIM_SCRIPT)

    def key(self, session_id: str) -> str:
        return f"{self._prefix}:session:{session_id}"

    async def start(self) -> None:
        """No-op; Redis expires keys natively."""

    async def stop(self) -> None:
        """No-op; there is no background work to cancel."""

    async def put(self, entry: SessionEntry) -> None:
        """Store an entry for whatever remains of its TTL."""
        remaining_ms = int(self.ttl_ms - entry.age_ms())
        if remaining_ms <= 0:
            return
        try:
            await self._redis.set(self.key(entry.id), entry.to_json(), px=remaining_ms)
        except RedisError as exc:
            raise BackendUnavailableError(f"Session store write failed: {exc}") from exc

    async def get(self, session_id: str) -> SessionEntry | None:
        try:
            raw = await self._redis.get(self.key(session_id))
        except RedisError as exc:
            raise BackendUnavailableError(f"Session store read failed: {exc}") from exc
        return self._decode(raw)

    async def claim(self, session_id: str) -> SessionEntry | None:
        try:
            raw = await self._claim(keys=[self.key(session_id)])
        except RedisError as exc:
            raise BackendUnavailableError(f"Session claim failed: {exc}") from exc
        return self._decode(raw)

    async def delete(self, session_id: str) -> bool:
        try:
            removed = await self._redis.delete(self.key(session_id))
        except RedisError as exc:
            raise BackendUnavailableError(f"Session delete failed: {exc}") from exc
        return int(removed) > 0

    async def approximate_size(self) -> int:
        """Return the whole database key count; diagnostic only."""
        try:
            return int(await self._redis.dbsize())
        except RedisError as exc:
            raise BackendUnavailableError(f"Session size lookup failed: {exc}") from exc

    @staticmethod
    def _decode(raw: str | bytes | None) -> SessionEntry | None:
        if not raw:
            return None
        try:
            return SessionEntry.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            raise BackendUnavailableError("Session store returned a corrupt entry") from exc
