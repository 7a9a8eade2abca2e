"""Construction of the session and timer stores selected by configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from redis.asyncio import Redis

from veil_stage.core.settings import Settings
from veil_stage.services.scheduler import MemoryTimerStore, RedisTimerStore, TimerStore
from veil_stage.services.session_store import (
    MemorySessionStore,
    RedisSessionStore,
    SessionStore,
)

logger = logging.getLogger(__name__)

BACKEND_MEMORY = "memory"
BACKEND_SHARED = "shared"
_SHARED_ALIASES = {BACKEND_SHARED, "redis"}


@dataclass
class Stores:
    """Stores built at startup and owned by the application."""

    backend: str
    sessions: SessionStore
    timers: TimerStore
    redis: Redis | None = None

    async def start(self) -> None:
        await self.sessions.start()

    async def close(self) -> None:
        """Stop timers and sweeps, then release the shared connection."""
        await self.timers.stop_all()
        await self.sessions.stop()
        if self.redis is not None:
            await self.redis.aclose()


def resolve_backend(name: str) -> str:
    """Map a configured backend name onto ``memory`` or ``shared``."""
    normalized = (name or "").strip().lower()
    if normalized in _SHARED_ALIASES:
        return BACKEND_SHARED
    if normalized != BACKEND_MEMORY:
        logger.warning(
            "Unknown storage backend %r; falling back to memory",
            name,
            extra={"event": "unknown-storage-backend", "backend": name},
        )
    return BACKEND_MEMORY


def create_stores(config: Settings, *, redis: Redis | None = None) -> Stores:
    """Build the stores for the configured backend.

    Args:
        config: Application settings.
        redis: Optional pre-built client; created from ``REDIS_URL`` otherwise.
    """
    backend = resolve_backend(config.storage_backend)
    if backend == BACKEND_MEMORY:
        return Stores(
            backend=backend,
            sessions=MemorySessionStore(
                config.session_ttl_ms,
                sweep_interval=config.session_sweep_seconds,
            ),
            timers=MemoryTimerStore(
                config.max_timer_lifetime_ms,
                max_per_scope=config.max_timers_per_scope,
            ),
        )

    client = redis if redis is not None else Redis.from_url(config.redis_url)
    logger.info(
        "Using shared storage backend",
        extra={"event": "storage-backend", "backend": backend},
    )
    return Stores(
        backend=backend,
        sessions=RedisSessionStore(
            client,
            config.session_ttl_ms,
            key_prefix=config.store_key_prefix,
        ),
        timers=RedisTimerStore(
            client,
            config.max_timer_lifetime_ms,
            key_prefix=config.store_key_prefix,
            max_per_scope=config.max_timers_per_scope,
        ),
        redis=client,
    )
