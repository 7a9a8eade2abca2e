"""Stores, admission control and outbound delivery."""

from .ratelimit import RateLimiter
from .scheduler import MemoryTimerStore, RedisTimerStore, TimerStore
from .session_store import MemorySessionStore, RedisSessionStore, SessionStore
from .store_factory import Stores, create_stores

__all__ = [
    "RateLimiter",
    "MemoryTimerStore",
    "RedisTimerStore",
    "TimerStore",
    "MemorySessionStore",
    "RedisSessionStore",
    "SessionStore",
    "Stores",
    "create_stores",
]
