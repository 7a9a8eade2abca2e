import logging

import pytest
from fakeredis import FakeAsyncRedis, FakeServer

from veil_stage.core.settings import Settings
from veil_stage.services.scheduler import MemoryTimerStore, RedisTimerStore
from veil_stage.services.session_store import MemorySessionStore, RedisSessionStore
from veil_stage.services.store_factory import create_stores, resolve_backend


def test_memory_backend_builds_memory_stores():
    stores = create_stores(Settings(storage_backend="memory", session_ttl_seconds=30,
                                    max_timers_per_scope=3))

    assert stores.backend == "memory"
    assert isinstance(stores.sessions, MemorySessionStore)
    assert isinstance(stores.timers, MemoryTimerStore)
    assert stores.sessions.ttl_ms == 30_000
    assert stores.timers.max_per_scope == 3
    assert stores.redis is None


@pytest.mark.asyncio
async def test_shared_backend_builds_redis_stores():
    redis = FakeAsyncRedis(server=FakeServer())
    stores = create_stores(
        Settings(storage_backend="shared", store_key_prefix="x", max_timer_hours=3),
        redis=redis,
    )

    assert stores.backend == "shared"
    assert isinstance(stores.sessions, RedisSessionStore)
    assert isinstance(stores.timers, RedisTimerStore)
    assert stores.timers.max_lifetime_ms == 3 * 60 * 60 * 1000
    assert stores.sessions.key("abc") == "x:session:abc"
    await stores.close()


@pytest.mark.parametrize(("name", "expected"), [
    ("memory", "memory"),
    ("shared", "shared"),
    ("redis", "shared"),
    (" Shared ", "shared"),
])
def test_resolve_backend_aliases(name, expected):
    assert resolve_backend(name) == expected


def test_unknown_backend_warns_and_falls_back(caplog):
    with caplog.at_level(logging.WARNING, logger="veil_stage.services.store_factory"):
        assert resolve_backend("postgres") == "memory"
    assert "Unknown storage backend" in caplog.text
