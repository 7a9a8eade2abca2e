import asyncio
from datetime import timedelta

import pytest
from fakeredis import FakeAsyncRedis, FakeServer
from redis.exceptions import ConnectionError as RedisConnectionError

from veil_stage.core.errors import BackendUnavailableError
from veil_stage.models.session import SessionEntry, new_session_id, utcnow
from veil_stage.services.session_store import MemorySessionStore, RedisSessionStore

TTL_MS = 60_000


def _entry(**overrides) -> SessionEntry:
    values = {
        "id": new_session_id(),
        "owner_id": "user-1",
        "scope_id": "chan-1",
        "payload": {"expression": "d20", "total": 17},
        "external_ref": "msg-1",
        "owner_tag": "alice",
        "note": "attack",
    }
    values.update(overrides)
    return SessionEntry(**values)


@pytest.fixture
def redis_client():
    return FakeAsyncRedis(server=FakeServer())


@pytest.fixture(params=["memory", "redis"])
def store(request, redis_client):
    if request.param == "memory":
        return MemorySessionStore(TTL_MS)
    return RedisSessionStore(redis_client, TTL_MS, key_prefix="test")


@pytest.mark.asyncio
async def test_put_then_get_returns_equal_entry(store):
    entry = _entry()
    await store.put(entry)

    fetched = await store.get(entry.id)
    assert fetched == entry
    # get is non-destructive
    assert await store.get(entry.id) == entry


@pytest.mark.asyncio
async def test_mutating_payloads_does_not_rewrite_stored_entry(store):
    payload = {"expression": "d20", "total": 17, "rolls": [17]}
    entry = _entry(payload=payload)
    await store.put(entry)

    payload["total"] = 2
    fetched = await store.get(entry.id)
    fetched.payload["total"] = 1
    fetched.payload["rolls"].append(1)

    claimed = await store.claim(entry.id)
    assert claimed.payload == {"expression": "d20", "total": 17, "rolls": [17]}


@pytest.mark.asyncio
async def test_claim_removes_entry(store):
    entry = _entry()
    await store.put(entry)

    assert await store.claim(entry.id) == entry
    assert await store.claim(entry.id) is None
    assert await store.get(entry.id) is None


@pytest.mark.asyncio
async def test_concurrent_claims_have_exactly_one_winner(store):
    entry = _entry()
    await store.put(entry)

    results = await asyncio.gather(*(store.claim(entry.id) for _ in range(50)))

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert winners[0].id == entry.id


@pytest.mark.asyncio
async def test_unknown_and_expired_entries_look_identical(store):
    stale = _entry(created_at=utcnow() - timedelta(milliseconds=TTL_MS + 1000))
    await store.put(stale)

    assert await store.get(stale.id) is None
    assert await store.claim(stale.id) is None
    assert await store.get("never-existed") is None


@pytest.mark.asyncio
async def test_delete_is_idempotent(store):
    entry = _entry()
    await store.put(entry)

    assert await store.delete(entry.id) is True
    assert await store.delete(entry.id) is False
    assert await store.get(entry.id) is None


@pytest.mark.asyncio
async def test_memory_sweep_drops_expired_entries():
    store = MemorySessionStore(TTL_MS, sweep_interval=0.02)
    fresh = _entry()
    stale = _entry(created_at=utcnow() - timedelta(milliseconds=TTL_MS + 1))
    await store.put(fresh)
    await store.put(stale)
    assert await store.approximate_size() == 2

    await store.start()
    try:
        for _ in range(50):
            if await store.approximate_size() == 1:
                break
            await asyncio.sleep(0.02)
    finally:
        await store.stop()

    assert await store.approximate_size() == 1
    assert await store.get(fresh.id) == fresh


@pytest.mark.asyncio
async def test_memory_store_stop_without_start_is_noop():
    store = MemorySessionStore(TTL_MS)
    await store.stop()
    await store.start()
    await store.start()
    await store.stop()


@pytest.mark.asyncio
async def test_redis_put_uses_remaining_ttl(redis_client):
    store = RedisSessionStore(redis_client, TTL_MS, key_prefix="test")
    entry = _entry(created_at=utcnow() - timedelta(seconds=30))

    await store.put(entry)

    remaining = await redis_client.pttl(store.key(entry.id))
    assert 0 < remaining <= TTL_MS - 29_000
    assert store.key(entry.id) == f"test:session:{entry.id}"


@pytest.mark.asyncio
async def test_redis_errors_surface_as_backend_unavailable(redis_client, mocker):
    store = RedisSessionStore(redis_client, TTL_MS)
    mocker.patch.object(redis_client, "get", side_effect=RedisConnectionError("down"))
    mocker.patch.object(redis_client, "set", side_effect=RedisConnectionError("down"))

    with pytest.raises(BackendUnavailableError):
        await store.get("abc")
    with pytest.raises(BackendUnavailableError):
        await store.put(_entry())


@pytest.mark.asyncio
async def test_redis_corrupt_entry_is_a_backend_fault(redis_client):
    store = RedisSessionStore(redis_client, TTL_MS)
    await redis_client.set(store.key("broken"), "{not json")

    with pytest.raises(BackendUnavailableError):
        await store.get("broken")


@pytest.mark.asyncio
async def test_redis_claim_is_visible_across_instances():
    shared = FakeAsyncRedis(server=FakeServer())
    first = RedisSessionStore(shared, TTL_MS)
    second = RedisSessionStore(shared, TTL_MS)
    entry = _entry()
    await first.put(entry)

    assert await second.claim(entry.id) == entry
    assert await first.get(entry.id) is None
