import asyncio

import fakeredis
import pytest

from otpauth.db.kv_store import (
    InMemoryKeyValueStore,
    LockUnavailableError,
    RedisKeyValueStore,
    create_kv_store,
)

pytestmark = pytest.mark.anyio


class StoreUnderTest:
    """A store plus a way to let one second of TTL elapse for it."""

    def __init__(self, store, clock=None):
        self.store = store
        self.clock = clock

    async def let_expire(self):
        if self.clock is not None:
            self.clock.advance(seconds=2)
        else:
            await asyncio.sleep(1.2)


def redis_store(**lock_options):
    return RedisKeyValueStore(fakeredis.FakeAsyncRedis(decode_responses=True), **lock_options)


@pytest.fixture(params=["memory", "redis"])
def subject(request, clock):
    if request.param == "memory":
        return StoreUnderTest(InMemoryKeyValueStore(clock=clock), clock)
    return StoreUnderTest(redis_store(lock_timeout=5, lock_blocking_timeout=2))


async def test_get_set_delete(subject):
    kv = subject.store

    assert await kv.get("otp:session:+15551234567") is None
    await kv.set("otp:session:+15551234567", '{"a": 1}')

    assert await kv.get("otp:session:+15551234567") == '{"a": 1}'
    assert await kv.delete("otp:session:+15551234567") is True
    assert await kv.delete("otp:session:+15551234567") is False
    assert await kv.get("otp:session:+15551234567") is None


async def test_values_expire_after_ttl(subject):
    kv = subject.store
    await kv.set("short", "gone soon", ttl_seconds=1)
    await kv.set("long", "still here", ttl_seconds=600)

    await subject.let_expire()

    assert await kv.get("short") is None
    assert await kv.get("long") == "still here"


async def test_scan_keys_by_prefix(subject):
    kv = subject.store
    await kv.set("otp:session:+15551234567", "1")
    await kv.set("otp:session:+15559876543", "2")
    await kv.set("otp:ratelimit:+15551234567", "3")

    keys = await kv.scan_keys("otp:session:")

    assert sorted(keys) == ["otp:session:+15551234567", "otp:session:+15559876543"]


async def test_scan_skips_expired_keys(subject):
    kv = subject.store
    await kv.set("otp:session:+15551234567", "1", ttl_seconds=1)

    await subject.let_expire()

    assert await kv.scan_keys("otp:session:") == []


async def test_lock_is_mutually_exclusive(subject):
    kv = subject.store
    events = []

    async def worker(name):
        async with kv.lock("otp:+15551234567"):
            events.append(f"{name}-in")
            await asyncio.sleep(0.2)
            events.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert events in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])


async def test_locks_on_different_keys_do_not_block(subject):
    kv = subject.store
    inside = asyncio.Event()

    async def holder():
        async with kv.lock("otp:+15551234567"):
            inside.set()
            await asyncio.sleep(0.3)

    async def other():
        await inside.wait()
        async with kv.lock("otp:+15559876543"):
            return "entered"

    _, result = await asyncio.wait_for(asyncio.gather(holder(), other()), timeout=2)

    assert result == "entered"


async def test_redis_lock_gives_up_after_blocking_timeout():
    kv = redis_store(lock_timeout=5, lock_blocking_timeout=0.2)
    held = asyncio.Event()
    release = asyncio.Event()

    async def holder():
        async with kv.lock("otp:+15551234567"):
            held.set()
            await release.wait()

    task = asyncio.create_task(holder())
    await held.wait()

    with pytest.raises(LockUnavailableError):
        async with kv.lock("otp:+15551234567"):
            pass

    release.set()
    await task


async def test_redis_lock_that_expired_while_held_exits_cleanly(caplog):
    kv = redis_store(lock_timeout=0.3, lock_blocking_timeout=1)

    async with kv.lock("otp:+15551234567"):
        await asyncio.sleep(0.5)

    assert "expired" in caplog.text
    # and the key is free again
    async with kv.lock("otp:+15551234567"):
        pass


async def test_memory_store_purge_drops_expired_entries(clock):
    kv = InMemoryKeyValueStore(clock=clock)
    await kv.set("a", "1", ttl_seconds=1)
    await kv.set("b", "2")

    clock.advance(seconds=2)

    assert kv.purge_expired() == 1
    assert await kv.get("b") == "2"


async def test_create_kv_store_selects_backend(clock):
    redis_kv = create_kv_store("redis://localhost:6379/0", clock=clock, lock_timeout=15, lock_blocking_timeout=5)
    memory_kv = create_kv_store(None, clock=clock)

    assert isinstance(redis_kv, RedisKeyValueStore)
    assert redis_kv.name == "redis"
    assert isinstance(memory_kv, InMemoryKeyValueStore)

    await redis_kv.close()
