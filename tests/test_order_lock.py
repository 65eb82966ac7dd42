import asyncio
from contextlib import asynccontextmanager

import pytest

from infrastructure.external.cache import LocalOrderLockManager, RedisOrderLockManager


@pytest.mark.asyncio
async def test_same_order_is_serialized():
    locks = LocalOrderLockManager(blocking_timeout=1)
    trace = []

    async def worker(name: str):
        async with locks.hold("ORDER-1"):
            trace.append(f"{name}-in")
            await asyncio.sleep(0.01)
            trace.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert trace in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])
    # released locks are dropped
    assert locks._locks == {}


@pytest.mark.asyncio
async def test_different_orders_do_not_block_each_other():
    locks = LocalOrderLockManager(blocking_timeout=0.05)
    async with locks.hold("ORDER-1"):
        async with locks.hold("ORDER-2"):
            pass


@pytest.mark.asyncio
async def test_waiting_too_long_raises_timeout():
    locks = LocalOrderLockManager(blocking_timeout=0.01)
    async with locks.hold("ORDER-1"):
        with pytest.raises(TimeoutError):
            async with locks.hold("ORDER-1"):
                pass
    async with locks.hold("ORDER-1"):
        pass


class FakeRedisClient:
    def __init__(self):
        self.calls = []

    @asynccontextmanager
    async def lock(self, key, timeout=10, blocking_timeout=5):
        self.calls.append((key, timeout, blocking_timeout))
        yield None


@pytest.mark.asyncio
async def test_redis_lock_uses_order_scoped_key():
    redis = FakeRedisClient()
    locks = RedisOrderLockManager(redis, timeout=30, blocking_timeout=2)
    async with locks.hold("ORDER-9"):
        pass
    assert redis.calls == [("order_payment:ORDER-9", 30, 2)]
