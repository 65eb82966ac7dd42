"""
订单级互斥锁实现（OrderLockManager 端口的适配器）
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from core.logging_config import get_logger
from infrastructure.external.cache.redis_client import RedisClient

logger = get_logger(__name__)


class RedisOrderLockManager:
    """基于 Redis 分布式锁，多进程/多实例部署使用"""

    def __init__(self, redis: RedisClient, *, timeout: float = 30, blocking_timeout: float = 10):
        self._redis = redis
        self._timeout = timeout
        self._blocking_timeout = blocking_timeout

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[None]:
        async with self._redis.lock(
            f"order_payment:{order_id}",
            timeout=self._timeout,
            blocking_timeout=self._blocking_timeout,
        ):
            yield


class LocalOrderLockManager:
    """进程内 asyncio.Lock，单进程部署与测试使用"""

    def __init__(self, *, blocking_timeout: Optional[float] = 10):
        self._blocking_timeout = blocking_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, order_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(order_id, asyncio.Lock())
        self._waiters[order_id] = self._waiters.get(order_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._blocking_timeout)
            except asyncio.TimeoutError:
                logger.warning("order_lock_timeout", order_id=order_id)
                raise TimeoutError(f"order {order_id} is locked") from None
            try:
                yield
            finally:
                lock.release()
        finally:
            self._waiters[order_id] -= 1
            # 无人等待时回收锁对象
            if self._waiters[order_id] == 0:
                self._waiters.pop(order_id, None)
                self._locks.pop(order_id, None)
