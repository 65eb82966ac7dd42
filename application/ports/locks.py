"""
Per-order mutual exclusion port.
"""
from __future__ import annotations

from typing import AsyncContextManager, Protocol, runtime_checkable


@runtime_checkable
class OrderLockManager(Protocol):
    """Serializes verify -> reconcile -> apply for one order.

    ``hold`` raises ``TimeoutError`` when the lock cannot be acquired in time.
    """

    def hold(self, order_id: str) -> AsyncContextManager[None]: ...
