"""
Alert sink port for integrity problems that need an operator.
"""
from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class AlertSink(Protocol):
    """Delivers operator alerts (mail, chat, pager...).

    Implementations must not raise for delivery problems; an alert that
    cannot be delivered is logged by the implementation.
    """

    async def send_alert(self, subject: str, message: str, **context: Any) -> None: ...
