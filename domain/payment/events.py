"""
Payment domain events.

Dataclass events record integrity-relevant payment facts for downstream
handling (alerts, audit). Domain remains free of infrastructure imports.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
import uuid


@dataclass
class PaymentEvent:
    order_id: str
    provider: str
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass
class PaymentStateChanged(PaymentEvent):
    from_state: str = ""
    to_state: str = ""
    origin: str = ""
    transaction_id: Optional[str] = None


@dataclass
class TransitionRejected(PaymentEvent):
    current_state: str = ""
    requested_state: str = ""
    origin: str = ""
    status_code: Optional[str] = None


@dataclass
class AmountMismatchDetected(PaymentEvent):
    reported: str = ""
    expected: str = ""
    reason: Optional[str] = None


@dataclass
class CallbackRejected(PaymentEvent):
    reason: str = ""
