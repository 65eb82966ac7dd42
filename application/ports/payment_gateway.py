"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
Provider settings are handed to every call instead of being read from
ambient configuration.
"""
from __future__ import annotations

from typing import Any, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    CallbackEvent,
    CallbackRequest,
    OperationResult,
    PaymentForm,
    ReturnUrls,
)
from domain.gateway.profile import ProviderProfile
from domain.payment.entity import OrderPayment


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for third-party payment providers.

    Operations a gateway does not offer return ``OperationResult.not_supported``.
    Outbound operations never raise for transport problems; they return a
    ``Failure`` result instead.
    """

    provider: str
    profile: ProviderProfile

    async def build_form(self, payment: OrderPayment, urls: ReturnUrls, settings: Any) -> PaymentForm: ...

    async def parse_callback(self, payment: OrderPayment, request: CallbackRequest, settings: Any) -> CallbackEvent: ...

    async def resolve_order_reference(self, request: CallbackRequest, settings: Any) -> Optional[str]: ...

    async def get_status(self, payment: OrderPayment, settings: Any) -> OperationResult: ...

    async def capture_payment(self, payment: OrderPayment, settings: Any) -> OperationResult: ...

    async def refund_payment(self, payment: OrderPayment, settings: Any) -> OperationResult: ...

    async def cancel_payment(self, payment: OrderPayment, settings: Any) -> OperationResult: ...

    async def aclose(self) -> None: ...
