from dataclasses import replace
from decimal import Decimal
from typing import Optional

import pytest

from application.dtos.payments import (
    CallbackEvent,
    CallbackOutcome,
    CallbackRequest,
    OperationOutcome,
    OperationResult,
    PaymentForm,
    RegisterOrderPayment,
    ReturnUrls,
)
from application.services.payment_service import PaymentService
from domain.common.exceptions import (
    DomainValidationException,
    OrderPaymentAlreadyExistsException,
    OrderPaymentNotFoundException,
    UnsupportedProviderException,
)
from domain.payment.entity import PaymentState, TransitionOrigin
from domain.payment.reconciliation import MonetaryAmount
from infrastructure.external.cache import LocalOrderLockManager
from infrastructure.external.payments.exceptions import PaymentSignatureError
from infrastructure.external.payments.registry import OGONE

from tests.conftest import make_payment


class StubGateway:
    provider = "stub"
    profile = OGONE  # recovers from error on status poll

    def __init__(self):
        self.event: Optional[CallbackEvent] = None
        self.error: Optional[Exception] = None
        self.reference: Optional[str] = None
        self.results: dict[str, list[OperationResult]] = {}
        self.calls: list[str] = []

    async def build_form(self, payment, urls, settings):
        return PaymentForm(
            provider=self.provider,
            action="https://pay.example/checkout",
            fields={"cart": payment.cart_number},
            properties={"session": "S-1"},
        )

    async def parse_callback(self, payment, request, settings):
        if self.error:
            raise self.error
        return self.event

    async def resolve_order_reference(self, request, settings):
        return self.reference

    async def _operation(self, name):
        self.calls.append(name)
        queued = self.results.get(name)
        if not queued:
            return OperationResult.not_supported(name)
        return queued.pop(0) if len(queued) > 1 else queued[0]

    async def get_status(self, payment, settings):
        return await self._operation("get_status")

    async def capture_payment(self, payment, settings):
        return await self._operation("capture_payment")

    async def refund_payment(self, payment, settings):
        return await self._operation("refund_payment")

    async def cancel_payment(self, payment, settings):
        return await self._operation("cancel_payment")

    async def aclose(self):
        return None


def _event(status_code: str, state: Optional[PaymentState], *, amount: Optional[str] = None, known: bool = True) -> CallbackEvent:
    return CallbackEvent(
        provider="stub",
        order_reference="ORDER-1",
        status_code=status_code,
        target_state=state,
        status_known=known,
        reported_amount=MonetaryAmount.major(amount, "EUR") if amount else None,
        transaction_id="T-1",
        card_type="VISA",
    )


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def service(gateway, uow_factory, locks, alerts):
    return PaymentService(
        gateways={"stub": gateway},
        settings_by_provider={"stub": object()},
        uow_factory=uow_factory,
        locks=locks,
        alerts=alerts,
        poll_attempts=3,
        poll_backoff=0,
        poll_max_backoff=0,
    )


@pytest.fixture
def order(store):
    payment = make_payment(provider="stub", cart_number="CART-9")
    store.rows[payment.order_id] = payment
    return payment


@pytest.mark.asyncio
async def test_register_order_rejects_duplicates_and_unknown_providers(service, store):
    req = RegisterOrderPayment(order_id="ORDER-7", provider="STUB", amount=Decimal("10.00"), currency="usd")
    dto = await service.register_order(req)
    assert dto.cart_number == "ORDER-7"
    assert dto.state is PaymentState.INITIALIZED
    assert store.rows["ORDER-7"].currency == "USD"

    with pytest.raises(OrderPaymentAlreadyExistsException):
        await service.register_order(req)

    with pytest.raises(UnsupportedProviderException):
        await service.register_order(
            RegisterOrderPayment(order_id="ORDER-8", provider="nope", amount=Decimal("1.00"))
        )


@pytest.mark.asyncio
async def test_build_form_persists_properties_once(service, store, order):
    urls = ReturnUrls(callback_url="https://shop.example/cb", continue_url="https://shop.example/ok")
    form = await service.build_form("ORDER-1", urls)
    assert form.fields == {"cart": "CART-9"}
    assert store.rows["ORDER-1"].properties["session"] == "S-1"

    store.rows["ORDER-1"].state = PaymentState.CAPTURED
    with pytest.raises(DomainValidationException):
        await service.build_form("ORDER-1", urls)


@pytest.mark.asyncio
async def test_amount_mismatch_is_applied_flagged_and_alerted(service, gateway, store, alerts, order):
    gateway.event = _event("9", PaymentState.CAPTURED, amount="40.00")

    result = await service.process_callback("stub", CallbackRequest(), order_id="ORDER-1")

    assert result.outcome is CallbackOutcome.APPLIED
    assert result.flagged_for_review
    saved = store.rows["ORDER-1"]
    assert saved.state is PaymentState.CAPTURED
    assert saved.needs_review
    assert saved.properties["card_type"] == "VISA"
    assert len(alerts.alerts) == 1
    assert alerts.alerts[0]["provider"] == "stub"
    assert "40.00" in alerts.alerts[0]["message"]


@pytest.mark.asyncio
async def test_reconciliation_uses_gateway_amount_scale(service, gateway, store, alerts, order):
    gateway.profile = replace(OGONE, amount_scale=3)
    gateway.event = _event("9", PaymentState.CAPTURED, amount="49.9949")

    result = await service.process_callback("stub", CallbackRequest(), order_id="ORDER-1")

    assert result.outcome is CallbackOutcome.APPLIED
    assert result.flagged_for_review
    assert store.rows["ORDER-1"].review_reason == "amount 49.995 != 49.990"
    assert len(alerts.alerts) == 1


@pytest.mark.asyncio
async def test_untrusted_callback_changes_nothing(service, gateway, store, alerts, order):
    gateway.error = PaymentSignatureError("Invalid callback signature", provider="stub")

    result = await service.process_callback("stub", CallbackRequest(client_ip="203.0.113.5"), order_id="ORDER-1")

    assert result.outcome is CallbackOutcome.UNTRUSTED
    assert result.reason == "Invalid callback signature"
    assert store.rows["ORDER-1"].state is PaymentState.INITIALIZED
    assert alerts.alerts[0]["subject"] == "Untrusted stub callback"


@pytest.mark.asyncio
async def test_callback_for_unknown_order_or_provider(service, gateway, alerts, order):
    gateway.event = _event("9", PaymentState.CAPTURED)

    missing = await service.process_callback("stub", CallbackRequest(), order_id="ORDER-404")
    assert missing.outcome is CallbackOutcome.NOT_FOUND

    unknown = await service.process_callback("acme", CallbackRequest(), order_id="ORDER-1")
    assert unknown.outcome is CallbackOutcome.ERROR
    assert alerts.alerts == []


@pytest.mark.asyncio
async def test_unmapped_status_is_no_transition(service, gateway, store, order):
    gateway.event = _event("77", None, known=False)

    result = await service.process_callback("stub", CallbackRequest(), order_id="ORDER-1")

    assert result.outcome is CallbackOutcome.NO_TRANSITION
    assert result.reason == "unmapped status 77"
    assert store.rows["ORDER-1"].state is PaymentState.INITIALIZED
    # card details are still recorded
    assert store.rows["ORDER-1"].properties["card_type"] == "VISA"


@pytest.mark.asyncio
async def test_callback_resolves_order_through_cart_number(service, gateway, store, order):
    gateway.reference = "CART-9"
    gateway.event = _event("5", PaymentState.AUTHORIZED, amount="49.99")

    result = await service.process_callback("stub", CallbackRequest())

    assert result.order_id == "ORDER-1"
    assert result.outcome is CallbackOutcome.APPLIED
    assert store.rows["ORDER-1"].state is PaymentState.AUTHORIZED

    gateway.reference = "CART-0"
    assert (await service.process_callback("stub", CallbackRequest())).outcome is CallbackOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_operation_applies_reported_state(service, gateway, store, order):
    gateway.results["capture_payment"] = [OperationResult.success(PaymentState.CAPTURED, transaction_id="T-9", status_code="9")]

    response = await service.capture_payment("ORDER-1")

    assert response.result.ok
    assert response.apply_outcome == "applied"
    assert response.state is PaymentState.CAPTURED
    saved = store.rows["ORDER-1"]
    assert saved.transaction_id == "T-9"
    assert saved.history[-1].origin is TransitionOrigin.CAPTURE


@pytest.mark.asyncio
async def test_unsupported_operation_leaves_state(service, store, order):
    response = await service.refund_payment("ORDER-1")
    assert response.result.outcome is OperationOutcome.NOT_SUPPORTED
    assert response.apply_outcome is None
    assert store.rows["ORDER-1"].state is PaymentState.INITIALIZED


@pytest.mark.asyncio
async def test_operation_errors(service, order):
    with pytest.raises(OrderPaymentNotFoundException):
        await service.get_status("ORDER-404")
    with pytest.raises(DomainValidationException):
        await service.run_operation("ORDER-1", "void")


@pytest.mark.asyncio
async def test_locked_order_yields_failure(gateway, uow_factory, alerts, order):
    locks = LocalOrderLockManager(blocking_timeout=0.01)
    service = PaymentService(
        gateways={"stub": gateway},
        settings_by_provider={"stub": object()},
        uow_factory=uow_factory,
        locks=locks,
        alerts=alerts,
    )
    async with locks.hold("ORDER-1"):
        response = await service.cancel_payment("ORDER-1")
    assert response.result.outcome is OperationOutcome.FAILURE
    assert response.result.reason == "order is locked"
    assert gateway.calls == []


@pytest.mark.asyncio
async def test_refresh_status_retries_failures(service, gateway, store, order):
    gateway.results["get_status"] = [
        OperationResult.failure("timeout"),
        OperationResult.failure("timeout"),
        OperationResult.success(PaymentState.CAPTURED, status_code="9"),
    ]

    response = await service.refresh_status("ORDER-1")

    assert gateway.calls == ["get_status"] * 3
    assert response.result.ok
    assert store.rows["ORDER-1"].state is PaymentState.CAPTURED
    assert store.rows["ORDER-1"].history[-1].origin is TransitionOrigin.STATUS_POLL


@pytest.mark.asyncio
async def test_refresh_status_returns_last_failure(service, gateway, order):
    gateway.results["get_status"] = [OperationResult.failure("timeout")]

    response = await service.refresh_status("ORDER-1", attempts=2)

    assert gateway.calls == ["get_status", "get_status"]
    assert response.result.outcome is OperationOutcome.FAILURE
    assert response.result.reason == "timeout"


@pytest.mark.asyncio
async def test_status_poll_recovers_error(service, gateway, store):
    store.rows["ORDER-1"] = make_payment(provider="stub", state=PaymentState.ERROR)
    gateway.results["get_status"] = [OperationResult.success(PaymentState.CAPTURED, status_code="9")]

    response = await service.get_status("ORDER-1")

    assert response.apply_outcome == "applied"
    assert store.rows["ORDER-1"].state is PaymentState.CAPTURED
