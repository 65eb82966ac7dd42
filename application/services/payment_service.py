"""
Application service orchestrating payment use-cases.

This class depends only on application ports and DTOs. Gateway clients,
per-provider settings, persistence, locks and alert delivery are injected
from the composition root (API/tasks), keeping dependencies one-way.

Every state change for an order runs under that order's lock:
load -> verify -> reconcile -> apply -> persist.
"""
from __future__ import annotations

from typing import Any, Callable, Mapping, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from application.dtos.payments import (
    CallbackEvent,
    CallbackOutcome,
    CallbackRequest,
    CallbackResult,
    OperationOutcome,
    OperationResponse,
    OperationResult,
    OrderPaymentDTO,
    PaymentForm,
    RegisterOrderPayment,
    ReturnUrls,
)
from application.ports.alerts import AlertSink
from application.ports.locks import OrderLockManager
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.common.exceptions import (
    BusinessException,
    DomainValidationException,
    OrderPaymentNotFoundException,
    UnsupportedProviderException,
    UntrustedCallbackException,
)
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.payment.entity import OrderPayment, PaymentState, TransitionOrigin
from domain.payment.events import (
    AmountMismatchDetected,
    CallbackRejected,
    PaymentEvent,
    PaymentStateChanged,
    TransitionRejected,
)
from domain.payment.reconciliation import reconcile
from domain.payment.state_machine import (
    ApplyOutcome,
    PaymentStateMachine,
    TransitionRequest,
)


logger = get_logger(__name__)


# operation name -> (gateway method, transition origin)
OPERATIONS: dict[str, tuple[str, TransitionOrigin]] = {
    "status": ("get_status", TransitionOrigin.STATUS_POLL),
    "capture": ("capture_payment", TransitionOrigin.CAPTURE),
    "refund": ("refund_payment", TransitionOrigin.REFUND),
    "cancel": ("cancel_payment", TransitionOrigin.CANCEL),
}

CARD_PROPERTIES = ("card_type", "card_mask")


class _StatusPollFailed(Exception):
    def __init__(self, response: OperationResponse):
        super().__init__(response.result.reason)
        self.response = response


class PaymentService:
    def __init__(
        self,
        *,
        gateways: Mapping[str, PaymentGateway],
        settings_by_provider: Mapping[str, Any],
        uow_factory: Callable[..., AbstractUnitOfWork],
        locks: OrderLockManager,
        alerts: AlertSink,
        poll_attempts: int = 3,
        poll_backoff: float = 0.5,
        poll_max_backoff: float = 10.0,
    ) -> None:
        self._gateways = dict(gateways)
        self._settings = dict(settings_by_provider)
        self._uow_factory = uow_factory
        self._locks = locks
        self._alerts = alerts
        self._poll_attempts = poll_attempts
        self._poll_backoff = poll_backoff
        self._poll_max_backoff = poll_max_backoff

    # ----- collaborators -----
    def _gateway(self, provider: str) -> PaymentGateway:
        gateway = self._gateways.get(provider.lower())
        if gateway is None:
            raise UnsupportedProviderException(provider)
        return gateway

    def _provider_settings(self, provider: str) -> Any:
        try:
            return self._settings[provider.lower()]
        except KeyError:
            raise UnsupportedProviderException(provider) from None

    @staticmethod
    async def _load(uow: AbstractUnitOfWork, order_id: str) -> OrderPayment:
        payment = await uow.order_payments.get_by_order_id(order_id)
        if payment is None:
            raise OrderPaymentNotFoundException(order_id)
        return payment

    # ----- registration & checkout -----
    async def register_order(self, req: RegisterOrderPayment) -> OrderPaymentDTO:
        self._gateway(req.provider)
        payment = OrderPayment(
            id=None,
            order_id=req.order_id,
            cart_number=req.cart_number or req.order_id,
            provider=req.provider,
            amount=req.amount,
            currency=req.currency,
        )
        async with self._uow_factory() as uow:
            payment = await uow.order_payments.create(payment)
        logger.info(
            "payment_order_registered",
            order_id=payment.order_id,
            provider=payment.provider,
            amount=str(payment.amount),
            currency=payment.currency,
        )
        return OrderPaymentDTO.from_entity(payment)

    async def get_order(self, order_id: str) -> OrderPaymentDTO:
        async with self._uow_factory(readonly=True) as uow:
            payment = await self._load(uow, order_id)
        return OrderPaymentDTO.from_entity(payment)

    async def build_form(self, order_id: str, urls: ReturnUrls) -> PaymentForm:
        async with self._locks.hold(order_id):
            async with self._uow_factory() as uow:
                payment = await self._load(uow, order_id)
                if payment.state is not PaymentState.INITIALIZED:
                    raise DomainValidationException(
                        f"Order payment is already {payment.state.value}",
                        field="order_id",
                    )
                gateway = self._gateway(payment.provider)
                form = await gateway.build_form(payment, urls, self._provider_settings(payment.provider))
                if form.properties:
                    payment.properties.update(form.properties)
                    await uow.order_payments.save(payment)
        logger.info("payment_form_built", order_id=order_id, provider=form.provider, method=form.method)
        return form

    # ----- callbacks -----
    async def process_callback(
        self,
        provider: str,
        request: CallbackRequest,
        order_id: Optional[str] = None,
    ) -> CallbackResult:
        """Verify, reconcile and apply one gateway notification.

        Never raises: every failure is reported through the returned outcome
        so the HTTP layer can always acknowledge the delivery.
        """
        provider = provider.lower()
        events: list[PaymentEvent] = []
        try:
            result = await self._process_callback(provider, request, order_id, events)
        except UntrustedCallbackException as exc:
            logger.warning(
                "payment_callback_untrusted",
                provider=provider,
                order_id=order_id,
                client_ip=request.client_ip,
                reason=exc.message,
            )
            events.append(CallbackRejected(order_id=order_id or "", provider=provider, reason=exc.message))
            result = CallbackResult(
                provider=provider,
                order_id=order_id,
                outcome=CallbackOutcome.UNTRUSTED,
                reason=exc.message,
            )
        except OrderPaymentNotFoundException as exc:
            logger.warning("payment_callback_order_not_found", provider=provider, order_id=order_id)
            result = CallbackResult(
                provider=provider,
                order_id=order_id,
                outcome=CallbackOutcome.NOT_FOUND,
                reason=exc.message,
            )
        except TimeoutError as exc:
            events.clear()
            logger.warning("payment_callback_lock_timeout", provider=provider, order_id=order_id)
            result = CallbackResult(provider=provider, order_id=order_id, outcome=CallbackOutcome.ERROR, reason=str(exc))
        except BusinessException as exc:
            events.clear()
            logger.error("payment_callback_failed", provider=provider, order_id=order_id, error=exc.message)
            result = CallbackResult(provider=provider, order_id=order_id, outcome=CallbackOutcome.ERROR, reason=exc.message)
        except Exception as exc:
            events.clear()
            logger.exception("payment_callback_error", provider=provider, order_id=order_id)
            result = CallbackResult(
                provider=provider,
                order_id=order_id,
                outcome=CallbackOutcome.ERROR,
                reason=type(exc).__name__,
            )
        await self._publish(events)
        return result

    async def _process_callback(
        self,
        provider: str,
        request: CallbackRequest,
        order_id: Optional[str],
        events: list[PaymentEvent],
    ) -> CallbackResult:
        gateway = self._gateway(provider)
        settings = self._provider_settings(provider)

        if order_id is None:
            order_id = await self._resolve_order_id(gateway, provider, request, settings)

        async with self._locks.hold(order_id):
            async with self._uow_factory() as uow:
                payment = await self._load(uow, order_id)
                if payment.provider != provider:
                    raise OrderPaymentNotFoundException(order_id)

                event = await gateway.parse_callback(payment, request, settings)
                dirty = self._record_card_details(payment, event)

                flagged = False
                if event.reported_amount is not None:
                    check = reconcile(
                        event.reported_amount,
                        payment.authoritative_amount,
                        scale=gateway.profile.amount_scale,
                    )
                    reason = check.reason or "amount mismatch"
                    flagged = not check.matched
                    # accepted, but an operator has to look at it; a replay finds the flag already set
                    if flagged and not (payment.needs_review and payment.review_reason == reason):
                        payment.flag_for_review(reason)
                        dirty = True
                        events.append(
                            AmountMismatchDetected(
                                order_id=payment.order_id,
                                provider=provider,
                                reported=str(event.reported_amount),
                                expected=str(payment.authoritative_amount),
                                reason=check.reason,
                            )
                        )

                if event.target_state is None:
                    if dirty:
                        await uow.order_payments.save(payment)
                    logger.info(
                        "payment_callback_no_transition",
                        provider=provider,
                        order_id=order_id,
                        status_code=event.status_code,
                        status_known=event.status_known,
                    )
                    return CallbackResult(
                        provider=provider,
                        order_id=order_id,
                        outcome=CallbackOutcome.NO_TRANSITION,
                        state=payment.state,
                        flagged_for_review=flagged,
                        reason=None if event.status_known else f"unmapped status {event.status_code}",
                    )

                machine = PaymentStateMachine(allow_error_recovery=gateway.profile.recovers_from_error_on_status_poll)
                applied = await machine.apply(
                    payment,
                    TransitionRequest(
                        target=event.target_state,
                        origin=TransitionOrigin.CALLBACK,
                        status_code=event.status_code,
                        transaction_id=event.transaction_id,
                        amount=event.reported_amount.value if event.reported_amount else None,
                    ),
                    uow.order_payments,
                )
                if applied.outcome is not ApplyOutcome.APPLIED and dirty:
                    await uow.order_payments.save(payment)
                events.extend(machine.get_domain_events())

        return CallbackResult(
            provider=provider,
            order_id=order_id,
            outcome=CallbackOutcome(applied.outcome.value),
            state=applied.state,
            flagged_for_review=flagged,
            reason=applied.reason,
        )

    async def _resolve_order_id(
        self,
        gateway: PaymentGateway,
        provider: str,
        request: CallbackRequest,
        settings: Any,
    ) -> str:
        reference = await gateway.resolve_order_reference(request, settings)
        if not reference:
            raise OrderPaymentNotFoundException()
        async with self._uow_factory(readonly=True) as uow:
            payment = await uow.order_payments.get_by_cart_number(provider, reference)
        if payment is None:
            raise OrderPaymentNotFoundException(reference)
        return payment.order_id

    @staticmethod
    def _record_card_details(payment: OrderPayment, event: CallbackEvent) -> bool:
        changed = False
        for name in CARD_PROPERTIES:
            value = getattr(event, name)
            if value and payment.properties.get(name) != value:
                payment.properties[name] = value
                changed = True
        return changed

    # ----- outbound operations -----
    async def get_status(self, order_id: str) -> OperationResponse:
        return await self.run_operation(order_id, "status")

    async def capture_payment(self, order_id: str) -> OperationResponse:
        return await self.run_operation(order_id, "capture")

    async def refund_payment(self, order_id: str) -> OperationResponse:
        return await self.run_operation(order_id, "refund")

    async def cancel_payment(self, order_id: str) -> OperationResponse:
        return await self.run_operation(order_id, "cancel")

    async def run_operation(self, order_id: str, operation: str) -> OperationResponse:
        """Call the gateway and apply the state it reports.

        Gateway, lock and persistence problems come back as ``Failure``
        results; only a missing order or an unknown operation raises.
        """
        try:
            method, origin = OPERATIONS[operation]
        except KeyError:
            raise DomainValidationException(f"Unknown payment operation: {operation}", field="operation") from None

        events: list[PaymentEvent] = []
        try:
            async with self._locks.hold(order_id):
                async with self._uow_factory() as uow:
                    payment = await self._load(uow, order_id)
                    gateway = self._gateway(payment.provider)
                    settings = self._provider_settings(payment.provider)
                    result = await getattr(gateway, method)(payment, settings)

                    response = OperationResponse(
                        order_id=order_id,
                        operation=operation,
                        result=result,
                        state=payment.state,
                    )
                    if result.ok and result.state is not None:
                        machine = PaymentStateMachine(
                            allow_error_recovery=gateway.profile.recovers_from_error_on_status_poll
                        )
                        applied = await machine.apply(
                            payment,
                            TransitionRequest(
                                target=result.state,
                                origin=origin,
                                status_code=result.status_code,
                                transaction_id=result.transaction_id,
                            ),
                            uow.order_payments,
                        )
                        events.extend(machine.get_domain_events())
                        response.apply_outcome = applied.outcome.value
                        response.state = applied.state
        except TimeoutError:
            logger.warning("payment_operation_lock_timeout", order_id=order_id, operation=operation)
            response = OperationResponse(
                order_id=order_id,
                operation=operation,
                result=OperationResult.failure("order is locked"),
            )
        except OrderPaymentNotFoundException:
            raise
        except Exception as exc:
            # nothing was committed; state machine events are void
            events.clear()
            if isinstance(exc, BusinessException):
                reason = exc.message
                logger.warning("payment_operation_failed", order_id=order_id, operation=operation, error=reason)
            else:
                reason = f"unexpected error: {type(exc).__name__}"
                logger.exception("payment_operation_error", order_id=order_id, operation=operation)
            response = OperationResponse(
                order_id=order_id,
                operation=operation,
                result=OperationResult.failure(reason),
            )

        logger.info(
            "payment_operation_completed",
            order_id=order_id,
            operation=operation,
            outcome=response.result.outcome.value,
            status_code=response.result.status_code,
            apply_outcome=response.apply_outcome,
            reason=response.result.reason,
        )
        await self._publish(events)
        return response

    async def refresh_status(self, order_id: str, *, attempts: Optional[int] = None) -> OperationResponse:
        """Poll the gateway status, retrying with backoff while it fails."""

        async def _poll_once() -> OperationResponse:
            response = await self.get_status(order_id)
            if response.result.outcome is OperationOutcome.FAILURE:
                raise _StatusPollFailed(response)
            return response

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(attempts or self._poll_attempts),
            wait=wait_exponential(multiplier=self._poll_backoff, max=self._poll_max_backoff),
            retry=retry_if_exception_type(_StatusPollFailed),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await _poll_once()
        except _StatusPollFailed as exc:
            logger.warning("payment_status_poll_exhausted", order_id=order_id, reason=exc.response.result.reason)
            return exc.response

    # ----- events -----
    async def _publish(self, events: list[PaymentEvent]) -> None:
        for event in events:
            if isinstance(event, PaymentStateChanged):
                logger.info(
                    "payment_transition_applied",
                    order_id=event.order_id,
                    provider=event.provider,
                    from_state=event.from_state,
                    to_state=event.to_state,
                    origin=event.origin,
                    transaction_id=event.transaction_id,
                )
            elif isinstance(event, TransitionRejected):
                logger.warning(
                    "payment_transition_rejected",
                    order_id=event.order_id,
                    provider=event.provider,
                    current_state=event.current_state,
                    requested_state=event.requested_state,
                    origin=event.origin,
                    status_code=event.status_code,
                )
                await self._alerts.send_alert(
                    f"Payment transition rejected for order {event.order_id}",
                    f"{event.provider} reported {event.requested_state} (status {event.status_code}) "
                    f"via {event.origin}, but the order is {event.current_state}.",
                    order_id=event.order_id,
                    provider=event.provider,
                )
            elif isinstance(event, AmountMismatchDetected):
                logger.warning(
                    "payment_amount_mismatch",
                    order_id=event.order_id,
                    provider=event.provider,
                    reported=event.reported,
                    expected=event.expected,
                )
                await self._alerts.send_alert(
                    f"Payment amount mismatch for order {event.order_id}",
                    f"{event.provider} reported {event.reported}, the order total is {event.expected}. "
                    "The payment was accepted and flagged for review.",
                    order_id=event.order_id,
                    provider=event.provider,
                )
            elif isinstance(event, CallbackRejected):
                await self._alerts.send_alert(
                    f"Untrusted {event.provider} callback",
                    f"A callback for order {event.order_id or '?'} failed verification: {event.reason}",
                    order_id=event.order_id,
                    provider=event.provider,
                )
