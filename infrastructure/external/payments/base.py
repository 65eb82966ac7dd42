"""
Base payment client implementing shared concerns: http, signing, parsing, mapping.

Concrete providers subclass it and implement provider-specific logic. The
client never retries: a timeout becomes ``Failure("timeout")`` and the
caller decides whether to try again.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import unquote_plus

import httpx
from lxml import etree

from core.logging_config import get_logger
from application.dtos.payments import (
    CallbackEvent,
    CallbackRequest,
    OperationResult,
    PaymentForm,
    ReturnUrls,
)
from domain.gateway import (
    AmountUnit,
    CanonicalizationError,
    Environment,
    ProviderProfile,
    canonicalize,
    environment_for,
    sign,
    verify,
)
from domain.payment.entity import OrderPayment, PaymentState
from domain.payment.reconciliation import MonetaryAmount
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentResponseError,
    PaymentSignatureError,
)
from shared.codes.payment_codes import lookup_status


logger = get_logger(__name__)

_XML_PARSER = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)


class BasePaymentClient:
    provider: str = "base"
    profile: ProviderProfile

    def __init__(
        self,
        *,
        timeouts: Optional[dict[str, float]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._timeouts_cfg = timeouts or {"connect": 2.0, "read": 10.0, "write": 10.0, "total": 15.0}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def timeouts(self) -> httpx.Timeout:
        return httpx.Timeout(
            connect=self._timeouts_cfg["connect"],
            read=self._timeouts_cfg["read"],
            write=self._timeouts_cfg["write"],
            timeout=self._timeouts_cfg["total"],
        )

    @asynccontextmanager
    async def client(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeouts, transport=self._transport)
        try:
            yield self._client
        finally:
            # Keep open for reuse; explicit aclose() will close.
            ...

    async def aclose(self) -> None:
        """Close underlying HTTP client if created."""
        if self._client is not None:
            try:
                await self._client.aclose()
            finally:
                self._client = None

    # Provider surface; defaults for gateways without an operation
    async def build_form(self, payment: OrderPayment, urls: ReturnUrls, settings: Any) -> PaymentForm:
        raise NotImplementedError

    async def parse_callback(self, payment: OrderPayment, request: CallbackRequest, settings: Any) -> CallbackEvent:
        raise NotImplementedError

    async def resolve_order_reference(self, request: CallbackRequest, settings: Any) -> Optional[str]:
        return None

    async def get_status(self, payment: OrderPayment, settings: Any) -> OperationResult:
        return OperationResult.not_supported("get_status")

    async def capture_payment(self, payment: OrderPayment, settings: Any) -> OperationResult:
        return OperationResult.not_supported("capture_payment")

    async def refund_payment(self, payment: OrderPayment, settings: Any) -> OperationResult:
        return OperationResult.not_supported("refund_payment")

    async def cancel_payment(self, payment: OrderPayment, settings: Any) -> OperationResult:
        return OperationResult.not_supported("cancel_payment")

    def _require(self, settings: Any, *names: str) -> None:
        missing = [name for name in names if not getattr(settings, name, None)]
        if missing:
            raise PaymentProviderError(
                f"{self.provider} settings incomplete: {', '.join(missing)}",
                provider=self.provider,
                details={"missing": missing},
            )

    def _require_transaction(self, payment: OrderPayment) -> str:
        if not payment.transaction_id:
            raise PaymentProviderError("Order has no gateway transaction id", provider=self.provider)
        return payment.transaction_id

    # Signing helpers
    def _environment(self, settings: Any) -> Environment:
        return environment_for(bool(getattr(settings, "test_mode", True)))

    def _endpoint(self, operation: str, settings: Any, profile: Optional[ProviderProfile] = None) -> str:
        return (profile or self.profile).endpoint(operation, self._environment(settings))

    def _sign(self, fields: dict[str, str], secret: str, profile: Optional[ProviderProfile] = None) -> str:
        p = profile or self.profile
        return sign(canonicalize(fields, p, secret), p, secret)

    def _verify(
        self,
        fields: dict[str, str],
        claimed: Optional[str],
        secret: str,
        profile: Optional[ProviderProfile] = None,
    ) -> bool:
        return verify(fields, claimed, profile or self.profile, secret)

    def _require_signature(
        self,
        fields: dict[str, str],
        claimed: Optional[str],
        secret: str,
        *,
        profile: Optional[ProviderProfile] = None,
        context: str = "callback",
        order_id: Optional[str] = None,
    ) -> None:
        if not secret:
            self._log("gateway_secret_missing", level="warning", context=context, order_id=order_id)
            raise PaymentSignatureError("No shared secret configured", provider=self.provider)
        try:
            valid = self._verify(fields, claimed, secret, profile)
        except CanonicalizationError as exc:
            raise PaymentSignatureError(exc.message, provider=self.provider, details=exc.details) from exc
        if not valid:
            self._log("gateway_signature_invalid", level="warning", context=context, order_id=order_id)
            raise PaymentSignatureError(f"Invalid {context} signature", provider=self.provider)

    # Status mapping
    def _map_status(self, code: str, *, outbound: bool) -> tuple[bool, Optional[PaymentState]]:
        known, state = lookup_status(self.provider, code)
        if not known:
            self._log(
                "gateway_status_unmapped",
                level="warning" if outbound else "info",
                status_code=code,
                outbound=outbound,
            )
            return False, None
        return True, PaymentState(state) if state else None

    def _status_result(self, code: str, transaction_id: Optional[str]) -> OperationResult:
        """Success carrying the mapped state; pending or unknown codes carry none."""
        _, state = self._map_status(code, outbound=True)
        return OperationResult.success(state, transaction_id=transaction_id, status_code=code)

    def _callback_event(
        self,
        payment: OrderPayment,
        status_code: str,
        *,
        reported_amount: Optional[MonetaryAmount] = None,
        transaction_id: Optional[str] = None,
        card_type: Optional[str] = None,
        card_mask: Optional[str] = None,
        fields: Optional[dict[str, str]] = None,
    ) -> CallbackEvent:
        known, state = self._map_status(status_code, outbound=False)
        return CallbackEvent(
            provider=self.provider,
            order_reference=payment.cart_number,
            status_code=status_code,
            target_state=state,
            status_known=known,
            reported_amount=reported_amount,
            transaction_id=transaction_id or None,
            card_type=card_type or None,
            card_mask=card_mask or None,
            fields=fields or {},
        )

    def _amount(self, raw: Optional[str], currency: str, profile: Optional[ProviderProfile] = None) -> MonetaryAmount:
        """Gateway-reported amount converted to major units."""
        p = profile or self.profile
        try:
            if p.amount_unit is AmountUnit.MINOR:
                return MonetaryAmount.from_minor_units(raw, currency, factor=p.minor_unit_factor, scale=p.amount_scale)
            return MonetaryAmount.major(raw, currency, scale=p.amount_scale)
        except ValueError as exc:
            raise PaymentResponseError(str(exc), provider=self.provider, details={"amount": raw}) from exc

    # Outbound guard
    async def _guard(self, operation: str, fn: Callable[[], Awaitable[OperationResult]]) -> OperationResult:
        try:
            return await fn()
        except httpx.TimeoutException:
            self._log("gateway_timeout", level="warning", operation=operation)
            return OperationResult.failure("timeout")
        except httpx.HTTPStatusError as exc:
            self._log("gateway_http_error", level="warning", operation=operation, status=exc.response.status_code)
            return OperationResult.failure(f"http status {exc.response.status_code}")
        except httpx.HTTPError as exc:
            self._log("gateway_transport_error", level="warning", operation=operation, error=str(exc))
            return OperationResult.failure(f"transport error: {type(exc).__name__}")
        except PaymentSignatureError:
            self._log("gateway_response_signature_invalid", level="warning", operation=operation)
            return OperationResult.failure("invalid response signature")
        except PaymentProviderError as exc:
            self._log("gateway_provider_error", level="warning", operation=operation, provider_code=exc.provider_code)
            return OperationResult.failure(exc.message, status_code=exc.provider_code)
        except PaymentResponseError as exc:
            self._log("gateway_response_invalid", level="warning", operation=operation, error=exc.message)
            return OperationResult.failure(exc.message)

    # HTTP helpers
    async def _post_form(self, url: str, data: dict[str, str], **kwargs: Any) -> httpx.Response:
        async with self.client() as c:
            resp = await c.post(url, data=data, **kwargs)
        resp.raise_for_status()
        return resp

    async def _get(self, url: str, params: Optional[dict[str, str]] = None, **kwargs: Any) -> httpx.Response:
        async with self.client() as c:
            resp = await c.get(url, params=params, **kwargs)
        resp.raise_for_status()
        return resp

    async def _post_content(self, url: str, content: bytes, headers: dict[str, str], **kwargs: Any) -> httpx.Response:
        async with self.client() as c:
            resp = await c.post(url, content=content, headers=headers, **kwargs)
        resp.raise_for_status()
        return resp

    # Parsing helpers
    @staticmethod
    def parse_nvp(text: str) -> dict[str, str]:
        """Parse ``KEY=value&KEY2=value2`` responses, URL-decoding the values."""
        parsed: dict[str, str] = {}
        for pair in text.strip().split("&"):
            if not pair:
                continue
            key, _, value = pair.partition("=")
            parsed[unquote_plus(key)] = unquote_plus(value)
        return parsed

    def parse_xml(self, content: bytes) -> etree._Element:
        try:
            return etree.fromstring(content, parser=_XML_PARSER)
        except etree.XMLSyntaxError as exc:
            raise PaymentResponseError("Malformed XML response", provider=self.provider) from exc

    def _log(self, event: str, level: str = "info", **kwargs) -> None:
        getattr(logger, level)(
            event,
            provider=self.provider,
            **kwargs,
        )
