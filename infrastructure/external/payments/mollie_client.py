"""
Mollie iDEAL (legacy XML API) adapter.

- ``a=fetch`` registers the transaction and returns the bank redirect URL
- the report URL carries ``cartNumber`` and an HMAC-SHA256 ``hash`` so the
  notification can be tied to an order without trusting the caller
- ``a=check`` is the authoritative answer: payed flag, amount and status
"""
from __future__ import annotations

from decimal import Decimal
from typing import Optional
from urllib.parse import urlencode

import httpx
from lxml import etree

from application.dtos.payments import (
    CallbackEvent,
    CallbackRequest,
    OperationResult,
    PaymentForm,
    ReturnUrls,
)
from core.settings import MollieSettings
from domain.payment.entity import OrderPayment
from domain.payment.reconciliation import RoundingMode, format_minor_units
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentResponseError,
    PaymentSignatureError,
)
from infrastructure.external.payments.registry import MOLLIE


PAYED_STATUS = "Success"


def _with_query(url: str, params: dict[str, str]) -> str:
    return f"{url}{'&' if '?' in url else '?'}{urlencode(params)}"


class MollieClient(BasePaymentClient):
    provider = "mollie"
    profile = MOLLIE

    def _reference_fields(self, settings: MollieSettings, cart_number: str) -> dict[str, str]:
        return {
            "partnerid": settings.partner_id or "",
            "profile_key": settings.profile_key,
            "cartNumber": cart_number,
        }

    async def build_form(self, payment: OrderPayment, urls: ReturnUrls, settings: MollieSettings) -> PaymentForm:  # type: ignore[override]
        self._require(settings, "partner_id", "secret_key")
        digest = self._sign(self._reference_fields(settings, payment.cart_number), settings.secret_key)
        params = {
            "a": "fetch",
            "partnerid": settings.partner_id or "",
            "profile_key": settings.profile_key,
            "amount": format_minor_units(self._rounded(payment, settings)),
            "bank_id": str(payment.properties.get("bank_id", "")),
            "description": f"{settings.description_prefix} {payment.cart_number}",
            "reporturl": _with_query(urls.callback_url, {"cartNumber": payment.cart_number, "hash": digest}),
            "returnurl": _with_query(urls.continue_url, {"orderId": payment.order_id}),
            "testmode": "true" if settings.test_mode else "false",
        }
        try:
            root = await self._call(params, settings)
        except httpx.HTTPError as exc:
            raise PaymentProviderError(f"Mollie fetch failed: {type(exc).__name__}", provider=self.provider) from exc
        transaction_id = self._text(root, "transaction_id")
        redirect = self._text(root, "URL")
        if not transaction_id or not redirect:
            raise PaymentResponseError("Mollie fetch response lacks transaction or URL", provider=self.provider)
        return PaymentForm(
            provider=self.provider,
            action=redirect,
            method="GET",
            properties={"mollie_transaction_id": transaction_id},
        )

    async def resolve_order_reference(self, request: CallbackRequest, settings: MollieSettings) -> Optional[str]:  # type: ignore[override]
        cart_number = request.get("cartNumber")
        if not cart_number:
            return None
        if not self._hash_valid(request, settings, cart_number):
            self._log("gateway_signature_invalid", level="warning", context="report_url")
            raise PaymentSignatureError("Invalid report URL hash", provider=self.provider)
        return cart_number

    async def parse_callback(self, payment: OrderPayment, request: CallbackRequest, settings: MollieSettings) -> CallbackEvent:  # type: ignore[override]
        if not self._hash_valid(request, settings, payment.cart_number):
            self._log("gateway_signature_invalid", level="warning", context="callback", order_id=payment.order_id)
            raise PaymentSignatureError("Invalid report URL hash", provider=self.provider)
        transaction_id = request.get("transaction_id")
        if not transaction_id:
            raise PaymentResponseError("Report URL lacks transaction_id", provider=self.provider)
        root = await self._check(transaction_id, settings)
        status = self._check_status(root)
        amount = self._text(root, "amount")
        return self._callback_event(
            payment,
            status,
            reported_amount=self._amount(amount, self._text(root, "currency") or payment.currency) if amount else None,
            transaction_id=transaction_id,
            fields={"payed": self._text(root, "payed") or "", "status": status},
        )

    async def get_status(self, payment: OrderPayment, settings: MollieSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            transaction_id = self._require_transaction(payment)
            root = await self._check(transaction_id, settings)
            return self._status_result(self._check_status(root), transaction_id)

        return await self._guard("get_status", _do)

    @staticmethod
    def _rounded(payment: OrderPayment, settings: MollieSettings) -> Decimal:
        """Order amount rounded to the configured decimals before conversion to cents."""
        quantum = Decimal(1).scaleb(-settings.rounding_decimals)
        return payment.amount.quantize(quantum, rounding=RoundingMode.HALF_AWAY_FROM_ZERO.value)

    def _hash_valid(self, request: CallbackRequest, settings: MollieSettings, cart_number: str) -> bool:
        # '+' in the base64 hash arrives as a space after form decoding
        claimed = request.get("hash").replace(" ", "+")
        if not settings.secret_key:
            return False
        return self._verify(self._reference_fields(settings, cart_number), claimed, settings.secret_key)

    async def _check(self, transaction_id: str, settings: MollieSettings) -> etree._Element:
        self._require(settings, "partner_id")
        return await self._call(
            {
                "a": "check",
                "partnerid": settings.partner_id or "",
                "transaction_id": transaction_id,
                "testmode": "true" if settings.test_mode else "false",
            },
            settings,
        )

    async def _call(self, params: dict[str, str], settings: MollieSettings) -> etree._Element:
        resp = await self._get(self._endpoint("api", settings), params=params)
        root = self.parse_xml(resp.content)
        error = root.xpath("//item[@type='error']")
        if error:
            raise PaymentProviderError(
                error[0].findtext("message") or "Mollie request failed",
                provider=self.provider,
                provider_code=error[0].findtext("errorcode"),
            )
        return root

    def _check_status(self, root: etree._Element) -> str:
        status = self._text(root, "status")
        if status:
            return status
        # older answers only carry the payed flag
        return PAYED_STATUS if (self._text(root, "payed") or "").lower() == "true" else "Open"

    @staticmethod
    def _text(root: etree._Element, tag: str) -> Optional[str]:
        found = root.find(f".//order/{tag}")
        if found is None or found.text is None:
            return None
        return found.text.strip()

