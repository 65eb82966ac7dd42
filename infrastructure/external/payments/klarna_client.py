"""
Klarna Checkout (v2) adapter.

Every request is authenticated with ``Authorization: Klarna <digest>``, the
base64 SHA-256 of the JSON body followed by the shared secret. The checkout
order lives at a Klarna URL stored on the order as ``klarna_location``;
callbacks only tell us to fetch it again.
"""
from __future__ import annotations

import json
from typing import Any, Optional

import httpx

from application.dtos.payments import (
    CallbackEvent,
    CallbackRequest,
    PaymentForm,
    ReturnUrls,
)
from core.settings import KlarnaSettings
from domain.payment.entity import OrderPayment
from domain.payment.reconciliation import format_minor_units
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentResponseError,
    PaymentSignatureError,
)
from infrastructure.external.payments.registry import KLARNA


CONTENT_TYPE = "application/vnd.klarna.checkout.aspi-v2+json"
LOCATION_PROPERTY = "klarna_location"
COMPLETE_STATUS = "checkout_complete"
CREATED_STATUS = "created"

ADDRESS_FIELDS = (
    "given_name",
    "family_name",
    "care_of",
    "street_address",
    "postal_code",
    "city",
    "email",
    "phone",
)


class KlarnaClient(BasePaymentClient):
    provider = "klarna"
    profile = KLARNA

    def _headers(self, body: str, settings: KlarnaSettings) -> dict[str, str]:
        digest = self._sign({"body": body}, settings.shared_secret)
        return {
            "Authorization": f"Klarna {digest}",
            "Content-Type": CONTENT_TYPE,
            "Accept": CONTENT_TYPE,
        }

    async def _fetch(self, location: str, settings: KlarnaSettings) -> dict[str, Any]:
        resp = await self._get(location, headers=self._headers("", settings))
        try:
            return resp.json()
        except ValueError as exc:
            raise PaymentResponseError("Klarna returned invalid JSON", provider=self.provider) from exc

    async def _update(self, location: str, data: dict[str, Any], settings: KlarnaSettings) -> None:
        body = json.dumps(data, separators=(",", ":"))
        await self._post_content(location, body.encode("utf-8"), headers=self._headers(body, settings))

    async def _create(self, data: dict[str, Any], settings: KlarnaSettings) -> str:
        body = json.dumps(data, separators=(",", ":"))
        resp = await self._post_content(
            self._endpoint("orders", settings),
            body.encode("utf-8"),
            headers=self._headers(body, settings),
        )
        location = resp.headers.get("Location")
        if not location:
            raise PaymentResponseError("Klarna did not return an order location", provider=self.provider)
        return location

    def _checkout_data(self, payment: OrderPayment, urls: ReturnUrls, settings: KlarnaSettings) -> dict[str, Any]:
        return {
            "purchase_country": settings.purchase_country,
            "purchase_currency": payment.currency,
            "locale": settings.locale,
            "cart": {
                "items": [
                    {
                        "reference": settings.total_sku,
                        "name": settings.total_name,
                        "quantity": 1,
                        "unit_price": int(format_minor_units(payment.amount)),
                        "tax_rate": 0,
                    }
                ]
            },
            "merchant": {
                "id": settings.merchant_id,
                "terms_uri": settings.terms_uri,
                "checkout_uri": urls.back_url or urls.continue_url,
                "confirmation_uri": urls.continue_url,
                "push_uri": urls.callback_url,
            },
            "merchant_reference": {"orderid1": payment.cart_number},
        }

    async def build_form(self, payment: OrderPayment, urls: ReturnUrls, settings: KlarnaSettings) -> PaymentForm:  # type: ignore[override]
        self._require(settings, "merchant_id", "shared_secret", "terms_uri")
        data = self._checkout_data(payment, urls, settings)
        location: Optional[str] = payment.properties.get(LOCATION_PROPERTY)
        order: Optional[dict[str, Any]] = None
        try:
            if location:
                try:
                    await self._update(location, data, settings)
                    order = await self._fetch(location, settings)
                except httpx.HTTPStatusError:
                    # the checkout session expired; start a new one
                    self._log("klarna_checkout_expired", order_id=payment.order_id)
                    order = None
            if order is None:
                location = await self._create(data, settings)
                order = await self._fetch(location, settings)
        except httpx.HTTPError as exc:
            raise PaymentProviderError(f"Klarna checkout failed: {type(exc).__name__}", provider=self.provider) from exc

        snippet = (order.get("gui") or {}).get("snippet")
        if not snippet:
            raise PaymentResponseError("Klarna order has no GUI snippet", provider=self.provider)
        return PaymentForm(
            provider=self.provider,
            action=settings.payment_form_url or urls.continue_url,
            method="GET",
            snippet=snippet,
            properties={LOCATION_PROPERTY: location or ""},
        )

    async def parse_callback(self, payment: OrderPayment, request: CallbackRequest, settings: KlarnaSettings) -> CallbackEvent:  # type: ignore[override]
        self._require(settings, "shared_secret")
        # only the stored location is trusted; the push URL parameter is ignored
        location = payment.properties.get(LOCATION_PROPERTY)
        if not location:
            raise PaymentResponseError("Order has no Klarna checkout location", provider=self.provider)
        order = await self._fetch(location, settings)

        reference = (order.get("merchant_reference") or {}).get("orderid1")
        if reference != payment.cart_number:
            raise PaymentSignatureError(
                "Klarna order does not belong to this order",
                provider=self.provider,
                details={"reference": reference},
            )

        status = str(order.get("status") or "")
        total = (order.get("cart") or {}).get("total_price_including_tax")
        event = self._callback_event(
            payment,
            status,
            reported_amount=self._amount(str(total), order.get("purchase_currency") or payment.currency)
            if total is not None
            else None,
            transaction_id=str(order.get("id") or "") or None,
            fields=self._customer_fields(order),
        )
        if status == COMPLETE_STATUS:
            await self._acknowledge(payment, location, settings)
        return event

    async def _acknowledge(self, payment: OrderPayment, location: str, settings: KlarnaSettings) -> None:
        try:
            await self._update(location, {"status": CREATED_STATUS}, settings)
        except httpx.HTTPError as exc:
            # Klarna keeps pushing until the order is marked created
            self._log("klarna_acknowledge_failed", level="warning", order_id=payment.order_id, error=type(exc).__name__)

    @staticmethod
    def _customer_fields(order: dict[str, Any]) -> dict[str, str]:
        fields: dict[str, str] = {}
        for section in ("billing_address", "shipping_address"):
            address = order.get(section) or {}
            for name in ADDRESS_FIELDS:
                value = address.get(name)
                if value:
                    fields[f"{section}.{name}"] = str(value)
        return fields
