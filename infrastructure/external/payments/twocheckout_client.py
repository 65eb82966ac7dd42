"""
2Checkout (legacy spurchase) adapter.

Only the hosted form and the return notification exist; merchant
operations are not offered and fall back to ``NotSupported``.
"""
from __future__ import annotations

from application.dtos.payments import (
    CallbackEvent,
    CallbackRequest,
    PaymentForm,
    ReturnUrls,
    fields_to_str,
)
from core.settings import TwoCheckoutSettings
from domain.payment.entity import OrderPayment
from domain.payment.reconciliation import format_major_units
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentSignatureError
from infrastructure.external.payments.registry import TWOCHECKOUT


# demo-mode notifications are signed with a fixed order number
DEMO_ORDER_NUMBER = "1"


class TwoCheckoutClient(BasePaymentClient):
    provider = "twocheckout"
    profile = TWOCHECKOUT

    async def build_form(self, payment: OrderPayment, urls: ReturnUrls, settings: TwoCheckoutSettings) -> PaymentForm:  # type: ignore[override]
        self._require(settings, "sid")
        fields = fields_to_str(
            {
                "sid": settings.sid,
                "lang": settings.language,
                "cart_order_id": payment.cart_number,
                "merchant_order_id": payment.cart_number,
                "total": format_major_units(payment.amount),
                "x_receipt_link_url": urls.continue_url,
                "card_holder_name": payment.properties.get("customer_name"),
                "email": payment.properties.get("email"),
                "fixed": "Y",
                "skip_landing": "1",
                "id_type": "1",
                "demo": "Y" if settings.test_mode else None,
            }
        )
        return PaymentForm(provider=self.provider, action=self._endpoint("form", settings), fields=fields)

    async def parse_callback(self, payment: OrderPayment, request: CallbackRequest, settings: TwoCheckoutSettings) -> CallbackEvent:  # type: ignore[override]
        order_number = request.get("order_number")
        signed = {
            "sid": request.get("sid"),
            "order_number": DEMO_ORDER_NUMBER if settings.test_mode else order_number,
            "total": request.get("total"),
        }
        self._require_signature(signed, request.get("key"), settings.secret_word, order_id=payment.order_id)
        if signed["sid"] != settings.sid:
            raise PaymentSignatureError("sid does not match the configured account", provider=self.provider)
        reference = request.get("merchant_order_id") or request.get("cart_order_id")
        if reference and reference != payment.cart_number:
            raise PaymentSignatureError(
                "cart reference does not belong to this order",
                provider=self.provider,
                details={"reference": reference},
            )
        return self._callback_event(
            payment,
            request.get("credit_card_processed", "Y"),
            reported_amount=self._amount(signed["total"], request.get("currency_code") or payment.currency),
            transaction_id=order_number,
            card_type=request.get("pay_method"),
            fields=request.params,
        )
