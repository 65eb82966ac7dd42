"""
WorldPay (Business Gateway) adapter.

The purchase form is MD5-signed over ``signatureFields``. Payment responses
are not signed; they carry the configured payment response password in
``callbackPW``, compared in constant time.
"""
from __future__ import annotations

from typing import Optional

from application.dtos.payments import (
    CallbackEvent,
    CallbackRequest,
    PaymentForm,
    ReturnUrls,
    fields_to_str,
)
from core.settings import WorldPaySettings
from domain.gateway import secrets_match
from domain.payment.entity import OrderPayment
from domain.payment.reconciliation import format_major_units
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import PaymentSignatureError
from infrastructure.external.payments.registry import WORLDPAY


TEST_MODE_ON = "100"
TEST_MODE_OFF = "0"


class WorldPayClient(BasePaymentClient):
    provider = "worldpay"
    profile = WORLDPAY

    async def build_form(self, payment: OrderPayment, urls: ReturnUrls, settings: WorldPaySettings) -> PaymentForm:  # type: ignore[override]
        self._require(settings, "inst_id", "md5_secret")
        fields = fields_to_str(
            {
                "instId": settings.inst_id,
                "cartId": payment.cart_number,
                "currency": payment.currency,
                "amount": format_major_units(payment.amount),
                "testMode": TEST_MODE_ON if settings.test_mode else TEST_MODE_OFF,
                "authMode": settings.auth_mode,
                "lang": settings.language,
                "successURL": urls.continue_url,
                "cancelURL": urls.cancel_url or urls.continue_url,
                "name": payment.properties.get("customer_name"),
                "email": payment.properties.get("email"),
                "signatureFields": ":".join(WORLDPAY.signed_fields or ()),
            }
        )
        fields["signature"] = self._sign(fields, settings.md5_secret)
        return PaymentForm(provider=self.provider, action=self._endpoint("form", settings), fields=fields)

    async def resolve_order_reference(self, request: CallbackRequest, settings: WorldPaySettings) -> Optional[str]:  # type: ignore[override]
        if not self._authenticated(request, settings):
            raise PaymentSignatureError("Payment response password mismatch", provider=self.provider)
        return request.get("cartId") or None

    async def parse_callback(self, payment: OrderPayment, request: CallbackRequest, settings: WorldPaySettings) -> CallbackEvent:  # type: ignore[override]
        if not self._authenticated(request, settings, order_id=payment.order_id):
            raise PaymentSignatureError("Payment response password mismatch", provider=self.provider)
        if request.get("cartId") != payment.cart_number:
            raise PaymentSignatureError(
                "cartId does not belong to this order",
                provider=self.provider,
                details={"cartId": request.get("cartId")},
            )
        trans_status = request.get("transStatus")
        if trans_status == "Y":
            # only pre-auth (E) stays authorized, every other authMode is a sale
            auth_mode = request.get("authMode") or settings.auth_mode
            status_code = "Y/E" if auth_mode == "E" else "Y/A"
        else:
            status_code = trans_status
        amount = request.get("authAmount") or request.get("amount")
        currency = request.get("authCurrency") or request.get("currency") or payment.currency
        return self._callback_event(
            payment,
            status_code,
            reported_amount=self._amount(amount, currency) if amount else None,
            transaction_id=request.get("transId"),
            card_type=request.get("cardType"),
            fields={k: v for k, v in request.params.items() if k != "callbackPW"},
        )

    def _authenticated(self, request: CallbackRequest, settings: WorldPaySettings, order_id: Optional[str] = None) -> bool:
        if secrets_match(request.get("callbackPW"), settings.payment_response_password):
            return True
        self._log("gateway_signature_invalid", level="warning", context="callback", order_id=order_id)
        return False
