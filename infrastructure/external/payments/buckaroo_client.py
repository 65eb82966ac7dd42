"""
Buckaroo Payment Engine adapter.

The hosted checkout (``/html/``) receives a signed form and notifies us with
a signed push. Status and refund use the NVP gateway (``/nvp/?op=...``); its
answers are signed the same way and are re-verified before use.
"""
from __future__ import annotations

from application.dtos.payments import (
    CallbackEvent,
    CallbackRequest,
    OperationResult,
    PaymentForm,
    ReturnUrls,
    fields_to_str,
)
from core.settings import BuckarooSettings
from domain.payment.entity import OrderPayment, PaymentState
from domain.payment.reconciliation import format_major_units
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentResponseError,
    PaymentSignatureError,
)
from infrastructure.external.payments.registry import BUCKAROO


SUCCESS_CODE = "190"
# accepted refund answers: completed or queued by Buckaroo
REFUND_ACCEPTED_CODES = {"190", "790", "791", "792", "793"}


class BuckarooClient(BasePaymentClient):
    provider = "buckaroo"
    profile = BUCKAROO

    async def build_form(self, payment: OrderPayment, urls: ReturnUrls, settings: BuckarooSettings) -> PaymentForm:  # type: ignore[override]
        self._require(settings, "website_key", "secret_key")
        cancel_url = urls.cancel_url or urls.continue_url
        fields = fields_to_str(
            {
                "brq_websitekey": settings.website_key,
                "brq_requestedservices": settings.requested_services,
                "brq_excludedservices": settings.excluded_services,
                "brq_payment_method": settings.payment_method,
                "brq_culture": settings.culture,
                "brq_currency": payment.currency,
                "brq_amount": format_major_units(payment.amount),
                "brq_invoicenumber": payment.cart_number,
                "add_cartnumber": payment.cart_number,
                "brq_description": payment.properties.get("description"),
                "brq_return": urls.continue_url,
                "brq_returncancel": cancel_url,
                "brq_returnerror": cancel_url,
                "brq_returnreject": cancel_url,
                "brq_push": urls.callback_url,
                "brq_pushfailure": urls.callback_url,
            }
        )
        fields = {k: v for k, v in fields.items() if v}
        fields["brq_signature"] = self._sign(fields, settings.secret_key)
        return PaymentForm(provider=self.provider, action=self._endpoint("form", settings), fields=fields)

    async def parse_callback(self, payment: OrderPayment, request: CallbackRequest, settings: BuckarooSettings) -> CallbackEvent:  # type: ignore[override]
        fields = request.params
        self._require_signature(
            fields,
            request.get("brq_signature"),
            settings.secret_key,
            order_id=payment.order_id,
        )
        invoice = request.get("brq_invoicenumber")
        if invoice and invoice != payment.cart_number:
            raise PaymentSignatureError(
                "brq_invoicenumber does not belong to this order",
                provider=self.provider,
                details={"invoice": invoice},
            )
        status_code = request.get("brq_statuscode")
        if status_code != SUCCESS_CODE:
            self._log(
                "gateway_callback_status",
                order_id=payment.order_id,
                status_code=status_code,
                message=request.get("brq_statusmessage"),
            )
        amount = request.get("brq_amount")
        return self._callback_event(
            payment,
            status_code,
            reported_amount=self._amount(amount, request.get("brq_currency") or payment.currency) if amount else None,
            transaction_id=request.get("brq_transactions"),
            card_type=request.get("brq_transaction_method"),
            card_mask=request.get("brq_payment"),
            fields=fields,
        )

    async def get_status(self, payment: OrderPayment, settings: BuckarooSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            transaction_id = self._require_transaction(payment)
            data = await self._nvp_request(
                "TransactionStatus",
                {"brq_websitekey": settings.website_key or "", "brq_transaction": transaction_id},
                settings,
            )
            code = self._field(data, "BRQ_STATUSCODE")
            if code == SUCCESS_CODE and "BRQ_RELATEDTRANSACTION_REFUND" in data:
                return OperationResult.success(PaymentState.REFUNDED, transaction_id=transaction_id, status_code=code)
            return self._status_result(code, transaction_id)

        return await self._guard("get_status", _do)

    async def refund_payment(self, payment: OrderPayment, settings: BuckarooSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            data = await self._nvp_request(
                "TransactionRequest",
                {
                    "brq_websitekey": settings.website_key or "",
                    "brq_invoicenumber": payment.cart_number,
                    "brq_currency": payment.currency,
                    "brq_culture": settings.culture,
                    "brq_amount_credit": format_major_units(payment.amount_authorized or payment.amount),
                    "brq_originaltransaction": self._require_transaction(payment),
                },
                settings,
            )
            code = self._field(data, "BRQ_STATUSCODE")
            if code not in REFUND_ACCEPTED_CODES:
                raise PaymentProviderError(
                    data.get("BRQ_STATUSMESSAGE") or "refund refused",
                    provider=self.provider,
                    provider_code=code,
                )
            # the refund is a transaction of its own
            return OperationResult.success(
                PaymentState.REFUNDED,
                transaction_id=self._field(data, "BRQ_TRANSACTIONS"),
                status_code=code,
            )

        return await self._guard("refund_payment", _do)

    async def _nvp_request(self, operation: str, fields: dict[str, str], settings: BuckarooSettings) -> dict[str, str]:
        self._require(settings, "website_key", "secret_key")
        fields = dict(fields)
        fields["brq_signature"] = self._sign(fields, settings.secret_key)
        resp = await self._post_form(self._endpoint("api", settings), fields, params={"op": operation})
        data = self.parse_nvp(resp.text)
        if data.get("BRQ_APIRESULT", "").lower() == "fail":
            raise PaymentProviderError(
                data.get("BRQ_APIERRORMESSAGE") or f"{operation} failed",
                provider=self.provider,
                provider_code=data.get("BRQ_APIERRORCODE"),
            )
        self._require_signature(data, data.get("BRQ_SIGNATURE"), settings.secret_key, context="response")
        return data

    def _field(self, data: dict[str, str], key: str) -> str:
        value = data.get(key)
        if not value:
            raise PaymentResponseError(f"Buckaroo response lacks {key}", provider=self.provider)
        return value
