"""
Ogone (Ingenico e-Commerce) adapter.

Hosted payment page plus the DirectLink API:
- form and API requests are signed with the SHA-IN passphrase
- callbacks arrive on the query string, signed with the SHA-OUT passphrase
- API answers are ``<ncresponse .../>`` documents whose data sits in attributes
"""
from __future__ import annotations

from typing import Optional

from application.dtos.payments import (
    CallbackEvent,
    CallbackRequest,
    OperationResult,
    PaymentForm,
    ReturnUrls,
    fields_to_str,
)
from core.settings import OgoneSettings
from domain.payment.entity import OrderPayment, PaymentState
from domain.payment.reconciliation import format_minor_units
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentResponseError,
    PaymentSignatureError,
)
from infrastructure.external.payments.registry import OGONE


CAPTURED_CODES = {"9", "91"}
REFUNDED_CODES = {"7", "71", "8", "81"}
CANCELLED_CODES = {"6", "61"}
# refunds are refused by Ogone while the capture is still being processed
PROCESSING_CODE = "91"


class OgoneClient(BasePaymentClient):
    provider = "ogone"
    profile = OGONE

    async def build_form(self, payment: OrderPayment, urls: ReturnUrls, settings: OgoneSettings) -> PaymentForm:  # type: ignore[override]
        self._require(settings, "pspid", "sha_in_passphrase")
        cancel_url = urls.cancel_url or urls.continue_url
        fields = fields_to_str(
            {
                "PSPID": settings.pspid,
                "LANGUAGE": settings.language,
                "PMLIST": settings.payment_methods,
                "TP": settings.template_url,
                "ORDERID": payment.cart_number,
                "AMOUNT": format_minor_units(payment.amount),
                "CURRENCY": payment.currency,
                "CN": payment.properties.get("customer_name"),
                "EMAIL": payment.properties.get("email"),
                "ACCEPTURL": urls.continue_url,
                "DECLINEURL": cancel_url,
                "EXCEPTIONURL": cancel_url,
                "CANCELURL": cancel_url,
            }
        )
        # Ogone ignores empty parameters, both in the form and in the digest
        fields = {k: v for k, v in fields.items() if v}
        fields["SHASIGN"] = self._sign(fields, settings.sha_in_passphrase)
        return PaymentForm(provider=self.provider, action=self._endpoint("form", settings), fields=fields)

    async def parse_callback(self, payment: OrderPayment, request: CallbackRequest, settings: OgoneSettings) -> CallbackEvent:  # type: ignore[override]
        fields = request.params
        self._require_signature(
            fields,
            request.get("SHASIGN"),
            settings.sha_out_passphrase,
            order_id=payment.order_id,
        )
        if request.get("ORDERID") != payment.cart_number:
            raise PaymentSignatureError(
                "ORDERID does not belong to this order",
                provider=self.provider,
                details={"orderid": request.get("ORDERID")},
            )
        amount = request.get("AMOUNT")
        return self._callback_event(
            payment,
            request.get("STATUS"),
            reported_amount=self._amount(amount, request.get("CURRENCY") or payment.currency) if amount else None,
            transaction_id=request.get("PAYID"),
            card_type=request.get("BRAND"),
            card_mask=request.get("CARDNO"),
            fields=fields,
        )

    async def get_status(self, payment: OrderPayment, settings: OgoneSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            attrs = await self._api_request(payment, settings, "status")
            return self._status_result(attrs["STATUS"], attrs.get("PAYID") or payment.transaction_id)

        return await self._guard("get_status", _do)

    async def capture_payment(self, payment: OrderPayment, settings: OgoneSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            attrs = await self._api_request(payment, settings, "maintenance", operation="SAS")
            return self._expect(attrs, CAPTURED_CODES, PaymentState.CAPTURED)

        return await self._guard("capture_payment", _do)

    async def refund_payment(self, payment: OrderPayment, settings: OgoneSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            current = await self._api_request(payment, settings, "status")
            if current["STATUS"] == PROCESSING_CODE:
                self._log("gateway_refund_deferred", level="warning", order_id=payment.order_id)
                return OperationResult.failure(
                    "payment is still being processed (status 91); retry the refund later",
                    status_code=PROCESSING_CODE,
                )
            attrs = await self._api_request(payment, settings, "maintenance", operation="RFS")
            return self._expect(attrs, REFUNDED_CODES, PaymentState.REFUNDED)

        return await self._guard("refund_payment", _do)

    async def cancel_payment(self, payment: OrderPayment, settings: OgoneSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            attrs = await self._api_request(payment, settings, "maintenance", operation="DES")
            return self._expect(attrs, CANCELLED_CODES, PaymentState.CANCELLED)

        return await self._guard("cancel_payment", _do)

    async def _api_request(
        self,
        payment: OrderPayment,
        settings: OgoneSettings,
        endpoint: str,
        *,
        operation: Optional[str] = None,
    ) -> dict[str, str]:
        self._require(settings, "pspid", "api_user_id", "api_password", "sha_in_passphrase")
        fields = {
            "PSPID": settings.pspid or "",
            "USERID": settings.api_user_id or "",
            "PSWD": settings.api_password or "",
            "PAYID": self._require_transaction(payment),
        }
        if operation:
            fields["AMOUNT"] = format_minor_units(payment.amount_authorized or payment.amount)
            fields["OPERATION"] = operation
        fields["SHASIGN"] = self._sign(fields, settings.sha_in_passphrase)

        resp = await self._post_form(self._endpoint(endpoint, settings), fields)
        root = self.parse_xml(resp.content)
        if root.tag.lower() != "ncresponse" or "STATUS" not in root.attrib:
            raise PaymentResponseError("Unexpected Ogone response", provider=self.provider, details={"tag": root.tag})
        attrs = {str(k): str(v) for k, v in root.attrib.items()}
        error = attrs.get("NCERROR", "0")
        if error not in ("", "0") and not attrs["STATUS"]:
            raise PaymentProviderError(
                attrs.get("NCERRORPLUS") or "Ogone request failed",
                provider=self.provider,
                provider_code=error,
            )
        return attrs

    def _expect(self, attrs: dict[str, str], codes: set[str], state: PaymentState) -> OperationResult:
        status = attrs["STATUS"]
        if status not in codes:
            raise PaymentProviderError(
                attrs.get("NCERRORPLUS") or f"unexpected status {status}",
                provider=self.provider,
                provider_code=attrs.get("NCERROR") or status,
            )
        return OperationResult.success(state, transaction_id=attrs.get("PAYID"), status_code=status)
