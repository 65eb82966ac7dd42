"""
Wannafind payment window adapter.

Form and callback are MD5-signed over a fixed value sequence. Amounts are
integers in minor units and the currency is the numeric ISO-4217 code.
Merchant operations go through the ``pgwapi`` SOAP service with HTTP basic
auth; a ``returncode`` of 0 means success.
"""
from __future__ import annotations

import httpx
from lxml import etree

from application.dtos.payments import (
    CallbackEvent,
    CallbackRequest,
    OperationResult,
    PaymentForm,
    ReturnUrls,
    fields_to_str,
)
from core.settings import WannafindSettings
from domain.payment.entity import OrderPayment, PaymentState
from domain.payment.reconciliation import format_minor_units
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentResponseError,
    PaymentSignatureError,
)
from infrastructure.external.payments.registry import WANNAFIND_CALLBACK, WANNAFIND_REQUEST
from shared.codes.currency_codes import alpha_code, numeric_code


SOAP_ENV = "http://schemas.xmlsoap.org/soap/envelope/"
PGWAPI_NS = "urn:pgwapi"
AUTH_STATUS = "auth"

# 3-D Secure callbacks report the card brand; the signature uses its numeric id
CARD_TYPE_IDS = {
    "DK": "1",
    "V-DK": "2",
    "VISA(DK)": "3",
    "MC(DK)": "4",
    "N/A": "5",
    "EDK": "6",
    "MC": "7",
    "MSC(DK)": "8",
    "MSC": "9",
    "DINERS(DA)": "10",
    "DINERS": "11",
    "AMEX(DA)": "12",
    "AMEX": "13",
    "JCB": "16",
    "VISA": "17",
    "FBF": "18",
}


class WannafindClient(BasePaymentClient):
    provider = "wannafind"
    profile = WANNAFIND_CALLBACK

    async def build_form(self, payment: OrderPayment, urls: ReturnUrls, settings: WannafindSettings) -> PaymentForm:  # type: ignore[override]
        self._require(settings, "shop_id", "md5_auth_secret")
        cancel_url = urls.cancel_url or urls.continue_url
        fields = fields_to_str(
            {
                "shopid": settings.shop_id,
                "lang": settings.language,
                "orderid": payment.cart_number,
                "currency": numeric_code(payment.currency),
                "amount": format_minor_units(payment.amount),
                "accepturl": urls.continue_url,
                "declineurl": cancel_url,
                "callbackurl": urls.callback_url,
                "authtype": "auth",
                "paytype": settings.pay_type,
                "cardtype": settings.card_type or None,
                "uniqueorderid": "true",
                "cardnomask": "true",
            }
        )
        fields["checkmd5"] = self._sign(fields, settings.md5_auth_secret, WANNAFIND_REQUEST)
        return PaymentForm(
            provider=self.provider,
            action=self._endpoint("form", settings, WANNAFIND_REQUEST),
            fields=fields,
        )

    async def parse_callback(self, payment: OrderPayment, request: CallbackRequest, settings: WannafindSettings) -> CallbackEvent:  # type: ignore[override]
        if settings.pay_type == "3dsecure":
            card_type_for_signature = CARD_TYPE_IDS.get(request.get("cardtype"), "")
        else:
            card_type_for_signature = settings.card_type
        signed = {
            "orderid": request.get("orderid"),
            "currency": request.get("currency"),
            "cardtype": card_type_for_signature,
            "amount": request.get("amount"),
        }
        self._require_signature(
            signed,
            request.get("checkmd5callback"),
            settings.md5_callback_secret,
            order_id=payment.order_id,
        )
        if signed["orderid"] != payment.cart_number:
            raise PaymentSignatureError(
                "orderid does not belong to this order",
                provider=self.provider,
                details={"orderid": signed["orderid"]},
            )
        currency = alpha_code(signed["currency"]) if signed["currency"] else payment.currency
        if currency is None:
            raise PaymentResponseError(
                "Unknown numeric currency", provider=self.provider, details={"currency": signed["currency"]}
            )
        # the payment window only calls back after an authorisation
        return self._callback_event(
            payment,
            AUTH_STATUS,
            reported_amount=self._amount(signed["amount"], currency),
            transaction_id=request.get("transacknum"),
            card_type=request.get("cardtype"),
            card_mask=request.get("cardnomask"),
            fields=request.params,
        )

    async def get_status(self, payment: OrderPayment, settings: WannafindSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            transaction_id = self._transacknum(payment)
            root = await self._soap_call(
                "checkTransaction",
                settings,
                transacknum=transaction_id,
                api="",
                orderid=payment.cart_number,
                checksum="",
                authsource="",
            )
            return self._status_result(self._return_code(root), transaction_id)

        return await self._guard("get_status", _do)

    async def capture_payment(self, payment: OrderPayment, settings: WannafindSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            transaction_id = self._transacknum(payment)
            # amount 0 captures the full authorised amount
            root = await self._soap_call("captureTransaction", settings, transacknum=transaction_id, amount="0")
            return self._expect_zero(root, transaction_id, PaymentState.CAPTURED)

        return await self._guard("capture_payment", _do)

    async def refund_payment(self, payment: OrderPayment, settings: WannafindSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            transaction_id = self._transacknum(payment)
            root = await self._soap_call(
                "creditTransaction",
                settings,
                transacknum=transaction_id,
                amount=format_minor_units(payment.amount_authorized or payment.amount),
            )
            return self._expect_zero(root, transaction_id, PaymentState.REFUNDED)

        return await self._guard("refund_payment", _do)

    async def cancel_payment(self, payment: OrderPayment, settings: WannafindSettings) -> OperationResult:  # type: ignore[override]
        async def _do() -> OperationResult:
            transaction_id = self._transacknum(payment)
            root = await self._soap_call("cancelTransaction", settings, transacknum=transaction_id)
            return self._expect_zero(root, transaction_id, PaymentState.CANCELLED)

        return await self._guard("cancel_payment", _do)

    def _transacknum(self, payment: OrderPayment) -> str:
        transaction_id = self._require_transaction(payment)
        if not transaction_id.isdigit():
            raise PaymentProviderError(
                "Wannafind transaction ids are numeric",
                provider=self.provider,
                details={"transaction_id": transaction_id},
            )
        return transaction_id

    def _envelope(self, method: str, params: dict[str, str]) -> bytes:
        envelope = etree.Element(etree.QName(SOAP_ENV, "Envelope"), nsmap={"soap": SOAP_ENV, "pg": PGWAPI_NS})
        body = etree.SubElement(envelope, etree.QName(SOAP_ENV, "Body"))
        call = etree.SubElement(body, etree.QName(PGWAPI_NS, method))
        for name, value in params.items():
            etree.SubElement(call, name).text = value
        return etree.tostring(envelope, xml_declaration=True, encoding="utf-8")

    async def _soap_call(self, method: str, settings: WannafindSettings, **params: str) -> etree._Element:
        self._require(settings, "api_user", "api_password")
        resp = await self._post_content(
            settings.api_url,
            self._envelope(method, params),
            headers={"Content-Type": "text/xml; charset=utf-8", "SOAPAction": f"{PGWAPI_NS}#{method}"},
            auth=httpx.BasicAuth(settings.api_user or "", settings.api_password or ""),
        )
        root = self.parse_xml(resp.content)
        fault = root.xpath("//*[local-name()='Fault']/*[local-name()='faultstring']")
        if fault:
            raise PaymentProviderError(fault[0].text or "SOAP fault", provider=self.provider)
        return root

    def _return_code(self, root: etree._Element) -> str:
        for path in ("//*[local-name()='returncode']", "//*[local-name()='return']"):
            found = root.xpath(path)
            if found and (found[0].text or "").strip():
                return found[0].text.strip()
        raise PaymentResponseError("Wannafind response lacks a return code", provider=self.provider)

    def _expect_zero(self, root: etree._Element, transaction_id: str, state: PaymentState) -> OperationResult:
        code = self._return_code(root)
        if code != "0":
            raise PaymentProviderError("Wannafind rejected the request", provider=self.provider, provider_code=code)
        return OperationResult.success(state, transaction_id=transaction_id, status_code=code)
