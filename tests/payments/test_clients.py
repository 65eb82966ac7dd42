import hashlib
import json
from urllib.parse import parse_qsl, urlencode

import httpx
import pytest

from application.dtos.payments import CallbackRequest, OperationOutcome, ReturnUrls
from core.settings import (
    BuckarooSettings,
    KlarnaSettings,
    MollieSettings,
    OgoneSettings,
    TwoCheckoutSettings,
    WannafindSettings,
    WorldPaySettings,
)
from domain.gateway import canonicalize, sign, verify
from domain.payment.entity import PaymentState
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payments.buckaroo_client import BuckarooClient
from infrastructure.external.payments.exceptions import PaymentSignatureError
from infrastructure.external.payments.klarna_client import KlarnaClient
from infrastructure.external.payments.mollie_client import MollieClient
from infrastructure.external.payments.ogone_client import OgoneClient
from infrastructure.external.payments.registry import (
    BUCKAROO,
    KLARNA,
    MOLLIE,
    OGONE,
    TWOCHECKOUT,
    WANNAFIND_CALLBACK,
)
from infrastructure.external.payments.twocheckout_client import TwoCheckoutClient
from infrastructure.external.payments.wannafind_client import WannafindClient
from infrastructure.external.payments.worldpay_client import WorldPayClient

from tests.conftest import make_payment


URLS = ReturnUrls(callback_url="https://shop.example/cb", continue_url="https://shop.example/done")


def _form(request: httpx.Request) -> dict[str, str]:
    return dict(parse_qsl(request.content.decode("utf-8"), keep_blank_values=True))


# ----- Ogone -----

OGONE_SETTINGS = OgoneSettings(
    pspid="PSP1",
    sha_in_passphrase="in-pass",
    sha_out_passphrase="out-pass",
    api_user_id="api",
    api_password="api-pw",
)


@pytest.mark.asyncio
async def test_ogone_form_is_signed_in_minor_units():
    form = await OgoneClient().build_form(make_payment(provider="ogone"), URLS, OGONE_SETTINGS)
    assert form.action == "https://secure.ogone.com/ncol/test/orderstandard_utf8.asp"
    assert form.fields["AMOUNT"] == "4999"
    assert "CN" not in form.fields
    assert verify(form.fields, form.fields["SHASIGN"], OGONE, "in-pass")


@pytest.mark.asyncio
async def test_ogone_status_parses_ncresponse():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = _form(request)
        assert verify(body, body["SHASIGN"], OGONE, "in-pass")
        return httpx.Response(200, content=b'<ncresponse orderID="ORDER-1" PAYID="3001" STATUS="9" NCERROR="0"/>')

    client = OgoneClient(transport=httpx.MockTransport(handler))
    result = await client.get_status(make_payment(provider="ogone", transaction_id="3001"), OGONE_SETTINGS)
    await client.aclose()

    assert str(seen[0].url) == "https://secure.ogone.com/ncol/test/querydirect.asp"
    assert _form(seen[0])["PAYID"] == "3001"
    assert result.ok
    assert result.state is PaymentState.CAPTURED
    assert result.status_code == "9"


@pytest.mark.asyncio
async def test_ogone_refund_is_deferred_while_processing():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(200, content=b'<ncresponse PAYID="3001" STATUS="91" NCERROR="0"/>')

    client = OgoneClient(transport=httpx.MockTransport(handler))
    result = await client.refund_payment(make_payment(provider="ogone", transaction_id="3001"), OGONE_SETTINGS)

    assert result.outcome is OperationOutcome.FAILURE
    assert result.status_code == "91"
    assert calls == ["/ncol/test/querydirect.asp"]


@pytest.mark.asyncio
async def test_ogone_callback_verifies_sha_out():
    fields = {
        "orderID": "ORDER-1",
        "currency": "EUR",
        "amount": "49.99",
        "STATUS": "9",
        "PAYID": "3001",
        "BRAND": "VISA",
        "CARDNO": "XXXXXXXXXXXX1111",
    }
    fields["SHASIGN"] = sign(canonicalize(fields, OGONE, "out-pass"), OGONE, "out-pass")
    payment = make_payment(provider="ogone")

    event = await OgoneClient().parse_callback(payment, CallbackRequest(query=fields), OGONE_SETTINGS)
    assert event.target_state is PaymentState.CAPTURED
    assert str(event.reported_amount) == "49.99 EUR"
    assert event.card_mask == "XXXXXXXXXXXX1111"

    fields["amount"] = "1.00"
    with pytest.raises(PaymentSignatureError):
        await OgoneClient().parse_callback(payment, CallbackRequest(query=fields), OGONE_SETTINGS)


@pytest.mark.asyncio
async def test_timeout_becomes_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    client = OgoneClient(transport=httpx.MockTransport(handler))
    result = await client.capture_payment(make_payment(provider="ogone", transaction_id="3001"), OGONE_SETTINGS)
    assert result.outcome is OperationOutcome.FAILURE
    assert result.reason == "timeout"


@pytest.mark.asyncio
async def test_http_error_becomes_failure():
    client = OgoneClient(transport=httpx.MockTransport(lambda request: httpx.Response(503)))
    result = await client.cancel_payment(make_payment(provider="ogone", transaction_id="3001"), OGONE_SETTINGS)
    assert result.reason == "http status 503"


# ----- Buckaroo -----

BUCKAROO_SETTINGS = BuckarooSettings(website_key="WK-1", secret_key="s3cret")


def _nvp(data: dict[str, str], secret: str = "s3cret") -> bytes:
    signed = dict(data)
    signed["BRQ_SIGNATURE"] = sign(canonicalize(data, BUCKAROO, secret), BUCKAROO, secret)
    return urlencode(signed).encode("utf-8")


@pytest.mark.asyncio
async def test_buckaroo_status_reverifies_nvp_answer():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["op"] == "TransactionStatus"
        body = _form(request)
        assert body["brq_transaction"] == "TX-1"
        assert verify(body, body["brq_signature"], BUCKAROO, "s3cret")
        return httpx.Response(
            200,
            content=_nvp({"BRQ_APIRESULT": "Success", "BRQ_STATUSCODE": "190", "BRQ_TRANSACTIONS": "TX-1"}),
        )

    client = BuckarooClient(transport=httpx.MockTransport(handler))
    result = await client.get_status(make_payment(transaction_id="TX-1"), BUCKAROO_SETTINGS)

    assert result.ok
    assert result.state is PaymentState.CAPTURED


@pytest.mark.asyncio
async def test_buckaroo_answer_with_bad_signature_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_nvp({"BRQ_APIRESULT": "Success", "BRQ_STATUSCODE": "190"}, secret="wrong"))

    client = BuckarooClient(transport=httpx.MockTransport(handler))
    result = await client.get_status(make_payment(transaction_id="TX-1"), BUCKAROO_SETTINGS)
    assert result.reason == "invalid response signature"


@pytest.mark.asyncio
async def test_buckaroo_refund_accepts_pending_answer():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["op"] == "TransactionRequest"
        assert _form(request)["brq_amount_credit"] == "49.99"
        return httpx.Response(
            200,
            content=_nvp({"BRQ_APIRESULT": "Pending", "BRQ_STATUSCODE": "791", "BRQ_TRANSACTIONS": "TX-R"}),
        )

    client = BuckarooClient(transport=httpx.MockTransport(handler))
    result = await client.refund_payment(make_payment(transaction_id="TX-1"), BUCKAROO_SETTINGS)
    assert result.state is PaymentState.REFUNDED
    assert result.transaction_id == "TX-R"


# ----- Wannafind -----

WANNAFIND_SETTINGS = WannafindSettings(
    shop_id="SHOP",
    md5_auth_secret="auth",
    md5_callback_secret="cb",
    api_user="api",
    api_password="pw",
)

SOAP_RESPONSE = (
    b'<?xml version="1.0" encoding="UTF-8"?>'
    b'<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/">'
    b'<SOAP-ENV:Body><ns1:checkTransactionResponse xmlns:ns1="urn:pgwapi">'
    b"<return>6</return>"
    b"</ns1:checkTransactionResponse></SOAP-ENV:Body></SOAP-ENV:Envelope>"
)


@pytest.mark.asyncio
async def test_wannafind_form_uses_numeric_currency_and_request_order():
    form = await WannafindClient().build_form(make_payment(provider="wannafind"), URLS, WANNAFIND_SETTINGS)
    assert form.fields["currency"] == "978"
    assert form.fields["amount"] == "4999"
    assert form.fields["checkmd5"] == hashlib.md5(b"978ORDER-14999auth").hexdigest()


@pytest.mark.asyncio
async def test_wannafind_status_over_soap():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.headers["SOAPAction"] == "urn:pgwapi#checkTransaction"
        assert request.headers["Authorization"].startswith("Basic ")
        assert b"<transacknum>12345</transacknum>" in request.content
        return httpx.Response(200, content=SOAP_RESPONSE)

    client = WannafindClient(transport=httpx.MockTransport(handler))
    result = await client.get_status(make_payment(provider="wannafind", transaction_id="12345"), WANNAFIND_SETTINGS)

    assert result.ok
    assert result.state is PaymentState.CAPTURED
    assert result.status_code == "6"


@pytest.mark.asyncio
async def test_wannafind_soap_fault_is_failure():
    fault = (
        b'<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://schemas.xmlsoap.org/soap/envelope/"><SOAP-ENV:Body>'
        b"<SOAP-ENV:Fault><faultcode>SOAP-ENV:Server</faultcode><faultstring>Access denied</faultstring>"
        b"</SOAP-ENV:Fault></SOAP-ENV:Body></SOAP-ENV:Envelope>"
    )
    client = WannafindClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=fault)))
    result = await client.capture_payment(make_payment(provider="wannafind", transaction_id="12345"), WANNAFIND_SETTINGS)
    assert result.outcome is OperationOutcome.FAILURE
    assert result.reason == "Access denied"


@pytest.mark.asyncio
async def test_wannafind_callback_is_authorization_in_minor_units():
    signed = {"orderid": "ORDER-1", "currency": "978", "cardtype": "", "amount": "4999"}
    query = {
        "orderid": "ORDER-1",
        "currency": "978",
        "amount": "4999",
        "transacknum": "777",
        "cardtype": "VISA",
        "cardnomask": "XXXX1111",
        "checkmd5callback": sign(canonicalize(signed, WANNAFIND_CALLBACK, "cb"), WANNAFIND_CALLBACK, "cb"),
    }

    event = await WannafindClient().parse_callback(
        make_payment(provider="wannafind"), CallbackRequest(query=query), WANNAFIND_SETTINGS
    )

    assert event.target_state is PaymentState.AUTHORIZED
    assert str(event.reported_amount) == "49.99 EUR"
    assert event.transaction_id == "777"


# ----- Mollie -----

MOLLIE_SETTINGS = MollieSettings(partner_id="P1", profile_key="PK", secret_key="mkey")

CHECK_RESPONSE = (
    b'<?xml version="1.0"?><response><order>'
    b"<transaction_id>abc</transaction_id><amount>4999</amount><currency>EUR</currency>"
    b"<payed>true</payed><status>Success</status>"
    b"</order></response>"
)


def _mollie_handler(request: httpx.Request) -> httpx.Response:
    assert request.method == "GET"
    assert request.url.params["a"] == "check"
    assert request.url.params["transaction_id"] == "abc"
    return httpx.Response(200, content=CHECK_RESPONSE)


@pytest.mark.asyncio
async def test_mollie_check_maps_success():
    client = MollieClient(transport=httpx.MockTransport(_mollie_handler))
    result = await client.get_status(make_payment(provider="mollie", transaction_id="abc"), MOLLIE_SETTINGS)
    assert result.state is PaymentState.CAPTURED


@pytest.mark.asyncio
async def test_mollie_report_url_hash_ties_callback_to_order():
    digest = sign(
        canonicalize({"partnerid": "P1", "profile_key": "PK", "cartNumber": "ORDER-1"}, MOLLIE, "mkey"),
        MOLLIE,
        "mkey",
    )
    # form decoding turns '+' into a space
    request = CallbackRequest(query={"cartNumber": "ORDER-1", "hash": digest.replace("+", " "), "transaction_id": "abc"})
    client = MollieClient(transport=httpx.MockTransport(_mollie_handler))

    assert await client.resolve_order_reference(request, MOLLIE_SETTINGS) == "ORDER-1"
    event = await client.parse_callback(make_payment(provider="mollie"), request, MOLLIE_SETTINGS)
    assert event.target_state is PaymentState.CAPTURED
    assert str(event.reported_amount) == "49.99 EUR"

    forged = CallbackRequest(query={"cartNumber": "ORDER-1", "hash": "AAAA", "transaction_id": "abc"})
    with pytest.raises(PaymentSignatureError):
        await client.resolve_order_reference(forged, MOLLIE_SETTINGS)
    assert await client.resolve_order_reference(CallbackRequest(), MOLLIE_SETTINGS) is None


@pytest.mark.asyncio
async def test_mollie_error_item_is_failure():
    error = b'<response><item type="error"><errorcode>-3</errorcode><message>Bad partner</message></item></response>'
    client = MollieClient(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=error)))
    result = await client.get_status(make_payment(provider="mollie", transaction_id="abc"), MOLLIE_SETTINGS)
    assert result.reason == "Bad partner"
    assert result.status_code == "-3"


# ----- Klarna -----

KLARNA_SETTINGS = KlarnaSettings(merchant_id="M1", shared_secret="ks", terms_uri="https://shop.example/terms")
KLARNA_LOCATION = "https://checkout.testdrive.klarna.com/checkout/orders/K1"


@pytest.mark.asyncio
async def test_klarna_callback_fetches_stored_location_and_acknowledges():
    posted = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert str(request.url) == KLARNA_LOCATION
        body = request.content.decode("utf-8")
        assert request.headers["Authorization"] == "Klarna " + sign(canonicalize({"body": body}, KLARNA, "ks"), KLARNA, "ks")
        if request.method == "POST":
            posted.append(json.loads(body))
            return httpx.Response(200)
        return httpx.Response(
            200,
            json={
                "id": "K1",
                "status": "checkout_complete",
                "purchase_currency": "EUR",
                "cart": {"total_price_including_tax": 4999},
                "merchant_reference": {"orderid1": "ORDER-1"},
                "billing_address": {"given_name": "Ann", "city": "Utrecht"},
            },
        )

    payment = make_payment(provider="klarna", properties={"klarna_location": KLARNA_LOCATION})
    client = KlarnaClient(transport=httpx.MockTransport(handler))
    # the push URL points elsewhere; only the stored location is fetched
    request = CallbackRequest(query={"klarna_order": "https://evil.example/orders/K1"})

    event = await client.parse_callback(payment, request, KLARNA_SETTINGS)

    assert event.target_state is PaymentState.AUTHORIZED
    assert str(event.reported_amount) == "49.99 EUR"
    assert event.transaction_id == "K1"
    assert event.fields["billing_address.given_name"] == "Ann"
    assert posted == [{"status": "created"}]


# ----- WorldPay -----

WORLDPAY_SETTINGS = WorldPaySettings(inst_id="1", md5_secret="md5", payment_response_password="pw")


@pytest.mark.asyncio
async def test_worldpay_form_signature():
    form = await WorldPayClient().build_form(make_payment(provider="worldpay"), URLS, WORLDPAY_SETTINGS)
    assert form.fields["signatureFields"] == "amount:currency:instId:cartId"
    assert form.fields["signature"] == hashlib.md5(b"md5:49.99:EUR:1:ORDER-1").hexdigest()


@pytest.mark.asyncio
async def test_worldpay_callback_requires_response_password():
    params = {
        "cartId": "ORDER-1",
        "transStatus": "Y",
        "authMode": "A",
        "authAmount": "49.99",
        "authCurrency": "EUR",
        "transId": "W1",
        "callbackPW": "pw",
    }
    client = WorldPayClient()
    payment = make_payment(provider="worldpay")

    assert await client.resolve_order_reference(CallbackRequest(form=params), WORLDPAY_SETTINGS) == "ORDER-1"
    event = await client.parse_callback(payment, CallbackRequest(form=params), WORLDPAY_SETTINGS)
    assert event.target_state is PaymentState.CAPTURED
    assert event.status_code == "Y/A"
    assert "callbackPW" not in event.fields

    wrong = dict(params, callbackPW="guess")
    with pytest.raises(PaymentSignatureError):
        await client.resolve_order_reference(CallbackRequest(form=wrong), WORLDPAY_SETTINGS)
    with pytest.raises(PaymentSignatureError):
        await client.parse_callback(payment, CallbackRequest(form=wrong), WORLDPAY_SETTINGS)


@pytest.mark.asyncio
@pytest.mark.parametrize("auth_mode, expected", [("E", PaymentState.AUTHORIZED), ("A", PaymentState.CAPTURED), ("O", PaymentState.CAPTURED)])
async def test_worldpay_paid_callback_maps_every_auth_mode(auth_mode, expected):
    params = {
        "cartId": "ORDER-1",
        "transStatus": "Y",
        "authMode": auth_mode,
        "authAmount": "49.99",
        "authCurrency": "EUR",
        "callbackPW": "pw",
    }
    event = await WorldPayClient().parse_callback(
        make_payment(provider="worldpay"), CallbackRequest(form=params), WORLDPAY_SETTINGS
    )
    assert event.status_known
    assert event.target_state is expected


# ----- 2Checkout -----

TWOCHECKOUT_SETTINGS = TwoCheckoutSettings(sid="123", secret_word="tango", test_mode=True)


@pytest.mark.asyncio
async def test_twocheckout_demo_notification_signed_with_fixed_order_number():
    key = hashlib.md5(b"tango123149.99").hexdigest().upper()
    assert key == sign(
        canonicalize({"sid": "123", "order_number": "1", "total": "49.99"}, TWOCHECKOUT, "tango"),
        TWOCHECKOUT,
        "tango",
    )
    params = {
        "sid": "123",
        "order_number": "4500",
        "total": "49.99",
        "merchant_order_id": "ORDER-1",
        "credit_card_processed": "Y",
        "key": key,
    }

    event = await TwoCheckoutClient().parse_callback(
        make_payment(provider="twocheckout"), CallbackRequest(query=params), TWOCHECKOUT_SETTINGS
    )

    assert event.target_state is PaymentState.AUTHORIZED
    assert event.transaction_id == "4500"

    with pytest.raises(PaymentSignatureError):
        await TwoCheckoutClient().parse_callback(
            make_payment(provider="twocheckout"),
            CallbackRequest(query=dict(params, total="0.01")),
            TWOCHECKOUT_SETTINGS,
        )


@pytest.mark.asyncio
async def test_operations_without_gateway_support_are_not_supported():
    client = get_payment_gateway("2checkout")
    payment = make_payment(provider="twocheckout", transaction_id="4500")
    for call in (client.get_status, client.capture_payment, client.refund_payment, client.cancel_payment):
        result = await call(payment, TWOCHECKOUT_SETTINGS)
        assert result.outcome is OperationOutcome.NOT_SUPPORTED

    worldpay = get_payment_gateway("worldpay")
    assert (await worldpay.refund_payment(payment, WORLDPAY_SETTINGS)).outcome is OperationOutcome.NOT_SUPPORTED
