import pytest
from fastapi.testclient import TestClient

from api.dependencies import get_payment_service
from api.routes.payments import _ip_allowed
from application.services.payment_service import PaymentService
from core.settings import BuckarooSettings, gateway_settings
from domain.gateway import canonicalize, sign
from infrastructure.external.payments.buckaroo_client import BuckarooClient
from infrastructure.external.payments.registry import BUCKAROO
from main import app


@pytest.fixture
def client(uow_factory, locks, alerts):
    service = PaymentService(
        gateways={"buckaroo": BuckarooClient()},
        settings_by_provider={"buckaroo": BuckarooSettings(website_key="WK-1", secret_key="s3cret")},
        uow_factory=uow_factory,
        locks=locks,
        alerts=alerts,
    )
    app.dependency_overrides[get_payment_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def _register(client: TestClient):
    return client.post(
        "/api/v1/payments/orders",
        json={"order_id": "ORDER-1", "provider": "buckaroo", "amount": "49.99", "currency": "EUR"},
    )


def test_routes_are_registered():
    paths = {route.path for route in app.routes}
    assert "/api/v1/payments/orders" in paths
    assert "/api/v1/payments/orders/{order_id}/{operation}" in paths
    assert "/api/v1/payments/callbacks/{provider}/{order_id}" in paths
    assert "/api/v1/payments/callbacks/{provider}" in paths


def test_register_and_fetch_order(client):
    resp = _register(client)
    assert resp.status_code == 200
    assert resp.json()["data"]["state"] == "initialized"

    assert _register(client).status_code == 409

    body = client.get("/api/v1/payments/orders/ORDER-1").json()
    assert body["data"]["amount"] == "49.99"

    missing = client.get("/api/v1/payments/orders/ORDER-404")
    assert missing.status_code == 404
    assert missing.json()["error"]["type"] == "OrderPaymentNotFound"


def test_unknown_operation_is_a_validation_error(client):
    _register(client)
    assert client.post("/api/v1/payments/orders/ORDER-1/void").status_code == 422


def test_callback_is_always_acknowledged(client, store):
    _register(client)
    fields = {
        "brq_amount": "49.99",
        "brq_currency": "EUR",
        "brq_invoicenumber": "ORDER-1",
        "brq_statuscode": "190",
        "brq_transactions": "TX-1",
    }
    fields["brq_signature"] = sign(canonicalize(fields, BUCKAROO, "s3cret"), BUCKAROO, "s3cret")

    forged = client.post("/api/v1/payments/callbacks/buckaroo/ORDER-1", data=dict(fields, brq_amount="0.01"))
    assert forged.status_code == 200
    assert forged.json()["data"]["outcome"] == "untrusted"

    ok = client.post("/api/v1/payments/callbacks/buckaroo/ORDER-1", data=fields)
    assert ok.status_code == 200
    assert ok.json()["data"]["outcome"] == "applied"
    assert ok.json()["data"]["state"] == "captured"

    unknown = client.post("/api/v1/payments/callbacks/buckaroo/ORDER-404", data=fields)
    assert unknown.status_code == 200
    assert unknown.json()["data"]["outcome"] == "not_found"


def test_callback_from_outside_allowlist_is_untrusted(client, monkeypatch):
    _register(client)
    monkeypatch.setattr(gateway_settings.webhook, "ip_allowlist", ["192.0.2.0/24"])

    resp = client.post(
        "/api/v1/payments/callbacks/buckaroo/ORDER-1",
        data={"brq_statuscode": "190"},
    )

    assert resp.status_code == 200
    assert resp.json()["data"]["outcome"] == "untrusted"
    assert resp.json()["data"]["reason"] == "ip not allowed"


@pytest.mark.parametrize(
    "ip, allowlist, expected",
    [
        ("10.0.0.5", [], True),
        ("10.0.0.5", ["10.0.0.0/8"], True),
        ("10.0.0.5", ["10.0.0.6"], False),
        ("2001:db8::1", ["2001:db8::/32"], True),
        (None, ["10.0.0.0/8"], False),
        ("testclient", ["10.0.0.0/8"], False),
        ("10.0.0.5", ["not-an-ip", "10.0.0.5"], True),
    ],
)
def test_ip_allowlist(ip, allowlist, expected):
    assert _ip_allowed(ip, allowlist) is expected
