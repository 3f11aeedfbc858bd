import json

import httpx
import pytest

from storefront.checkout.schemas import PaymentGateway
from storefront.core.config import NetsConfig, Settings, StripeConfig
from storefront.core.errors import GatewayRequestError, GatewayUnavailable
from storefront.gateways import build_adapter
from storefront.gateways.base import NormalizedStatus, close_shared_http_client
from storefront.gateways.nets_qr import NetsQrGateway
from storefront.gateways.stripe_checkout import StripeGateway

CTX = {"return_url": "http://api.test/return", "cancel_url": "http://api.test/cancel"}


def paypal_handler(capture_status="COMPLETED", calls=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append((request.method, request.url.path))
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21", "expires_in": 32400})
        if request.url.path == "/v2/checkout/orders":
            body = json.loads(request.content)
            assert body["intent"] == "CAPTURE"
            assert body["purchase_units"][0]["amount"] == {"currency_code": "SGD", "value": "45.00"}
            assert body["application_context"]["return_url"] == CTX["return_url"]
            return httpx.Response(201, json={"id": "5O190127", "links": [
                {"rel": "self", "href": "https://api.paypal.test/v2/checkout/orders/5O190127"},
                {"rel": "approve", "href": "https://www.paypal.test/checkoutnow?token=5O190127"},
            ]})
        if request.url.path == "/v2/checkout/orders/5O190127/capture":
            assert request.headers["Authorization"] == "Bearer A21"
            return httpx.Response(201, json={
                "id": "5O190127", "status": capture_status,
                "purchase_units": [{"payments": {"captures": [{"id": "3C679366", "status": capture_status}]}}],
            })
        return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND", "message": "no route"})
    return handler


def adapter(gateway, settings, pending, handler):
    return build_adapter(gateway, settings, pending, http=httpx.Client(transport=httpx.MockTransport(handler)))


# --- PayPal ---

def test_paypal_initiate_records_pending(settings, pending):
    calls = []
    gw = adapter(PaymentGateway.PAYPAL, settings, pending, paypal_handler(calls=calls))
    result = gw.initiate(4500, "PAYPAL_1_7", CTX)
    assert result.provider_payment_id == "5O190127"
    assert result.redirect_url.endswith("token=5O190127")
    rec = pending.get("5O190127")
    assert rec.status == "PENDING" and rec.gateway == "PAYPAL"
    assert rec.raw_payload == {"order_ref": "PAYPAL_1_7", "amount": "45.00"}
    assert rec.user_id is None


def test_initiate_records_owner_and_amount(settings, pending):
    gw = adapter(PaymentGateway.PAYPAL, settings, pending, paypal_handler())
    gw.initiate(4500, "PAYPAL_1_7", CTX, user_id=7)
    rec = pending.get("5O190127")
    assert (rec.user_id, rec.amount_cents) == (7, 4500)


def test_paypal_token_is_cached(settings, pending):
    calls = []
    gw = adapter(PaymentGateway.PAYPAL, settings, pending, paypal_handler(calls=calls))
    gw.initiate(4500, "r", CTX)
    gw.confirm("5O190127")
    assert calls.count(("POST", "/v1/oauth2/token")) == 1


def test_token_is_shared_across_adapter_instances(settings, pending):
    calls = []
    adapter(PaymentGateway.PAYPAL, settings, pending, paypal_handler(calls=calls)).initiate(4500, "r", CTX)
    adapter(PaymentGateway.PAYPAL, settings, pending, paypal_handler(calls=calls)).confirm("5O190127")
    assert calls.count(("POST", "/v1/oauth2/token")) == 1


def test_adapters_share_one_http_client(settings, pending):
    close_shared_http_client()
    first = build_adapter(PaymentGateway.PAYPAL, settings, pending)
    second = build_adapter(PaymentGateway.NETS_QR, settings, pending)
    assert first.http is second.http

    close_shared_http_client()
    assert first.http.is_closed
    assert build_adapter(PaymentGateway.PAYPAL, settings, pending).http is not first.http
    close_shared_http_client()


@pytest.mark.parametrize("capture_status,expected", [
    ("COMPLETED", NormalizedStatus.SUCCEEDED),
    ("PENDING", NormalizedStatus.FAILED),
    ("DECLINED", NormalizedStatus.FAILED),
])
def test_paypal_capture_normalization(settings, pending, capture_status, expected):
    gw = adapter(PaymentGateway.PAYPAL, settings, pending, paypal_handler(capture_status))
    conf = gw.confirm("5O190127")
    assert conf.status is expected
    assert conf.payment_reference == "3C679366"


def test_paypal_provider_error_is_wrapped(settings, pending):
    def handler(request):
        if request.url.path == "/v1/oauth2/token":
            return httpx.Response(200, json={"access_token": "A21", "expires_in": 300})
        return httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY", "message": "ORDER_NOT_APPROVED"})
    gw = adapter(PaymentGateway.PAYPAL, settings, pending, handler)
    with pytest.raises(GatewayRequestError) as exc:
        gw.confirm("5O190127")
    assert exc.value.code == "UNPROCESSABLE_ENTITY"
    assert exc.value.status_code == 422


def test_network_failure_is_a_gateway_request_error(settings, pending):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)
    gw = adapter(PaymentGateway.PAYPAL, settings, pending, handler)
    with pytest.raises(GatewayRequestError) as exc:
        gw.initiate(100, "r", CTX)
    assert exc.value.code == "network_error"
    assert pending.get("r") is None


def test_unconfigured_gateway_is_unavailable(pending):
    bare = Settings(stripe=StripeConfig(secret_key=""), nets=NetsConfig(api_key="", project_id=""))
    for gateway in (PaymentGateway.STRIPE, PaymentGateway.NETS_QR):
        gw = build_adapter(gateway, bare, pending, http=httpx.Client(transport=httpx.MockTransport(lambda r: None)))
        with pytest.raises(GatewayUnavailable):
            gw.initiate(100, "r", CTX)
        with pytest.raises(GatewayUnavailable):
            gw.confirm("x")


def test_webhook_only_for_push_gateways(settings, pending):
    gw = adapter(PaymentGateway.PAYPAL, settings, pending, paypal_handler())
    with pytest.raises(GatewayRequestError) as exc:
        gw.handle_webhook({})
    assert exc.value.code == "unsupported"


# --- Stripe ---

def test_stripe_session_and_confirmation(settings, pending, stripe_sessions):
    gw = StripeGateway(settings.stripe, pending, "SGD", sessions=stripe_sessions)
    result = gw.initiate(4500, "STRIPE_1_7", CTX)
    params = stripe_sessions.created[0]
    assert params["mode"] == "payment"
    assert params["line_items"][0]["price_data"]["unit_amount"] == 4500
    assert params["line_items"][0]["price_data"]["currency"] == "sgd"
    assert params["success_url"] == "http://api.test/return?session_id={CHECKOUT_SESSION_ID}"
    assert params["metadata"] == {"order_ref": "STRIPE_1_7"}

    assert gw.confirm(result.provider_payment_id).status is NormalizedStatus.FAILED
    stripe_sessions.mark_paid(result.provider_payment_id, "pi_42")
    conf = gw.confirm(result.provider_payment_id)
    assert conf.status is NormalizedStatus.SUCCEEDED
    assert conf.payment_reference == "pi_42"


# --- Airwallex ---

def airwallex_handler(intent_status="SUCCEEDED", logins=None):
    def handler(request):
        if request.url.path == "/api/v1/authentication/login":
            assert request.headers["x-api-key"] == "awx-key"
            assert request.headers["x-client-id"] == "awx-client"
            if logins is not None:
                logins.append(1)
            return httpx.Response(201, json={"token": "awx-token", "expires_at": "2099-01-01T00:00:00+0000"})
        assert request.headers["Authorization"] == "Bearer awx-token"
        if request.url.path == "/api/v1/pa/payment_intents/create":
            body = json.loads(request.content)
            assert body["amount"] == "45.00" and body["currency"] == "SGD"
            assert body["merchant_order_id"] == "AIRWALLEX_1_7"
            return httpx.Response(201, json={"id": "int_abc", "client_secret": "cs_secret"})
        if request.url.path == "/api/v1/pa/payment_intents/int_abc":
            return httpx.Response(200, json={"id": "int_abc", "status": intent_status,
                                             "latest_payment_attempt": {"id": "att_1"}})
        return httpx.Response(404, json={"code": "not_found"})
    return handler


def test_airwallex_embedded_payload(settings, pending):
    gw = adapter(PaymentGateway.AIRWALLEX, settings, pending, airwallex_handler())
    result = gw.initiate(4500, "AIRWALLEX_1_7", CTX)
    assert result.redirect_url is None
    assert result.embedded["intent_id"] == "int_abc"
    assert result.embedded["client_secret"] == "cs_secret"
    assert result.embedded["country_code"] == "SG"
    assert result.session_artifacts == {"client_secret": "cs_secret"}


@pytest.mark.parametrize("status,expected", [
    ("SUCCEEDED", NormalizedStatus.SUCCEEDED),
    ("AUTHORIZED", NormalizedStatus.SUCCEEDED),
    ("REQUIRES_PAYMENT_METHOD", NormalizedStatus.FAILED),
    ("CANCELLED", NormalizedStatus.FAILED),
])
def test_airwallex_normalization(settings, pending, status, expected):
    gw = adapter(PaymentGateway.AIRWALLEX, settings, pending, airwallex_handler(status))
    conf = gw.confirm("int_abc")
    assert conf.status is expected
    assert conf.payment_reference == "att_1"


def test_airwallex_token_cached(settings, pending):
    logins = []
    gw = adapter(PaymentGateway.AIRWALLEX, settings, pending, airwallex_handler(logins=logins))
    gw.initiate(4500, "AIRWALLEX_1_7", CTX)
    gw.confirm("int_abc")
    assert len(logins) == 1


# --- NETS QR ---

def nets_handler(request_data=None, query_data=None, seen=None):
    def handler(request):
        assert request.headers["api-key"] == "nets-key"
        assert request.headers["project-id"] == "nets-project"
        body = json.loads(request.content)
        if seen is not None:
            seen.append(body)
        if request.url.path.endswith("/nets-qr/request"):
            return httpx.Response(200, json={"result": {"data": request_data}})
        if request.url.path.endswith("/nets-qr/query"):
            return httpx.Response(200, json={"result": {"data": query_data or {}}})
        return httpx.Response(404)
    return handler


QR_OK = {"response_code": "00", "txn_status": 1, "qr_code": "iVBORw0KGgo=",
         "txn_retrieval_ref": "NETSQR-1", "network_status": 0}


def test_nets_request_success(settings, pending):
    seen = []
    gw = adapter(PaymentGateway.NETS_QR, settings, pending, nets_handler(QR_OK, seen=seen))
    result = gw.initiate(4500, "NETS_QR_1_7", CTX)
    assert seen[0]["amt_in_dollars"] == "45.00"
    assert seen[0]["notify_mobile"] == 0
    # sandbox host: the sandbox transaction id is used
    assert seen[0]["txn_id"] == settings.nets.sandbox_txn_id
    assert result.provider_payment_id == "NETSQR-1"
    assert result.embedded["qr_image"] == "data:image/png;base64,iVBORw0KGgo="
    assert result.embedded["timer"] == 300
    assert pending.get("NETSQR-1").status == "PENDING"


@pytest.mark.parametrize("data", [
    {"response_code": "09", "txn_status": 1, "qr_code": "x"},
    {"response_code": "00", "txn_status": 2, "qr_code": "x"},
    {"response_code": "00", "txn_status": 1, "qr_code": ""},
    {},
])
def test_nets_request_refused(settings, pending, data):
    gw = adapter(PaymentGateway.NETS_QR, settings, pending, nets_handler(data))
    with pytest.raises(GatewayRequestError):
        gw.initiate(4500, "NETS_QR_1_7", CTX)


def test_nets_txn_id_override(settings, pending):
    seen = []
    settings.nets.txn_id_override = "sandbox_nets|m|fixed"
    gw = adapter(PaymentGateway.NETS_QR, settings, pending, nets_handler(QR_OK, seen=seen))
    gw.initiate(100, "NETS_QR_1_7", CTX)
    assert seen[0]["txn_id"] == "sandbox_nets|m|fixed"


@pytest.mark.parametrize("payload,expected", [
    ({"event": "payment.completed", "paymentId": "P1"}, NormalizedStatus.SUCCEEDED),
    ({"type": "payment.succeeded", "data": {"id": "P1"}}, NormalizedStatus.SUCCEEDED),
    ({"event": "payment.failed", "data": {"txn_retrieval_ref": "P1"}}, NormalizedStatus.FAILED),
    ({"txn_retrieval_ref": "P1", "txn_status": 1}, NormalizedStatus.SUCCEEDED),
    ({"txn_retrieval_ref": "P1", "txn_status": 2}, NormalizedStatus.FAILED),
    ({"paymentId": "P1", "data": {"status": "declined"}}, NormalizedStatus.FAILED),
    ({"paymentId": "P1", "status": "PROCESSING"}, NormalizedStatus.PENDING),
])
def test_nets_webhook_parsing(settings, pending, payload, expected):
    gw = NetsQrGateway(settings.nets, pending, "SGD", http=httpx.Client(transport=httpx.MockTransport(lambda r: None)))
    result = gw.handle_webhook(payload)
    assert result.provider_payment_id == "P1"
    assert result.status is expected
    assert pending.get("P1").status == expected.as_pending_status()


def test_nets_webhook_without_id_records_nothing(settings, pending):
    gw = NetsQrGateway(settings.nets, pending, "SGD", http=httpx.Client(transport=httpx.MockTransport(lambda r: None)))
    result = gw.handle_webhook({"event": "payment.completed"})
    assert result.provider_payment_id is None
    assert result.status is NormalizedStatus.SUCCEEDED


def test_nets_confirm_prefers_stored_terminal_status(settings, pending):
    pending.put("NETS_QR", "NETSQR-1", "COMPLETED", {"event": "payment.completed"})
    # any provider call would fail the test
    gw = adapter(PaymentGateway.NETS_QR, settings, pending, lambda r: (_ for _ in ()).throw(AssertionError("polled")))
    assert gw.confirm("NETSQR-1").status is NormalizedStatus.SUCCEEDED


@pytest.mark.parametrize("query,expected", [
    ({"txn_status": 1}, NormalizedStatus.SUCCEEDED),
    ({"txn_status": 0}, NormalizedStatus.FAILED),
    ({"status": "EXPIRED"}, NormalizedStatus.FAILED),
    ({}, NormalizedStatus.PENDING),
])
def test_nets_confirm_polls_query(settings, pending, query, expected):
    gw = adapter(PaymentGateway.NETS_QR, settings, pending, nets_handler(query_data=query))
    assert gw.confirm("NETSQR-1").status is expected


def test_nets_poll_failure_is_pending(settings, pending):
    gw = adapter(PaymentGateway.NETS_QR, settings, pending, lambda r: httpx.Response(503, text="busy"))
    assert gw.confirm("NETSQR-1").status is NormalizedStatus.PENDING
