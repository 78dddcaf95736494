import json

import httpx
import pytest
from sqlmodel import select

from backend.db.connection import async_session
from backend.main import app
from backend.orders.dependencies import gateway_for, get_paypal_gateway
from backend.orders.gateways import PayPalGateway
from backend.schema.full_schema import CartItem, Orders, PaymentProvider, PaymentTransaction
from conftest import url_prefix

CHECKOUT_PATH = f"{url_prefix}/order/paypal-checkout"
WEBHOOK_PATH = f"{url_prefix}/order/paypal-webhook"
ORDER_ID = "PAYPAL-ORDER-1"

TRANSMISSION_HEADERS = {
    "PAYPAL-TRANSMISSION-ID": "tx-1",
    "PAYPAL-TRANSMISSION-TIME": "2026-10-19T10:00:00Z",
    "PAYPAL-CERT-URL": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-1",
    "PAYPAL-AUTH-ALGO": "SHA256withRSA",
    "PAYPAL-TRANSMISSION-SIG": "c2lnbmF0dXJl",
}


class PayPalSandbox:
    """Just enough of the PayPal REST API for checkout and webhook reconciliation."""

    def __init__(self, seed, verification="SUCCESS", token_status=200, already_captured=False):
        self.seed = seed
        self.verification = verification
        self.token_status = token_status
        self.captured = already_captured
        self.calls = []
        self.created = []
        self.verify_requests = []
        self.capture_request_ids = []

    def order(self):
        seed = self.seed
        unit = {
            "reference_id": str(seed["address"].id),
            "custom_id": str(seed["user"].id),
            "amount": {"currency_code": "USD", "value": "1.52"},
            "items": [
                {"name": "Apples", "sku": str(seed["apples"].id), "quantity": "2",
                 "unit_amount": {"currency_code": "USD", "value": "0.60"}},
                {"name": "Bread", "sku": str(seed["bread"].id), "quantity": "1",
                 "unit_amount": {"currency_code": "USD", "value": "0.32"}},
            ],
        }
        if self.captured:
            unit["payments"] = {"captures": [{"id": "CAPTURE-1", "status": "COMPLETED"}]}
        return {"id": ORDER_ID, "status": "COMPLETED" if self.captured else "APPROVED", "purchase_units": [unit]}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((request.method, path))

        if path == "/v1/oauth2/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_client"})
            return httpx.Response(200, json={"access_token": "A21-test-token", "token_type": "Bearer"})

        if path == "/v1/notifications/verify-webhook-signature":
            self.verify_requests.append(json.loads(request.content))
            return httpx.Response(200, json={"verification_status": self.verification})

        if path == "/v2/checkout/orders" and request.method == "POST":
            self.created.append(json.loads(request.content))
            return httpx.Response(201, json={
                "id": ORDER_ID,
                "status": "CREATED",
                "links": [{"href": f"https://www.sandbox.paypal.com/checkoutnow?token={ORDER_ID}",
                           "rel": "approve", "method": "GET"}],
            })

        if path == f"/v2/checkout/orders/{ORDER_ID}/capture":
            self.capture_request_ids.append(request.headers.get("PayPal-Request-Id"))
            if self.captured:
                return httpx.Response(422, json={"name": "UNPROCESSABLE_ENTITY",
                                                 "details": [{"issue": "ORDER_ALREADY_CAPTURED"}]})
            self.captured = True
            return httpx.Response(201, json={"id": ORDER_ID, "status": "COMPLETED"})

        if path == f"/v2/checkout/orders/{ORDER_ID}" and request.method == "GET":
            return httpx.Response(200, json=self.order())

        return httpx.Response(404, json={"name": "RESOURCE_NOT_FOUND"})


def _gateway(sandbox):
    return PayPalGateway(
        client_id="paypal-client",
        client_secret="paypal-secret",
        webhook_id="WH-TEST-1",
        api_base="https://api-m.sandbox.paypal.test",
        rate="0.012",
        currency="USD",
        frontend_url="http://frontend.test",
        transport=httpx.MockTransport(sandbox),
    )


def _use(sandbox):
    app.dependency_overrides[get_paypal_gateway] = lambda: _gateway(sandbox)


def _approved_event():
    return json.dumps({"id": "WH-EVT-1", "event_type": "CHECKOUT.ORDER.APPROVED",
                       "resource": {"id": ORDER_ID, "status": "APPROVED"}})


def _capture_completed_event():
    return json.dumps({"id": "WH-EVT-2", "event_type": "PAYMENT.CAPTURE.COMPLETED",
                       "resource": {"id": "CAPTURE-1", "status": "COMPLETED",
                                    "supplementary_data": {"related_ids": {"order_id": ORDER_ID}}}})


async def _deliver(ac_client, payload, headers=TRANSMISSION_HEADERS):
    return await ac_client.post(WEBHOOK_PATH, content=payload,
                                headers={**headers, "Content-Type": "application/json"})


async def _all(model):
    async with async_session() as session:
        res = await session.execute(select(model))
        return res.scalars().all()


@pytest.mark.asyncio
async def test_paypal_checkout_creates_order_with_correlation(ac_client, seed, auth_headers):
    sandbox = PayPalSandbox(seed)
    _use(sandbox)

    body = {"list_items": [{"productId": seed["apples"].id, "quantity": 2},
                           {"productId": {"_id": seed["bread"].id}, "quantity": 1}],
            "addressId": seed["address"].id}
    resp = await ac_client.post(CHECKOUT_PATH, json=body, headers=auth_headers)
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["orderID"] == ORDER_ID
    assert data["links"][0]["rel"] == "approve"

    unit = sandbox.created[0]["purchase_units"][0]
    assert unit["custom_id"] == str(seed["user"].id)
    assert unit["reference_id"] == str(seed["address"].id)
    assert unit["amount"]["value"] == "1.52"
    assert unit["shipping"]["address"]["country_code"] == "IN"
    assert [i["sku"] for i in unit["items"]] == [str(seed["apples"].id), str(seed["bread"].id)]


@pytest.mark.asyncio
async def test_paypal_checkout_requires_items_and_address(ac_client, seed, auth_headers):
    sandbox = PayPalSandbox(seed)
    _use(sandbox)

    resp = await ac_client.post(CHECKOUT_PATH, json={"list_items": [{"productId": seed["apples"].id}]},
                                headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Provide list_items and addressId"
    assert sandbox.calls == []


@pytest.mark.asyncio
async def test_paypal_token_failure_is_provider_error(ac_client, seed, auth_headers):
    _use(PayPalSandbox(seed, token_status=401))

    body = {"list_items": [{"productId": seed["apples"].id, "quantity": 1}], "addressId": seed["address"].id}
    resp = await ac_client.post(CHECKOUT_PATH, json=body, headers=auth_headers)
    assert resp.status_code == 500
    assert resp.json()["code"] == "PAYMENT_PROVIDER_ERROR"


@pytest.mark.asyncio
async def test_approved_event_captures_and_materializes(ac_client, seed, fill_cart):
    await fill_cart(seed["user"], [(seed["apples"], 2), (seed["bread"], 1)])
    sandbox = PayPalSandbox(seed)
    _use(sandbox)

    resp = await _deliver(ac_client, _approved_event())
    assert resp.status_code == 200, resp.text
    assert resp.json() == {"received": True}

    assert sandbox.capture_request_ids == [f"capture-{ORDER_ID}"]
    assert sandbox.verify_requests[0]["webhook_id"] == "WH-TEST-1"
    assert sandbox.verify_requests[0]["transmission_id"] == "tx-1"

    orders = await _all(Orders)
    assert len(orders) == 2
    assert {o.payment_id for o in orders} == {"CAPTURE-1"}
    assert {o.payment_status for o in orders} == {"COMPLETED"}
    assert {o.currency for o in orders} == {"USD"}
    assert {o.provider_txn_id for o in orders} == {ORDER_ID}
    apples = next(o for o in orders if o.product_id == seed["apples"].id)
    assert float(apples.total_amt) == 1.2
    assert apples.quantity == 2
    assert await _all(CartItem) == []


@pytest.mark.asyncio
async def test_capture_completed_after_approved_is_a_duplicate(ac_client, seed, fill_cart):
    await fill_cart(seed["user"], [(seed["apples"], 2), (seed["bread"], 1)])
    sandbox = PayPalSandbox(seed)
    _use(sandbox)

    await _deliver(ac_client, _approved_event())
    resp = await _deliver(ac_client, _capture_completed_event())
    assert resp.status_code == 200

    assert len(await _all(Orders)) == 2
    assert len(await _all(PaymentTransaction)) == 1
    assert len(sandbox.capture_request_ids) == 1


@pytest.mark.asyncio
async def test_capture_completed_alone_materializes_without_capturing(ac_client, seed, fill_cart):
    await fill_cart(seed["user"], [(seed["apples"], 2)])
    sandbox = PayPalSandbox(seed, already_captured=True)
    _use(sandbox)

    resp = await _deliver(ac_client, _capture_completed_event())
    assert resp.status_code == 200

    assert sandbox.capture_request_ids == []
    assert len(await _all(Orders)) == 2
    [txn] = await _all(PaymentTransaction)
    assert txn.event_type == "PAYMENT.CAPTURE.COMPLETED"
    assert txn.status == "CART_CLEARED"


@pytest.mark.asyncio
async def test_already_captured_order_still_materializes(ac_client, seed):
    sandbox = PayPalSandbox(seed, already_captured=True)
    _use(sandbox)

    resp = await _deliver(ac_client, _approved_event())
    assert resp.status_code == 200
    assert len(sandbox.capture_request_ids) == 1
    assert len(await _all(Orders)) == 2


@pytest.mark.asyncio
async def test_failed_verification_writes_nothing(ac_client, seed, fill_cart):
    await fill_cart(seed["user"], [(seed["apples"], 2)])
    sandbox = PayPalSandbox(seed, verification="FAILURE")
    _use(sandbox)

    resp = await _deliver(ac_client, _approved_event())
    assert resp.status_code == 400
    assert resp.json()["code"] == "VERIFICATION_FAILED"
    assert sandbox.capture_request_ids == []
    assert await _all(Orders) == []
    assert len(await _all(CartItem)) == 1


@pytest.mark.asyncio
async def test_missing_transmission_headers_are_rejected_locally(ac_client, seed):
    sandbox = PayPalSandbox(seed)
    _use(sandbox)

    headers = {k: v for k, v in TRANSMISSION_HEADERS.items() if k != "PAYPAL-TRANSMISSION-SIG"}
    resp = await _deliver(ac_client, _approved_event(), headers=headers)
    assert resp.status_code == 400
    assert sandbox.calls == []


@pytest.mark.asyncio
async def test_other_paypal_events_are_acknowledged(ac_client, seed):
    sandbox = PayPalSandbox(seed)
    _use(sandbox)

    payload = json.dumps({"id": "WH-EVT-3", "event_type": "PAYMENT.CAPTURE.DENIED",
                          "resource": {"id": "CAPTURE-9"}})
    resp = await _deliver(ac_client, payload)
    assert resp.status_code == 200
    assert resp.json() == {"received": True}
    assert sandbox.capture_request_ids == []
    assert await _all(Orders) == []


def test_gateway_selection_by_provider_tag():
    assert isinstance(gateway_for(PaymentProvider.PAYPAL), PayPalGateway)
    assert gateway_for("stripe").name == "stripe"
    with pytest.raises(ValueError):
        gateway_for(PaymentProvider.COD)
