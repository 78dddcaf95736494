import pytest
import stripe

from backend.config.admin_config import admin_config
from backend.main import app
from backend.orders.dependencies import get_stripe_gateway
from conftest import FakeStripeGateway, url_prefix

CHECKOUT_PATH = f"{url_prefix}/order/checkout"


def _checkout_body(seed, **overrides):
    body = {
        "list_items": [
            {"productId": {"_id": seed["apples"].id, "name": "Apples", "price": 50}, "quantity": 2},
            {"productId": seed["bread"].id, "quantity": 1},
        ],
        "addressId": seed["address"].id,
        "subTotalAmt": 130,
        "totalAmt": 127,
    }
    body.update(overrides)
    return body


@pytest.mark.asyncio
async def test_card_checkout_builds_hosted_session(ac_client, seed, auth_headers):
    gateway = FakeStripeGateway()
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway

    resp = await ac_client.post(CHECKOUT_PATH, json=_checkout_body(seed), headers=auth_headers)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["success"] is True
    assert body["session"]["id"] == "cs_test_123"
    assert body["session"]["url"].startswith("https://checkout.stripe.test/")

    params = gateway.created[0]
    assert [li["price_data"]["unit_amount"] for li in params["line_items"]] == [5000, 2700]
    assert params["customer_email"] == "asha@example.com"
    assert params["metadata"] == {"userId": str(seed["user"].id), "addressId": str(seed["address"].id)}
    assert params["mode"] == "payment"
    assert params["success_url"] == "http://frontend.test/success"
    assert params["cancel_url"] == "http://frontend.test/cancel"


@pytest.mark.asyncio
async def test_card_checkout_requires_items_and_address(ac_client, seed, auth_headers):
    gateway = FakeStripeGateway()
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway

    resp = await ac_client.post(CHECKOUT_PATH, json=_checkout_body(seed, addressId=None), headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["message"] == "Provide list_items and addressId"

    resp = await ac_client.post(CHECKOUT_PATH, json=_checkout_body(seed, list_items=[]), headers=auth_headers)
    assert resp.status_code == 400
    assert gateway.created == []


@pytest.mark.asyncio
async def test_card_checkout_unknown_product_or_address_is_404(ac_client, seed, auth_headers):
    gateway = FakeStripeGateway()
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway

    body = _checkout_body(seed, list_items=[{"productId": 424242, "quantity": 1}])
    resp = await ac_client.post(CHECKOUT_PATH, json=body, headers=auth_headers)
    assert resp.status_code == 404

    resp = await ac_client.post(CHECKOUT_PATH, json=_checkout_body(seed, addressId=seed["other_address"].id),
                                headers=auth_headers)
    assert resp.status_code == 404
    assert gateway.created == []


@pytest.mark.asyncio
async def test_card_checkout_provider_failure_is_500(ac_client, seed, auth_headers):
    gateway = FakeStripeGateway(fail_with=stripe.APIConnectionError("network down"))
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway

    resp = await ac_client.post(CHECKOUT_PATH, json=_checkout_body(seed), headers=auth_headers)
    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "PAYMENT_PROVIDER_ERROR"
    # diagnostics are only exposed in dev
    assert "network down" in body["message"]


@pytest.mark.asyncio
async def test_invalid_list_item_shape_is_400(ac_client, seed, auth_headers):
    app.dependency_overrides[get_stripe_gateway] = lambda: FakeStripeGateway()

    body = _checkout_body(seed, list_items=[{"quantity": 1}])
    resp = await ac_client.post(CHECKOUT_PATH, json=body, headers=auth_headers)
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_REQUEST"


@pytest.mark.asyncio
async def test_card_checkout_to_disabled_address_is_404(ac_client, seed, auth_headers):
    gateway = FakeStripeGateway()
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway

    resp = await ac_client.request("DELETE", f"{url_prefix}/address/disable", json={"_id": seed["address"].id},
                                   headers=auth_headers)
    assert resp.status_code == 200

    resp = await ac_client.post(CHECKOUT_PATH, json=_checkout_body(seed), headers=auth_headers)
    assert resp.status_code == 404
    assert gateway.created == []


@pytest.mark.asyncio
async def test_provider_diagnostics_are_hidden_outside_dev(ac_client, seed, auth_headers, monkeypatch):
    monkeypatch.setattr(admin_config, "ENV", "prod")
    app.dependency_overrides[get_stripe_gateway] = lambda: FakeStripeGateway(
        fail_with=stripe.APIConnectionError("network down"))

    resp = await ac_client.post(CHECKOUT_PATH, json=_checkout_body(seed), headers=auth_headers)
    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "PAYMENT_PROVIDER_ERROR"
    assert "network down" not in body["message"]
