import asyncio
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Protocol

import httpx
import stripe

from backend.common.custom_exceptions import PaymentProviderError, VerificationFailure
from backend.orders.constants import (DEFAULT_STOCK_CEILING, PAYPAL_CAPTURE_COMPLETED,
                                      PAYPAL_COMPLETION_EVENTS, PAYPAL_ORDER_APPROVED,
                                      PAYPAL_TRANSMISSION_HEADERS, STRIPE_COMPLETION_EVENTS, logger)
from backend.orders.models import ResolvedLine
from backend.orders.utils import country_code, effective_price, to_minor_units, to_settlement
from backend.schema.full_schema import Address, PaymentProvider, Users


@dataclass
class ProviderNotice:
    provider: str
    event_type: str
    txn_id: Optional[str]
    is_completion: bool
    raw: Dict[str, Any] = field(default_factory=dict)
    event_id: Optional[str] = None


@dataclass
class ProviderLineItem:
    product_ref: Optional[str]
    name: Optional[str]
    images: List[str]
    quantity: int
    sub_total: Decimal
    total: Decimal
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Settlement:
    user_ref: Optional[str]
    address_ref: Optional[str]
    payment_id: str
    payment_status: str
    currency: str
    line_items: List[ProviderLineItem] = field(default_factory=list)


class PaymentGateway(Protocol):
    name: str

    async def create_session(self, user: Users, address: Address, lines: List[ResolvedLine]) -> Dict[str, Any]: ...

    async def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> None: ...

    def parse_event(self, body: bytes) -> ProviderNotice: ...

    async def fetch_settlement(self, notice: ProviderNotice) -> Settlement: ...


def _load_event(body: bytes) -> Dict[str, Any]:
    try:
        event = json.loads(body)
    except ValueError:
        raise VerificationFailure("Malformed webhook payload")
    if not isinstance(event, dict):
        raise VerificationFailure("Malformed webhook payload")
    return event


def _ref(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


# ---------------------------------------------------------------- stripe


def build_stripe_line_items(lines: List[ResolvedLine]) -> List[Dict[str, Any]]:
    items = []
    for line in lines:
        product = line.product
        unit = effective_price(product.price, product.discount)
        items.append({
            "price_data": {
                "currency": "inr",
                "product_data": {
                    "name": product.name,
                    "images": list(product.image or []),
                    "metadata": {"productId": str(product.id)},
                },
                "unit_amount": to_minor_units(unit),
            },
            "adjustable_quantity": {
                "enabled": True,
                "minimum": 1,
                "maximum": product.stock if product.stock else DEFAULT_STOCK_CEILING,
            },
            "quantity": line.quantity,
        })
    return items


class StripeGateway:
    """Hosted card checkout. SDK calls are blocking so they run in a worker thread."""

    name = PaymentProvider.STRIPE.value

    def __init__(self, secret_key: str, webhook_secret: str, frontend_url: str, tolerance: int = 300):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.frontend_url = frontend_url.rstrip("/")
        self.tolerance = tolerance

    def session_params(self, user: Users, address: Address, lines: List[ResolvedLine]) -> Dict[str, Any]:
        return {
            "submit_type": "pay",
            "mode": "payment",
            "payment_method_types": ["card"],
            "customer_email": user.email,
            "metadata": {"userId": str(user.id), "addressId": str(address.id)},
            "line_items": build_stripe_line_items(lines),
            "success_url": f"{self.frontend_url}/success",
            "cancel_url": f"{self.frontend_url}/cancel",
        }

    async def _create_checkout_session(self, params: Dict[str, Any]):
        return await asyncio.to_thread(stripe.checkout.Session.create, api_key=self.secret_key, **params)

    async def _list_line_items(self, session_id: str) -> List[Any]:
        res = await asyncio.to_thread(
            stripe.checkout.Session.list_line_items,
            session_id,
            limit=100,
            expand=["data.price.product"],
            api_key=self.secret_key,
        )
        return list(res.get("data") or [])

    async def create_session(self, user: Users, address: Address, lines: List[ResolvedLine]) -> Dict[str, Any]:
        params = self.session_params(user, address, lines)
        try:
            session = await self._create_checkout_session(params)
        except stripe.StripeError as e:
            raise PaymentProviderError("stripe", str(e)) from e

        logger.info("checkout.session.created", extra={"provider": self.name, "session_id": session.get("id")})
        return {
            "id": session.get("id"),
            "url": session.get("url"),
            "payment_status": session.get("payment_status"),
            "amount_total": session.get("amount_total"),
            "currency": session.get("currency"),
        }

    async def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> None:
        sig_header = headers.get("stripe-signature")
        if not sig_header or not self.webhook_secret:
            raise VerificationFailure("Missing Stripe signature")
        try:
            stripe.WebhookSignature.verify_header(
                body.decode("utf-8"), sig_header, self.webhook_secret, self.tolerance
            )
        except (stripe.SignatureVerificationError, ValueError, UnicodeDecodeError) as e:
            raise VerificationFailure("Invalid Stripe signature") from e

    def parse_event(self, body: bytes) -> ProviderNotice:
        event = _load_event(body)
        event_type = event.get("type") or ""
        session = (event.get("data") or {}).get("object") or {}
        return ProviderNotice(
            provider=self.name,
            event_type=event_type,
            txn_id=_ref(session.get("id")),
            is_completion=event_type in STRIPE_COMPLETION_EVENTS,
            raw=event,
            event_id=_ref(event.get("id")),
        )

    async def fetch_settlement(self, notice: ProviderNotice) -> Settlement:
        session = (notice.raw.get("data") or {}).get("object") or {}
        metadata = session.get("metadata") or {}
        try:
            raw_items = await self._list_line_items(notice.txn_id)
        except stripe.StripeError as e:
            raise PaymentProviderError("stripe", str(e)) from e

        line_items = []
        for item in raw_items:
            product = (item.get("price") or {}).get("product") or {}
            if not isinstance(product, Mapping):
                product = {}
            line_items.append(ProviderLineItem(
                product_ref=_ref((product.get("metadata") or {}).get("productId")),
                name=product.get("name") or item.get("description"),
                images=list(product.get("images") or []),
                quantity=int(item.get("quantity") or 1),
                sub_total=Decimal(item.get("amount_subtotal") or 0) / 100,
                total=Decimal(item.get("amount_total") or 0) / 100,
                raw=dict(item),
            ))

        return Settlement(
            user_ref=_ref(metadata.get("userId")),
            address_ref=_ref(metadata.get("addressId")),
            payment_id=_ref(session.get("payment_intent")) or notice.txn_id,
            payment_status=session.get("payment_status") or "",
            currency=(session.get("currency") or "inr").upper(),
            line_items=line_items,
        )


# ---------------------------------------------------------------- paypal


def build_paypal_order(user: Users, address: Address, lines: List[ResolvedLine], *, rate,
                       currency: str, frontend_url: str) -> Dict[str, Any]:
    items = []
    item_total = Decimal("0")
    for line in lines:
        product = line.product
        unit = to_settlement(effective_price(product.price, product.discount), rate)
        item_total += unit * line.quantity
        items.append({
            "name": product.name[:127],
            "sku": str(product.id),
            "quantity": str(line.quantity),
            "unit_amount": {"currency_code": currency, "value": f"{unit:.2f}"},
        })

    frontend_url = frontend_url.rstrip("/")
    return {
        "intent": "CAPTURE",
        "purchase_units": [{
            "reference_id": str(address.id),
            "custom_id": str(user.id),
            "amount": {
                "currency_code": currency,
                "value": f"{item_total:.2f}",
                "breakdown": {"item_total": {"currency_code": currency, "value": f"{item_total:.2f}"}},
            },
            "items": items,
            "shipping": {
                "name": {"full_name": user.name or user.email},
                "address": {
                    "address_line_1": address.address_line,
                    "admin_area_2": address.city,
                    "admin_area_1": address.state,
                    "postal_code": address.pincode,
                    "country_code": country_code(address.country),
                },
            },
        }],
        "application_context": {
            "shipping_preference": "SET_PROVIDED_ADDRESS",
            "return_url": f"{frontend_url}/success",
            "cancel_url": f"{frontend_url}/cancel",
        },
    }


class PayPalGateway:
    """Orders v2 over REST; every call fetches a client-credentials token first."""

    name = PaymentProvider.PAYPAL.value

    def __init__(self, client_id: str, client_secret: str, webhook_id: str, api_base: str, *,
                 rate, currency: str = "USD", frontend_url: str = "", timeout: float = 15.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_id = webhook_id
        self.api_base = api_base.rstrip("/")
        self.rate = rate
        self.currency = currency
        self.frontend_url = frontend_url
        self.timeout = timeout
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.api_base, timeout=self.timeout, transport=self.transport)

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        if not self.client_id or not self.client_secret:
            raise PaymentProviderError("paypal", "client credentials not configured")
        r = await client.post(
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if r.status_code >= 400:
            raise PaymentProviderError("paypal", f"token request returned {r.status_code}")
        token = r.json().get("access_token")
        if not token:
            raise PaymentProviderError("paypal", "token response without access_token")
        return token

    async def _call(self, method: str, path: str, *, json_body=None, headers=None,
                    allow_status=()) -> httpx.Response:
        try:
            async with self._client() as client:
                token = await self._access_token(client)
                req_headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
                req_headers.update(headers or {})
                r = await client.request(method, path, json=json_body, headers=req_headers)
        except httpx.HTTPError as e:
            raise PaymentProviderError("paypal", f"{method} {path}: {e}") from e

        if r.status_code >= 400 and r.status_code not in allow_status:
            raise PaymentProviderError("paypal", f"{method} {path} returned {r.status_code}: {r.text[:200]}")
        return r

    async def create_session(self, user: Users, address: Address, lines: List[ResolvedLine]) -> Dict[str, Any]:
        body = build_paypal_order(user, address, lines, rate=self.rate, currency=self.currency,
                                  frontend_url=self.frontend_url)
        r = await self._call("POST", "/v2/checkout/orders", json_body=body)
        data = r.json()
        logger.info("checkout.session.created", extra={"provider": self.name, "session_id": data.get("id")})
        return {"orderID": data.get("id"), "links": data.get("links", [])}

    async def verify_webhook(self, body: bytes, headers: Mapping[str, str]) -> None:
        transmission = {h: headers.get(h) for h in PAYPAL_TRANSMISSION_HEADERS}
        if not all(transmission.values()) or not self.webhook_id:
            raise VerificationFailure("Missing PayPal transmission headers")
        event = _load_event(body)

        payload = {
            "transmission_id": transmission["paypal-transmission-id"],
            "transmission_time": transmission["paypal-transmission-time"],
            "cert_url": transmission["paypal-cert-url"],
            "auth_algo": transmission["paypal-auth-algo"],
            "transmission_sig": transmission["paypal-transmission-sig"],
            "webhook_id": self.webhook_id,
            "webhook_event": event,
        }
        r = await self._call("POST", "/v1/notifications/verify-webhook-signature", json_body=payload)
        if r.json().get("verification_status") != "SUCCESS":
            raise VerificationFailure("Invalid PayPal signature")

    def parse_event(self, body: bytes) -> ProviderNotice:
        event = _load_event(body)
        event_type = event.get("event_type") or ""
        resource = event.get("resource") or {}
        if event_type == PAYPAL_CAPTURE_COMPLETED:
            related = (resource.get("supplementary_data") or {}).get("related_ids") or {}
            txn_id = _ref(related.get("order_id"))
        else:
            txn_id = _ref(resource.get("id"))
        return ProviderNotice(
            provider=self.name,
            event_type=event_type,
            txn_id=txn_id,
            is_completion=event_type in PAYPAL_COMPLETION_EVENTS,
            raw=event,
            event_id=_ref(event.get("id")),
        )

    async def capture_order(self, order_id: str) -> None:
        r = await self._call(
            "POST", f"/v2/checkout/orders/{order_id}/capture",
            headers={"PayPal-Request-Id": f"capture-{order_id}"},
            allow_status=(422,),
        )
        if r.status_code == 422:
            issues = [d.get("issue") for d in (r.json().get("details") or [])]
            if "ORDER_ALREADY_CAPTURED" not in issues:
                raise PaymentProviderError("paypal", f"capture rejected: {issues}")
            logger.info("paypal.capture.already_captured", extra={"order_id": order_id})

    async def get_order(self, order_id: str) -> Dict[str, Any]:
        r = await self._call("GET", f"/v2/checkout/orders/{order_id}")
        return r.json()

    async def fetch_settlement(self, notice: ProviderNotice) -> Settlement:
        if notice.event_type == PAYPAL_ORDER_APPROVED:
            await self.capture_order(notice.txn_id)
        order = await self.get_order(notice.txn_id)

        units = order.get("purchase_units") or [{}]
        unit = units[0]
        captures = (unit.get("payments") or {}).get("captures") or []
        capture = captures[0] if captures else {}
        currency = (unit.get("amount") or {}).get("currency_code") or self.currency

        line_items = []
        for item in unit.get("items") or []:
            qty = int(item.get("quantity") or 1)
            amount = Decimal(str((item.get("unit_amount") or {}).get("value") or "0")) * qty
            line_items.append(ProviderLineItem(
                product_ref=_ref(item.get("sku")),
                name=item.get("name"),
                images=[],
                quantity=qty,
                sub_total=amount,
                total=amount,
                raw=item,
            ))

        return Settlement(
            user_ref=_ref(unit.get("custom_id")),
            address_ref=_ref(unit.get("reference_id")),
            payment_id=_ref(capture.get("id")) or notice.txn_id,
            payment_status=capture.get("status") or order.get("status") or "",
            currency=currency,
            line_items=line_items,
        )
