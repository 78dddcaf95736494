import hashlib
import hmac
import json
import os
import tempfile
import time

# settings are read at import time , so the environment has to be in place first
_TEST_DB = os.path.join(tempfile.gettempdir(), f"grocer_test_{os.getpid()}.db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB}"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["JWT_ALGO"] = "HS256"
os.environ["FRONTEND_URL"] = "http://frontend.test"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["PAYPAL_CLIENT_ID"] = "paypal-client"
os.environ["PAYPAL_CLIENT_SECRET"] = "paypal-secret"
os.environ["PAYPAL_WEBHOOK_ID"] = "WH-TEST-1"
os.environ["INR_TO_USD_RATE"] = "0.012"
os.environ["ENV"] = "dev"
os.environ["ENABLE_ADMIN"] = "true"
os.environ["ADMIN_SECRET"] = "test-admin-secret"

import pytest
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlmodel import SQLModel

from backend.db.connection import async_engine, async_session
from backend.orders.gateways import StripeGateway
from backend.main import app
from backend.schema.full_schema import Address, CartItem, Product, Users

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
url_prefix = "/api/v1"


@pytest.fixture
async def db():
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield
    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await async_engine.dispose()


@pytest.fixture
async def db_session(db):
    async with async_session() as session:
        yield session


@pytest.fixture
async def seed(db):
    """One shopper with an address and three products, plus a second shopper."""
    async with async_session() as session:
        user = Users(email="asha@example.com", name="Asha")
        other = Users(email="ravi@example.com", name="Ravi")
        session.add_all([user, other])
        await session.flush()

        address = Address(user_id=user.id, address_line="12 MG Road", city="Pune", state="MH",
                          pincode="411001", country="India", mobile="9999999999")
        other_address = Address(user_id=other.id, address_line="4 Park St", city="Kolkata", state="WB",
                                pincode="700016", country="India", mobile="8888888888")
        apples = Product(name="Apples", image=["https://cdn.test/apples.png"], price=50, discount=0, stock=10)
        bread = Product(name="Bread", image=["https://cdn.test/bread.png"], price=30, discount=10, stock=None)
        milk = Product(name="Milk", image=[], price=99, discount=10, stock=5)
        session.add_all([address, other_address, apples, bread, milk])
        await session.commit()

        return {
            "user": user,
            "other": other,
            "address": address,
            "other_address": other_address,
            "apples": apples,
            "bread": bread,
            "milk": milk,
        }


def make_token(public_id: str) -> str:
    return jwt.encode({"sub": public_id, "iat": int(time.time())}, "test-jwt-secret", algorithm="HS256")


@pytest.fixture
def auth_headers(seed):
    return {"Authorization": f"Bearer {make_token(seed['user'].public_id)}"}


@pytest.fixture
def other_auth_headers(seed):
    return {"Authorization": f"Bearer {make_token(seed['other'].public_id)}"}


@pytest.fixture
async def fill_cart(seed):
    async def _fill(user, items):
        async with async_session() as session:
            for product, qty in items:
                session.add(CartItem(user_id=user.id, product_id=product.id, quantity=qty))
            await session.commit()
    return _fill


@pytest.fixture
async def ac_client(db):
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            yield ac
    app.dependency_overrides.clear()


def stripe_signature(payload: str, secret: str = STRIPE_WEBHOOK_SECRET, timestamp: int = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    signed = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={signed}"


def stripe_event(event_type: str, session_obj: dict, event_id: str = "evt_test_1") -> str:
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": session_obj},
    })


class FakeStripeGateway(StripeGateway):
    """Real payload building and signature checks, canned SDK responses."""

    def __init__(self, line_items=None, fail_with=None):
        super().__init__(secret_key="sk_test_dummy", webhook_secret=STRIPE_WEBHOOK_SECRET,
                         frontend_url="http://frontend.test")
        self.line_items = line_items or []
        self.fail_with = fail_with
        self.created = []
        self.listed = []

    async def _create_checkout_session(self, params):
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append(params)
        return {
            "id": "cs_test_123",
            "url": "https://checkout.stripe.test/cs_test_123",
            "payment_status": "unpaid",
            "amount_total": 12700,
            "currency": "inr",
        }

    async def _list_line_items(self, session_id):
        if self.fail_with is not None:
            raise self.fail_with
        self.listed.append(session_id)
        return self.line_items


def stripe_line(product_ref, name, quantity, subtotal_minor, total_minor):
    metadata = {"productId": str(product_ref)} if product_ref is not None else {}
    return {
        "object": "item",
        "description": name,
        "quantity": quantity,
        "amount_subtotal": subtotal_minor,
        "amount_total": total_minor,
        "price": {"product": {"id": f"prod_{name.lower()}", "name": name, "images": [], "metadata": metadata}},
    }
