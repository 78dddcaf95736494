import hashlib
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Optional, Union

from sqlalchemy import text
from uuid6 import uuid7

from backend.db.utils import dialect_name
from backend.orders.constants import (COD_BATCH_PREFIX, COUNTRY_CODES, FALLBACK_COUNTRY_CODE,
                                      ORDER_ID_PREFIX, logger)

Number = Union[int, Decimal, str]

CENTS = Decimal("0.01")


def effective_price(price: Number, discount: Number) -> Decimal:
    """price - ceil(price * discount / 100); discount is a percentage."""
    price = Decimal(str(price))
    discount = Decimal(str(discount or 0))
    off = (price * discount / Decimal(100)).to_integral_value(rounding=ROUND_CEILING)
    return price - off


def to_minor_units(amount: Number) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def to_settlement(amount: Number, rate: Number) -> Decimal:
    return (Decimal(str(amount)) * Decimal(str(rate))).quantize(CENTS, rounding=ROUND_HALF_UP)


def country_code(country: Optional[str]) -> str:
    key = (country or "").strip().lower()
    code = COUNTRY_CODES.get(key)
    if code is None:
        logger.warning("paypal.country.fallback", extra={"country": country, "fallback": FALLBACK_COUNTRY_CODE})
        return FALLBACK_COUNTRY_CODE
    return code


def generate_order_id() -> str:
    return f"{ORDER_ID_PREFIX}{uuid7().hex}"


def generate_cod_batch_id() -> str:
    return f"{COD_BATCH_PREFIX}{uuid7().hex}"


def checkout_lock_key(user_id: int) -> int:
    h = hashlib.sha256(f"checkout:{user_id}".encode()).digest()[:8]
    val = int.from_bytes(h, "big", signed=False)
    # convert to signed 64-bit
    if val > (1 << 63) - 1:
        val = val - (1 << 64)
    return val


async def acquire_checkout_lock(session, user_id: int) -> bool:
    # blocks until the holder's transaction ends; other dialects rely on the conditional cart delete
    if dialect_name(session) != "postgresql":
        return False
    await session.execute(text("SELECT pg_advisory_xact_lock(:k)"), {"k": checkout_lock_key(user_id)})
    return True
