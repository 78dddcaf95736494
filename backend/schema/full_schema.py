import enum
from decimal import Decimal
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, Text, UniqueConstraint, true
from uuid6 import uuid7
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlmodel import Column, SQLModel, Field, String
from backend.common.utils import now


def new_public_id() -> str:
    return str(uuid7())


class Users(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: str = Field(default_factory=new_public_id,
        sa_column=Column(String(36), unique=True, index=True, nullable=False))
    email: str = Field(sa_column=Column(String(320), nullable=False, unique=True))
    name: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))


class Address(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"),
            index=True,
            nullable=False))
    address_line: str = Field(sa_column=Column(String(512), nullable=False))
    city: str = Field(sa_column=Column(String(128), nullable=False))
    state: str = Field(sa_column=Column(String(128), nullable=False))
    pincode: str = Field(sa_column=Column(String(16), nullable=False))
    country: str = Field(sa_column=Column(String(128), nullable=False))
    mobile: str = Field(sa_column=Column(String(20), nullable=False))
    status: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True, server_default=true()))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(sa_column=Column(String(255), nullable=False))
    image: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    price: int = Field(default=0, sa_column=Column(Integer, nullable=False), description="Price in rupees")
    discount: int = Field(default=0, sa_column=Column(Integer, nullable=False), description="Discount percent 0-100")
    stock: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    created_at: datetime = Field(default_factory=now,
        sa_column=Column(DateTime(timezone=True), nullable=False,default=now))

#-----------------------------------------------------------------------------------------------------------

# one line per (user, product) , duplicates are rejected not merged
class CartItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(sa_column=Column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True))
    product_id: int = Field(sa_column=Column(ForeignKey("product.id", ondelete="CASCADE"), nullable=False))
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),
    )

# --------------------------------------------------------------------------------------------

class PaymentProvider(str, enum.Enum):
    COD = "cod"
    STRIPE = "stripe"
    PAYPAL = "paypal"


CASH_ON_DELIVERY = "CASH_ON_DELIVERY"
PAYMENT_PENDING = "PENDING"


# One row per purchased line, rows of one purchase share provider_txn_id.
# Rows are never updated after insert.
class Orders(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: str = Field(sa_column=Column(String(64), unique=True, index=True, nullable=False))
    user_id: int = Field(sa_column=Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), index=True, nullable=True))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="RESTRICT"), nullable=False))
    product_details: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    payment_id: str = Field(default="", sa_column=Column(String(255), nullable=False, default=""))
    payment_status: str = Field(default=PAYMENT_PENDING, sa_column=Column(String(64), nullable=False))
    provider: str = Field(sa_column=Column(String(32), nullable=False))
    provider_txn_id: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    delivery_address_id: Optional[int] = Field(default=None,
        sa_column=Column(Integer, ForeignKey("address.id", ondelete="SET NULL"), nullable=True))
    sub_total_amt: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    total_amt: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    currency: str = Field(default="INR", sa_column=Column(String(8), nullable=False))
    quantity: int = Field(default=1, sa_column=Column(Integer, nullable=False))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

# --------------------------------------------------------------------------------------------------------------------------------

class TxnStatus(str, enum.Enum):
    NOTIFIED = "NOTIFIED"
    VERIFIED = "VERIFIED"
    MATERIALIZED = "MATERIALIZED"
    CART_CLEARED = "CART_CLEARED"
    REJECTED = "REJECTED"


# Reconciliation state per provider transaction; the unique key is the replay guard.
class PaymentTransaction(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(sa_column=Column(String(32), nullable=False))
    provider_txn_id: str = Field(sa_column=Column(String(255), nullable=False))
    user_id: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True, index=True))
    status: str = Field(default=TxnStatus.NOTIFIED.value, sa_column=Column(String(32), nullable=False, index=True))
    event_type: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True))
    orders_written: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    last_error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    __table_args__ = (
        UniqueConstraint("provider", "provider_txn_id", name="uq_paymenttxn_provider_txn"),
    )


class FailureReason(str, enum.Enum):
    PARTIAL_MATERIALIZATION = "PARTIAL_MATERIALIZATION"
    MISSING_CORRELATION_ID = "MISSING_CORRELATION_ID"
    NO_RESOLVABLE_LINES = "NO_RESOLVABLE_LINES"


# dead letter list for notifications (or parts of them) that produced no order rows
class ReconciliationFailure(SQLModel, table=True):

    id: Optional[int] = Field(default=None, primary_key=True)
    provider: str = Field(sa_column=Column(String(32), nullable=False, index=True))
    provider_txn_id: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    event_id: Optional[str] = Field(default=None, sa_column=Column(String(255), nullable=True, index=True))
    user_id: Optional[int] = Field(default=None, sa_column=Column(Integer, nullable=True))
    reason: str = Field(sa_column=Column(String(64), nullable=False))
    detail: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
