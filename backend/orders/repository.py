from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.utils import now
from backend.schema.full_schema import (Address, Orders, PaymentTransaction, Product,
                                        ReconciliationFailure, TxnStatus, Users)


async def get_products_by_ids(session: AsyncSession, product_ids: Iterable[int]) -> Dict[int, Product]:
    ids = list({int(pid) for pid in product_ids})
    if not ids:
        return {}
    res = await session.execute(select(Product).where(Product.id.in_(ids)))
    return {p.id: p for p in res.scalars().all()}


async def get_user_address(session: AsyncSession, user_id: int, address_id: int) -> Optional[Address]:
    """Active address owned by the user; disabled addresses resolve to None."""
    stmt = select(Address).where(Address.id == address_id, Address.user_id == user_id, Address.status.is_(True))
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def user_exists(session: AsyncSession, user_id: int) -> bool:
    res = await session.execute(select(Users.id).where(Users.id == user_id))
    return res.scalar_one_or_none() is not None


async def insert_orders(session: AsyncSession, rows: List[Orders]) -> List[Orders]:
    session.add_all(rows)
    await session.flush()
    return rows


async def payment_txn_exists(session: AsyncSession, provider: str, provider_txn_id: str) -> bool:
    stmt = select(PaymentTransaction.id).where(
        PaymentTransaction.provider == provider,
        PaymentTransaction.provider_txn_id == provider_txn_id,
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none() is not None


async def claim_payment_txn(session: AsyncSession, provider: str, provider_txn_id: str,
                            event_type: str) -> Optional[PaymentTransaction]:
    """Insert-if-absent on (provider, provider_txn_id).

    Returns None when another delivery already owns the key; the session is rolled back
    in that case so nothing staged before the claim survives.
    """
    txn = PaymentTransaction(
        provider=provider,
        provider_txn_id=provider_txn_id,
        status=TxnStatus.VERIFIED.value,
        event_type=event_type,
    )
    session.add(txn)
    try:
        await session.flush()
    except IntegrityError:
        await session.rollback()
        return None
    return txn


async def set_txn_status(session: AsyncSession, txn: PaymentTransaction, status: TxnStatus,
                         **fields: Any) -> PaymentTransaction:
    txn.status = status.value
    txn.updated_at = now()
    for key, value in fields.items():
        setattr(txn, key, value)
    session.add(txn)
    await session.flush()
    return txn


async def record_failure(session: AsyncSession, provider: str, provider_txn_id: str,
                         reason: str, user_id: Optional[int] = None,
                         detail: Optional[Dict[str, Any]] = None,
                         event_id: Optional[str] = None) -> ReconciliationFailure:
    failure = ReconciliationFailure(
        provider=provider,
        provider_txn_id=provider_txn_id,
        event_id=event_id,
        user_id=user_id,
        reason=reason,
        detail=detail,
    )
    session.add(failure)
    await session.flush()
    return failure


async def failure_recorded(session: AsyncSession, provider: str, event_id: str, reason: str) -> bool:
    stmt = select(ReconciliationFailure.id).where(
        ReconciliationFailure.provider == provider,
        ReconciliationFailure.event_id == event_id,
        ReconciliationFailure.reason == reason,
    ).limit(1)
    res = await session.execute(stmt)
    return res.scalar_one_or_none() is not None


async def list_user_orders(session: AsyncSession, user_id: int) -> List[Tuple[Orders, Optional[Address]]]:
    stmt = (
        select(Orders, Address)
        .outerjoin(Address, Address.id == Orders.delivery_address_id)
        .where(Orders.user_id == user_id)
        .order_by(Orders.created_at.desc(), Orders.id.desc())
    )
    res = await session.execute(stmt)
    return [(row[0], row[1]) for row in res.all()]


async def list_failures(session: AsyncSession, provider: Optional[str] = None,
                        limit: int = 100) -> List[ReconciliationFailure]:
    stmt = select(ReconciliationFailure)
    if provider:
        stmt = stmt.where(ReconciliationFailure.provider == provider)
    stmt = stmt.order_by(ReconciliationFailure.created_at.desc(), ReconciliationFailure.id.desc()).limit(limit)
    res = await session.execute(stmt)
    return list(res.scalars().all())
