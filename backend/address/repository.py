from typing import Dict, List, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from backend.address.models import ADDRESS_FIELDS, AddressIn
from backend.schema.full_schema import Address


async def create_address(session: AsyncSession, user_id: int, payload: AddressIn) -> Address:
    values = {f: getattr(payload, f).strip() for f in ADDRESS_FIELDS}
    address = Address(user_id=user_id, **values)
    session.add(address)
    await session.flush()
    return address


async def list_addresses(session: AsyncSession, user_id: int) -> List[Address]:
    stmt = (
        select(Address)
        .where(Address.user_id == user_id)
        .order_by(Address.created_at.desc(), Address.id.desc())
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def _owned_update(session: AsyncSession, user_id: int, address_id: int,
                        values: Dict[str, object]) -> Optional[Address]:
    stmt = (
        update(Address)
        .where(Address.id == address_id, Address.user_id == user_id)
        .values(**values)
    )
    res = await session.execute(stmt)
    if res.rowcount == 0:
        return None
    address = await session.get(Address, address_id)
    await session.refresh(address)
    return address


async def update_address(session: AsyncSession, user_id: int, address_id: int,
                         changes: Dict[str, str]) -> Optional[Address]:
    if not changes:
        stmt = select(Address).where(Address.id == address_id, Address.user_id == user_id)
        res = await session.execute(stmt)
        return res.scalar_one_or_none()
    return await _owned_update(session, user_id, address_id, changes)


async def disable_address(session: AsyncSession, user_id: int, address_id: int) -> Optional[Address]:
    """Soft delete: the row stays so past orders keep their delivery address."""
    return await _owned_update(session, user_id, address_id, {"status": False})
