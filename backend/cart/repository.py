from typing import List, Optional, Protocol, Tuple
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from backend.common.custom_exceptions import InvalidRequest, NotFound
from backend.schema.full_schema import CartItem, Product


class CartStore(Protocol):
    """Capability interface the checkout and webhook paths depend on.

    Mutations are staged on the caller's transaction; committing is the caller's job
    so cart clearing can share a commit with order inserts.
    """

    async def get(self, user_id: int) -> List[Tuple[CartItem, Product]]: ...

    async def add_line(self, user_id: int, product_id: int, quantity: int = 1) -> CartItem: ...

    async def set_quantity(self, user_id: int, line_id: int, quantity: int) -> Optional[CartItem]: ...

    async def remove_line(self, user_id: int, line_id: int) -> bool: ...

    async def clear_all(self, user_id: int) -> int: ...


class SqlCartStore:

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: int) -> List[Tuple[CartItem, Product]]:
        stmt = (
            select(CartItem, Product)
            .join(Product, Product.id == CartItem.product_id)
            .where(CartItem.user_id == user_id)
            .order_by(CartItem.id)
        )
        res = await self.session.execute(stmt)
        return [(row[0], row[1]) for row in res.all()]

    async def add_line(self, user_id: int, product_id: int, quantity: int = 1) -> CartItem:
        product = await self.session.get(Product, product_id)
        if product is None:
            raise NotFound("Product not found")

        stmt = select(CartItem.id).where(CartItem.user_id == user_id, CartItem.product_id == product_id)
        res = await self.session.execute(stmt)
        if res.scalar_one_or_none() is not None:
            raise InvalidRequest("Item already in cart")

        item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
        self.session.add(item)
        try:
            await self.session.flush()
        except IntegrityError:
            # concurrent add of the same product won the unique constraint
            await self.session.rollback()
            raise InvalidRequest("Item already in cart")
        return item

    async def set_quantity(self, user_id: int, line_id: int, quantity: int) -> Optional[CartItem]:
        if quantity < 1:
            raise InvalidRequest("Quantity must be at least 1")
        stmt = (
            update(CartItem)
            .where(CartItem.id == line_id, CartItem.user_id == user_id)
            .values(quantity=quantity)
        )
        res = await self.session.execute(stmt)
        if res.rowcount == 0:
            return None
        item = await self.session.get(CartItem, line_id)
        await self.session.refresh(item)
        return item

    async def remove_line(self, user_id: int, line_id: int) -> bool:
        """Conditional delete, False when the line is already gone."""
        stmt = delete(CartItem).where(CartItem.id == line_id, CartItem.user_id == user_id)
        res = await self.session.execute(stmt)
        return res.rowcount > 0

    async def clear_all(self, user_id: int) -> int:
        stmt = delete(CartItem).where(CartItem.user_id == user_id)
        res = await self.session.execute(stmt)
        return res.rowcount
