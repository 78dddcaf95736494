from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.cart.models import CartItemInput, CartLineRef, CartQtyInput
from backend.cart.repository import SqlCartStore
from backend.common.custom_exceptions import NotFound
from backend.common.utils import success_response
from backend.db.dependencies import get_session
from backend.schema.full_schema import CartItem, Product
from backend.user.dependencies import current_user_id

carts_router=APIRouter()


def cart_line_public(item: CartItem, product: Product = None) -> dict:
    line = {
        "_id": item.id,
        "userId": item.user_id,
        "quantity": item.quantity,
        "productId": item.product_id,
    }
    if product is not None:
        line["productId"] = {
            "_id": product.id,
            "name": product.name,
            "image": product.image,
            "price": product.price,
            "discount": product.discount,
            "stock": product.stock,
        }
    return line


@carts_router.post("/create")
async def add_to_cart(request:Request,payload:CartItemInput,session:AsyncSession=Depends(get_session)):
    user_id = current_user_id(request)
    store = SqlCartStore(session)

    item = await store.add_line(user_id, payload.product_id)
    await session.commit()

    return success_response(cart_line_public(item), message="Item added successfully",
                            status_code=status.HTTP_201_CREATED)


@carts_router.get("/get")
async def get_cart_items(request:Request,session:AsyncSession=Depends(get_session)):
    user_id = current_user_id(request)
    store = SqlCartStore(session)

    lines = await store.get(user_id)
    data = [cart_line_public(item, product) for item, product in lines]
    return success_response(data, message="Cart items fetched successfully")


@carts_router.put("/update-qty")
async def update_cart_item_qty(request:Request,payload:CartQtyInput,session:AsyncSession=Depends(get_session)):
    user_id = current_user_id(request)
    store = SqlCartStore(session)

    item = await store.set_quantity(user_id, payload.id, payload.qty)
    if item is None:
        raise NotFound("Cart item not found")
    await session.commit()

    return success_response(cart_line_public(item), message="Cart item updated successfully")


@carts_router.delete("/delete-cart-item")
async def delete_cart_item(request:Request,payload:CartLineRef,session:AsyncSession=Depends(get_session)):
    user_id = current_user_id(request)
    store = SqlCartStore(session)

    removed = await store.remove_line(user_id, payload.id)
    if not removed:
        raise NotFound("Cart item not found")
    await session.commit()

    return success_response({"_id": payload.id}, message="Item removed successfully")
