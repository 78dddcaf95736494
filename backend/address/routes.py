from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.address.models import AddressIn, AddressRef, AddressUpdate
from backend.address.repository import create_address, disable_address, list_addresses, update_address
from backend.common.custom_exceptions import InvalidRequest, NotFound
from backend.common.utils import success_response
from backend.db.dependencies import get_session
from backend.orders.routes import address_public
from backend.user.dependencies import current_user_id

address_router=APIRouter()


@address_router.post("/create")
async def add_address(request:Request,payload:AddressIn,session:AsyncSession=Depends(get_session)):
    user_id = current_user_id(request)

    missing = payload.missing_fields()
    if missing:
        raise InvalidRequest("All address fields are required", details={"missing": missing})

    address = await create_address(session, user_id, payload)
    await session.commit()

    return success_response(address_public(address), message="Address created successfully",
                            status_code=status.HTTP_201_CREATED)


@address_router.get("/get")
async def get_addresses(request:Request,session:AsyncSession=Depends(get_session)):
    user_id = current_user_id(request)

    addresses = await list_addresses(session, user_id)
    return success_response([address_public(a) for a in addresses], message="List of addresses")


@address_router.put("/update")
async def edit_address(request:Request,payload:AddressUpdate,session:AsyncSession=Depends(get_session)):
    user_id = current_user_id(request)
    if payload.id is None:
        raise InvalidRequest("Provide address _id")

    address = await update_address(session, user_id, payload.id, payload.changes())
    if address is None:
        raise NotFound("Address not found")
    await session.commit()

    return success_response(address_public(address), message="Address Updated")


@address_router.delete("/disable")
async def remove_address(request:Request,payload:AddressRef,session:AsyncSession=Depends(get_session)):
    user_id = current_user_id(request)
    if payload.id is None:
        raise InvalidRequest("Provide address _id")

    address = await disable_address(session, user_id, payload.id)
    if address is None:
        raise NotFound("Address not found")
    await session.commit()

    return success_response(address_public(address), message="Address removed")
