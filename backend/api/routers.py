from fastapi import APIRouter
from backend.api import version_prefix
from backend.address.routes import address_router
from backend.cart.routes import carts_router
from backend.orders.routes import orders_router, admin_router
from backend.orders.webhooks import webhooks_router
from backend.common.routes import home_router


public_routers = APIRouter(prefix=version_prefix)

public_routers.include_router(carts_router,prefix="/cart",tags=["cart"])
public_routers.include_router(address_router,prefix="/address",tags=["address"])
public_routers.include_router(orders_router,prefix="/order",tags=["orders"])
public_routers.include_router(webhooks_router,prefix="/order",tags=["webhooks"])
public_routers.include_router(home_router,tags=["home"])

#--------------------------------------------------------------------------------------------------------

admin_routers = APIRouter(prefix=f"{version_prefix}/admin")

admin_routers.include_router(admin_router,tags=["reconciliation-admin"])
