from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.cart.repository import SqlCartStore
from backend.common.utils import money, success_response
from backend.config.admin_config import admin_config
from backend.db.dependencies import get_session
from backend.orders.dependencies import get_paypal_gateway, get_stripe_gateway
from backend.orders.gateways import PayPalGateway, StripeGateway
from backend.orders.models import CheckoutRequest
from backend.orders.repository import list_failures, list_user_orders
from backend.orders.services import CashOnDeliveryCommitter, CheckoutSessionBuilder
from backend.schema.full_schema import Address, Orders, ReconciliationFailure
from backend.user.dependencies import current_user_id

orders_router=APIRouter()
admin_router=APIRouter()


def address_public(address: Optional[Address]) -> Optional[dict]:
    if address is None:
        return None
    return {
        "_id": address.id,
        "address_line": address.address_line,
        "city": address.city,
        "state": address.state,
        "pincode": address.pincode,
        "country": address.country,
        "mobile": address.mobile,
        "status": address.status,
    }


def order_public(order: Orders, address: Optional[Address] = None) -> dict:
    return {
        "orderId": order.order_id,
        "userId": order.user_id,
        "productId": order.product_id,
        "product_details": order.product_details,
        "paymentId": order.payment_id,
        "payment_status": order.payment_status,
        "delivery_address": address_public(address) if address is not None else order.delivery_address_id,
        "subTotalAmt": money(order.sub_total_amt),
        "totalAmt": money(order.total_amt),
        "quantity": order.quantity,
        "currency": order.currency,
        "provider": order.provider,
        "createdAt": order.created_at,
    }


@orders_router.post("/cash-on-delivery")
async def cash_on_delivery(request: Request, payload: CheckoutRequest,
                           session: AsyncSession = Depends(get_session)):
    user_id = current_user_id(request)

    committer = CashOnDeliveryCommitter(SqlCartStore(session))
    rows = await committer.commit(session, user_id, payload)

    return success_response([order_public(o) for o in rows], message="Order placed successfully")


@orders_router.post("/checkout")
async def card_checkout(request: Request, payload: CheckoutRequest,
                        session: AsyncSession = Depends(get_session),
                        gateway: StripeGateway = Depends(get_stripe_gateway)):
    user_id = current_user_id(request)

    checkout_session = await CheckoutSessionBuilder(gateway).build(session, user_id, payload)
    return success_response(message="Stripe session created successfully", session=checkout_session)


@orders_router.post("/paypal-checkout")
async def paypal_checkout(request: Request, payload: CheckoutRequest,
                          session: AsyncSession = Depends(get_session),
                          gateway: PayPalGateway = Depends(get_paypal_gateway)):
    user_id = current_user_id(request)

    paypal_order = await CheckoutSessionBuilder(gateway).build(session, user_id, payload)
    return success_response(message="PayPal order created successfully", **paypal_order)


@orders_router.get("/orders")
async def get_orders(request: Request, session: AsyncSession = Depends(get_session)):
    user_id = current_user_id(request)

    rows = await list_user_orders(session, user_id)
    return success_response([order_public(o, a) for o, a in rows], message="Order list")


# --------------------------------------------------------------------------------------------


def require_admin_secret(x_admin_secret: Optional[str] = Header(default=None)):
    # no configured secret means the admin surface stays closed
    if not admin_config.ADMIN_SECRET or x_admin_secret != admin_config.ADMIN_SECRET:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin secret required")


def failure_public(failure: ReconciliationFailure) -> dict:
    return {
        "id": failure.id,
        "provider": failure.provider,
        "providerTxnId": failure.provider_txn_id,
        "eventId": failure.event_id,
        "userId": failure.user_id,
        "reason": failure.reason,
        "detail": failure.detail,
        "createdAt": failure.created_at,
    }


@admin_router.get("/reconciliation-failures", dependencies=[Depends(require_admin_secret)])
async def get_reconciliation_failures(provider: Optional[str] = None, limit: int = 100,
                                      session: AsyncSession = Depends(get_session)):
    failures = await list_failures(session, provider=provider, limit=min(max(limit, 1), 500))
    return success_response([failure_public(f) for f in failures], message="Reconciliation failures")
