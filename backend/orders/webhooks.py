from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from backend.common.utils import json_ok
from backend.db.dependencies import get_session
from backend.orders.dependencies import get_paypal_gateway, get_stripe_gateway
from backend.orders.gateways import PayPalGateway, StripeGateway
from backend.orders.services import WebhookReconciler

webhooks_router=APIRouter()


# raw body is read before any json parsing , signatures are computed over the exact bytes
@webhooks_router.post("/webhook")
async def stripe_webhook(request: Request, session: AsyncSession = Depends(get_session),
                         gateway: StripeGateway = Depends(get_stripe_gateway)):
    body = await request.body()
    ack = await WebhookReconciler(gateway).handle(session, body, request.headers)
    return json_ok(ack)


@webhooks_router.post("/paypal-webhook")
async def paypal_webhook(request: Request, session: AsyncSession = Depends(get_session),
                         gateway: PayPalGateway = Depends(get_paypal_gateway)):
    body = await request.body()
    ack = await WebhookReconciler(gateway).handle(session, body, request.headers)
    return json_ok(ack)
