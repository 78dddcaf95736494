from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from backend.cart.repository import CartStore, SqlCartStore
from backend.common.custom_exceptions import CheckoutConflict, InvalidRequest, NotFound
from backend.config.settings import config_settings
from backend.orders.constants import ERR_ITEMS_AND_ADDRESS, ERR_NO_ITEMS, ERR_TOTAL_AND_ADDRESS, logger
from backend.orders.gateways import PaymentGateway, ProviderLineItem, ProviderNotice, Settlement
from backend.orders.models import CheckoutRequest, ResolvedLine
from backend.orders.repository import (claim_payment_txn, failure_recorded, get_products_by_ids,
                                       get_user_address, insert_orders, payment_txn_exists, record_failure,
                                       set_txn_status, user_exists)
from backend.orders.utils import acquire_checkout_lock, effective_price, generate_cod_batch_id, generate_order_id
from backend.schema.full_schema import (CASH_ON_DELIVERY, Address, FailureReason, Orders, PaymentProvider,
                                        TxnStatus)
from backend.user.repository import get_user

ACK = {"received": True}


def _as_int(value: Optional[str]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def resolve_lines(session: AsyncSession, req: CheckoutRequest) -> List[ResolvedLine]:
    """Live product rows for the requested lines; an unknown product id is a 404."""
    products = await get_products_by_ids(session, [it.product_id for it in req.list_items])
    lines = []
    for item in req.list_items:
        product = products.get(item.product_id)
        if product is None:
            raise NotFound(f"Product {item.product_id} not found")
        lines.append(ResolvedLine(product=product, quantity=item.quantity))
    return lines


async def load_user_and_address(session: AsyncSession, user_id: int, address_id: int):
    user = await get_user(session, user_id)
    if user is None:
        raise NotFound("User not found")
    address = await get_user_address(session, user_id, address_id)
    if address is None:
        raise NotFound("Address not found")
    return user, address


class CheckoutSessionBuilder:
    """Builds the provider artifact for a card or PayPal checkout. Nothing is persisted."""

    def __init__(self, gateway: PaymentGateway):
        self.gateway = gateway

    async def build(self, session: AsyncSession, user_id: int, req: CheckoutRequest) -> Dict[str, Any]:
        if not req.list_items or req.address_id is None:
            raise InvalidRequest(ERR_ITEMS_AND_ADDRESS)

        user, address = await load_user_and_address(session, user_id, req.address_id)
        lines = await resolve_lines(session, req)
        return await self.gateway.create_session(user, address, lines)


class CashOnDeliveryCommitter:

    def __init__(self, cart: CartStore):
        self.cart = cart

    @staticmethod
    def validate(req: CheckoutRequest) -> None:
        if not req.list_items:
            raise InvalidRequest(ERR_NO_ITEMS)
        if req.address_id is None or req.total_amt is None or req.total_amt <= 0:
            raise InvalidRequest(ERR_TOTAL_AND_ADDRESS)

    async def _claim_lines(self, session: AsyncSession, user_id: int, lines: List[ResolvedLine]) -> None:
        in_cart = {item.product_id: item for item, _ in await self.cart.get(user_id)}
        for line in lines:
            product_id = line.product.id
            item = in_cart.get(product_id)
            if item is None or not await self.cart.remove_line(user_id, item.id):
                # rollback expires every loaded row, so nothing ORM-backed is read after it
                await session.rollback()
                logger.warning("order.cod.conflict", extra={"user_id": user_id, "product_id": product_id})
                raise CheckoutConflict("Cart changed while placing the order, please retry")

    async def commit(self, session: AsyncSession, user_id: int, req: CheckoutRequest) -> List[Orders]:
        self.validate(req)

        product_ids = [it.product_id for it in req.list_items]
        if len(set(product_ids)) != len(product_ids):
            raise InvalidRequest("Duplicate products in list_items")

        await load_user_and_address(session, user_id, req.address_id)
        lines = await resolve_lines(session, req)

        await acquire_checkout_lock(session, user_id)
        await self._claim_lines(session, user_id, lines)

        batch_id = generate_cod_batch_id()
        rows = []
        for line in lines:
            product = line.product
            rows.append(Orders(
                order_id=generate_order_id(),
                user_id=user_id,
                product_id=product.id,
                product_details={"name": product.name, "image": list(product.image or [])},
                payment_id="",
                payment_status=CASH_ON_DELIVERY,
                provider=PaymentProvider.COD.value,
                provider_txn_id=batch_id,
                delivery_address_id=req.address_id,
                sub_total_amt=Decimal(product.price) * line.quantity,
                total_amt=effective_price(product.price, product.discount) * line.quantity,
                currency=config_settings.STORE_CURRENCY,
                quantity=line.quantity,
            ))

        try:
            await insert_orders(session, rows)
            await self.cart.clear_all(user_id)
            await session.commit()
        except Exception:
            await session.rollback()
            raise

        logger.info("order.cod.committed", extra={"user_id": user_id, "batch_id": batch_id, "orders": len(rows)})
        return rows


class WebhookReconciler:
    """Turns a verified provider completion notice into committed order rows, at most once.

    VERIFIED -> MATERIALIZED -> CART_CLEARED on success, REJECTED when nothing can be written.
    The transaction row, the order rows and the cart clear share one commit.
    """

    def __init__(self, gateway: PaymentGateway, cart_factory=SqlCartStore):
        self.gateway = gateway
        self.cart_factory = cart_factory

    async def handle(self, session: AsyncSession, body: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        provider = self.gateway.name

        await self.gateway.verify_webhook(body, headers)
        notice = self.gateway.parse_event(body)
        logger.info("webhook.verified", extra={"provider": provider, "event_type": notice.event_type,
                                               "txn_id": notice.txn_id})

        if not notice.is_completion:
            logger.info("webhook.ignored", extra={"provider": provider, "event_type": notice.event_type})
            return ACK

        if not notice.txn_id:
            return await self._reject_uncorrelated(session, notice)

        if await payment_txn_exists(session, provider, notice.txn_id):
            logger.info("webhook.duplicate", extra={"provider": provider, "txn_id": notice.txn_id})
            return ACK

        settlement = await self.gateway.fetch_settlement(notice)

        try:
            return await self._materialize(session, notice, settlement)
        except Exception:
            await session.rollback()
            logger.exception("webhook.materialize_failed", extra={"provider": provider, "txn_id": notice.txn_id})
            raise

    async def _reject_uncorrelated(self, session: AsyncSession, notice: ProviderNotice) -> Dict[str, Any]:
        # no transaction id to claim, so redeliveries are recognised by the provider's event id
        reason = FailureReason.MISSING_CORRELATION_ID.value
        if notice.event_id and await failure_recorded(session, notice.provider, notice.event_id, reason):
            logger.info("webhook.duplicate", extra={"provider": notice.provider, "event_id": notice.event_id})
            return ACK

        await record_failure(session, notice.provider, "", reason, event_id=notice.event_id,
                             detail={"event_type": notice.event_type, "missing": "transaction id"})
        await session.commit()
        logger.warning("webhook.rejected", extra={"provider": notice.provider, "event_id": notice.event_id,
                                                  "reason": "missing transaction id"})
        return ACK

    async def _reject(self, session: AsyncSession, txn, notice: ProviderNotice, reason: FailureReason,
                      user_id: Optional[int], detail: Dict[str, Any]) -> Dict[str, Any]:
        await record_failure(session, notice.provider, notice.txn_id, reason.value, user_id=user_id, detail=detail,
                             event_id=notice.event_id)
        await set_txn_status(session, txn, TxnStatus.REJECTED, user_id=user_id, last_error=reason.value)
        await session.commit()
        logger.warning("webhook.rejected", extra={"provider": notice.provider, "txn_id": notice.txn_id,
                                                  "reason": reason.value})
        return ACK

    async def _materialize(self, session: AsyncSession, notice: ProviderNotice,
                           settlement: Settlement) -> Dict[str, Any]:
        txn = await claim_payment_txn(session, notice.provider, notice.txn_id, notice.event_type)
        if txn is None:
            logger.info("webhook.duplicate", extra={"provider": notice.provider, "txn_id": notice.txn_id})
            return ACK

        user_id = _as_int(settlement.user_ref)
        if user_id is None or not await user_exists(session, user_id):
            return await self._reject(session, txn, notice, FailureReason.MISSING_CORRELATION_ID, None,
                                      {"user_ref": settlement.user_ref, "payment_id": settlement.payment_id})

        address_id = await self._delivery_address(session, user_id, settlement)
        rows, dropped = await self._build_rows(session, user_id, address_id, notice, settlement)

        if not rows:
            return await self._reject(session, txn, notice, FailureReason.NO_RESOLVABLE_LINES, user_id,
                                      {"dropped": dropped, "payment_id": settlement.payment_id})

        if dropped:
            await record_failure(session, notice.provider, notice.txn_id,
                                 FailureReason.PARTIAL_MATERIALIZATION.value, user_id=user_id,
                                 detail={"dropped": dropped, "written": len(rows)}, event_id=notice.event_id)

        await insert_orders(session, rows)
        await set_txn_status(session, txn, TxnStatus.MATERIALIZED, user_id=user_id, orders_written=len(rows))

        cart = self.cart_factory(session)
        cleared = await cart.clear_all(user_id)
        await set_txn_status(session, txn, TxnStatus.CART_CLEARED)
        await session.commit()

        logger.info("webhook.materialized", extra={"provider": notice.provider, "txn_id": notice.txn_id,
                                                   "user_id": user_id, "orders": len(rows),
                                                   "cart_lines_cleared": cleared})
        return ACK

    async def _delivery_address(self, session: AsyncSession, user_id: int, settlement: Settlement) -> Optional[int]:
        address_id = _as_int(settlement.address_ref)
        if address_id is None:
            return None
        address: Optional[Address] = await get_user_address(session, user_id, address_id)
        if address is None:
            logger.warning("webhook.address_unresolved", extra={"user_id": user_id,
                                                                "address_ref": settlement.address_ref})
            return None
        return address.id

    async def _build_rows(self, session: AsyncSession, user_id: int, address_id: Optional[int],
                          notice: ProviderNotice, settlement: Settlement) -> Tuple[List[Orders], List[Dict[str, Any]]]:
        refs = [_as_int(li.product_ref) for li in settlement.line_items]
        products = await get_products_by_ids(session, [r for r in refs if r is not None])

        rows: List[Orders] = []
        dropped: List[Dict[str, Any]] = []
        for ref, li in zip(refs, settlement.line_items):
            product = products.get(ref) if ref is not None else None
            if product is None:
                dropped.append(self._dropped_line(li))
                logger.warning("webhook.line_dropped", extra={"provider": notice.provider, "txn_id": notice.txn_id,
                                                              "product_ref": li.product_ref})
                continue

            rows.append(Orders(
                order_id=generate_order_id(),
                user_id=user_id,
                product_id=product.id,
                product_details={"name": li.name or product.name,
                                 "image": li.images or list(product.image or [])},
                payment_id=settlement.payment_id,
                payment_status=settlement.payment_status,
                provider=notice.provider,
                provider_txn_id=notice.txn_id,
                delivery_address_id=address_id,
                sub_total_amt=li.sub_total,
                total_amt=li.total,
                currency=settlement.currency,
                quantity=li.quantity,
            ))
        return rows, dropped

    @staticmethod
    def _dropped_line(li: ProviderLineItem) -> Dict[str, Any]:
        return {
            "product_ref": li.product_ref,
            "name": li.name,
            "quantity": li.quantity,
            "total": str(li.total),
        }
