"""Idempotent order creation keyed by payment reference"""

from typing import Dict, List, Optional, Tuple
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import HoldExpired, NotFound, ValidationFailed
from app.models.menu import MenuItem
from app.models.order import Order, OrderType, PaymentStatus
from app.models.reservation import Reservation, ReservationStatus
from app.schemas.order import OrderCreate
from app.services.clock import Clock
from app.services.expiration import ExpirationPolicy

logger = structlog.get_logger()

# Payment status moves forward only; completed is final
PAYMENT_STATUS_SOURCES = {
    PaymentStatus.COMPLETED: (PaymentStatus.PENDING, PaymentStatus.FAILED),
    PaymentStatus.FAILED: (PaymentStatus.PENDING,),
}


class OrderMaterializer:
    """
    Creates orders from an order specification.

    For a given payment reference at most one order ever exists: retried
    webhooks, duplicate client submissions and recovery lookups all converge
    on the first stored row. Reservation state is never touched here beyond
    flagging a pre-order.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        expiration: Optional[ExpirationPolicy] = None,
    ):
        self.db = db
        self.clock = clock or Clock()
        self.expiration = expiration or ExpirationPolicy()

    async def get_by_payment_reference(self, payment_reference: str) -> Optional[Order]:
        result = await self.db.execute(
            select(Order)
            .where(Order.payment_reference == payment_reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def materialize(self, payment_reference: Optional[str], order_spec: OrderCreate) -> Order:
        if payment_reference:
            existing = await self.get_by_payment_reference(payment_reference)
            if existing:
                logger.info(
                    "Order already materialized",
                    order_id=str(existing.id),
                    payment_reference=payment_reference,
                )
                return existing

        await self._validate_linkage(order_spec)
        items, subtotal = await self._price_items(order_spec)

        if order_spec.tip_cents < 0:
            raise ValidationFailed("Tip cannot be negative", code="INVALID_TIP")

        now = self.clock.now()
        order = Order(
            restaurant_id=order_spec.restaurant_id,
            reservation_id=order_spec.reservation_id,
            table_id=order_spec.table_id,
            order_type=order_spec.order_type,
            customer_name=order_spec.customer_name,
            customer_phone=order_spec.customer_phone,
            customer_email=order_spec.customer_email,
            items_json=items,
            subtotal_cents=subtotal,
            tip_cents=order_spec.tip_cents,
            total_cents=subtotal + order_spec.tip_cents,
            payment_reference=payment_reference,
            payment_status=order_spec.payment_status,
            payment_amount_cents=order_spec.payment_amount_cents,
            notes=order_spec.notes,
            created_at=now,
            updated_at=now,
        )
        self.db.add(order)

        try:
            await self.db.flush()
            if order_spec.order_type == OrderType.PRE_ORDER and order_spec.reservation_id and items:
                await self.db.execute(
                    update(Reservation)
                    .where(Reservation.id == order_spec.reservation_id)
                    .values(has_pre_order=True, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            if not payment_reference:
                raise
            # Lost the race on the unique payment reference
            existing = await self.get_by_payment_reference(payment_reference)
            if existing is None:
                raise
            logger.info(
                "Concurrent order materialization converged",
                order_id=str(existing.id),
                payment_reference=payment_reference,
            )
            return existing

        await self.db.refresh(order)

        logger.info(
            "Order materialized",
            order_id=str(order.id),
            payment_reference=payment_reference,
            order_type=order.order_type.value,
            total_cents=order.total_cents,
        )
        return order

    async def record_payment_status(self, payment_reference: str, status: PaymentStatus) -> bool:
        """Move an order's payment status forward; never regresses a completed payment"""
        result = await self.db.execute(
            update(Order)
            .where(
                Order.payment_reference == payment_reference,
                Order.payment_status.in_(PAYMENT_STATUS_SOURCES[status]),
            )
            .values(payment_status=status, updated_at=self.clock.now())
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()
        return result.rowcount == 1

    async def _validate_linkage(self, order_spec: OrderCreate) -> None:
        if order_spec.order_type == OrderType.DINE_IN and not order_spec.table_id:
            raise ValidationFailed("Table is required for dine-in orders", code="TABLE_REQUIRED")

        if order_spec.order_type == OrderType.PRE_ORDER and not order_spec.reservation_id:
            raise ValidationFailed("Reservation is required for pre-orders", code="RESERVATION_REQUIRED")

        if order_spec.reservation_id:
            reservation = await self.db.get(Reservation, order_spec.reservation_id, populate_existing=True)
            if not reservation or reservation.restaurant_id != order_spec.restaurant_id:
                raise NotFound("Reservation not found", code="RESERVATION_NOT_FOUND")
            status = self.expiration.effective_status(reservation, self.clock.now())
            if status == ReservationStatus.EXPIRED:
                raise HoldExpired("Reservation hold has expired", code="RESERVATION_EXPIRED")
            if status == ReservationStatus.CANCELLED:
                raise ValidationFailed(
                    f"Cannot order against a {reservation.status.value} reservation",
                    code="INVALID_RESERVATION_STATUS",
                )

    async def _price_items(self, order_spec: OrderCreate) -> Tuple[List[Dict], int]:
        """Snapshot menu prices for each line; client prices are never trusted"""
        if not order_spec.items:
            return [], 0

        menu_item_ids = {item.menu_item_id for item in order_spec.items}
        result = await self.db.execute(
            select(MenuItem).where(
                MenuItem.id.in_(menu_item_ids),
                MenuItem.restaurant_id == order_spec.restaurant_id,
            )
        )
        menu: Dict[UUID, MenuItem] = {item.id: item for item in result.scalars().all()}

        items = []
        subtotal = 0
        for line in order_spec.items:
            if line.quantity < 1:
                raise ValidationFailed("Quantity must be at least 1", code="INVALID_QUANTITY")

            menu_item = menu.get(line.menu_item_id)
            if not menu_item:
                raise ValidationFailed(
                    f"Menu item {line.menu_item_id} not found",
                    code="MENU_ITEM_NOT_FOUND",
                )
            if not menu_item.is_available:
                raise ValidationFailed(
                    f'Menu item "{menu_item.name}" is not available',
                    code="MENU_ITEM_UNAVAILABLE",
                )

            items.append({
                "menu_item_id": str(menu_item.id),
                "name": menu_item.name,
                "quantity": line.quantity,
                "unit_price_cents": menu_item.price_cents,
                "special_instructions": line.special_instructions,
            })
            subtotal += menu_item.price_cents * line.quantity

        return items, subtotal
