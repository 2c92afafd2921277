"""
Payment confirmation.

Payment events arrive at least once, possibly duplicated, possibly with a
``failed`` event overtaking or trailing a ``succeeded`` one for the same
reference. The handler is written so any interleaving converges:

* a hold leaves ``tentative`` only through a conditional write that still
  sees ``tentative`` and an unexpired ``expires_at``;
* confirmations for the same table serialize on the table's ``version``;
* orders are keyed by payment reference, so re-running materialization
  returns the existing order;
* ``failed`` never touches reservations and never regresses a completed
  payment.
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import NotFound, ReservationError
from app.models.order import Order, OrderType, PaymentStatus
from app.models.reservation import Reservation, ReservationStatus
from app.models.table import DiningTable, TableStatus
from app.schemas.order import OrderCreate
from app.schemas.payment import PaymentEvent, PaymentEventOutcome
from app.services.clock import Clock
from app.services.conflicts import ConflictDetector
from app.services.expiration import ExpirationPolicy
from app.services.holds import ReservationHoldManager
from app.services.notifications import ADMIN_TOPIC, Notifier, LoggingNotifier
from app.services.orders import OrderMaterializer
from app.services.policy import load_policy

logger = structlog.get_logger()


class ConfirmationOutcome(str, enum.Enum):
    """What handling a payment event did"""
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    EXPIRED = "expired"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    ANOMALY = "anomaly"
    ORDER_ONLY = "order_only"
    FAILURE_RECORDED = "failure_recorded"
    IGNORED = "ignored"


@dataclass
class ConfirmationResult:
    outcome: ConfirmationOutcome
    reservation: Optional[Reservation] = None
    order: Optional[Order] = None
    message: Optional[str] = None


class PaymentConfirmationHandler:
    """Applies payment events to holds and orders"""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        expiration: Optional[ExpirationPolicy] = None,
        max_attempts: Optional[int] = None,
    ):
        self.db = db
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock or Clock()
        self.expiration = expiration or ExpirationPolicy()
        self.max_attempts = max_attempts or settings.confirmation_max_attempts
        self.conflicts = ConflictDetector(db, self.expiration)
        self.holds = ReservationHoldManager(db, self.clock, self.expiration, self.conflicts)
        self.orders = OrderMaterializer(db, self.clock, self.expiration)

    async def handle(self, event: PaymentEvent) -> ConfirmationResult:
        logger.info(
            "Payment event received",
            payment_reference=event.payment_reference,
            outcome=event.outcome.value,
            reservation_id=str(event.reservation_id) if event.reservation_id else None,
        )

        if event.outcome == PaymentEventOutcome.FAILED:
            return await self._handle_failure(event)

        if event.reservation_id is None:
            return await self._handle_plain_payment(event)

        try:
            reservation = await self.holds.load(event.reservation_id)
        except NotFound:
            # May race with an unrelated payment; nothing to confirm here
            logger.warning(
                "Payment for unknown reservation",
                payment_reference=event.payment_reference,
                reservation_id=str(event.reservation_id),
            )
            return ConfirmationResult(ConfirmationOutcome.NOT_FOUND, message="Reservation not found")

        routed = await self._route(reservation, event, self.clock.now())
        if routed is not None:
            return routed

        return await self.confirm(reservation, event)

    async def confirm(self, reservation: Reservation, event: PaymentEvent) -> ConfirmationResult:
        """Move a tentative hold to confirmed; at most one writer ever succeeds"""
        reservation_id = reservation.id
        policy = await load_policy(self.db, reservation.restaurant_id)

        for attempt in range(1, self.max_attempts + 1):
            now = self.clock.now()

            table = None
            if reservation.table_id:
                table = await self.db.get(DiningTable, reservation.table_id, populate_existing=True)

                if await self.conflicts.has_conflict(
                    reservation.restaurant_id,
                    reservation.table_id,
                    reservation.reservation_date,
                    reservation.reservation_time,
                    policy.reservation_duration,
                    now,
                    include_tentative=False,
                    exclude_id=reservation_id,
                ):
                    logger.warning(
                        "Confirmation rejected, slot already booked",
                        reservation_id=str(reservation_id),
                        payment_reference=event.payment_reference,
                    )
                    return ConfirmationResult(
                        ConfirmationOutcome.CONFLICT,
                        reservation=reservation,
                        message="Time slot no longer available",
                    )

            result = await self.db.execute(
                update(Reservation)
                .where(
                    Reservation.id == reservation_id,
                    Reservation.status == ReservationStatus.TENTATIVE,
                    Reservation.expires_at > now,
                )
                .values(
                    status=ReservationStatus.CONFIRMED,
                    payment_reference=event.payment_reference,
                    confirmed_at=now,
                    expires_at=None,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

            if result.rowcount != 1:
                # A duplicate delivery, a sweep or a cancellation got there first
                await self.db.rollback()
                reservation = await self.holds.load(reservation_id)
                routed = await self._route(reservation, event, now)
                if routed is not None:
                    return routed
                continue

            if table is not None:
                table_result = await self.db.execute(
                    update(DiningTable)
                    .where(DiningTable.id == table.id, DiningTable.version == table.version)
                    .values(
                        status=TableStatus.RESERVED,
                        version=table.version + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if table_result.rowcount != 1:
                    # Another confirmation touched the table; re-check the slot
                    await self.db.rollback()
                    logger.info(
                        "Table changed during confirmation, retrying",
                        reservation_id=str(reservation_id),
                        attempt=attempt,
                    )
                    reservation = await self.holds.load(reservation_id)
                    continue

            await self.db.commit()

            logger.info(
                "Reservation confirmed",
                reservation_id=str(reservation_id),
                payment_reference=event.payment_reference,
            )
            await self.notifier.notify(ADMIN_TOPIC, {
                "event": "reservation-confirmed",
                "reservation_id": str(reservation_id),
                "table_id": str(reservation.table_id) if reservation.table_id else None,
            })

            reservation = await self.holds.load(reservation_id)
            order = await self._materialize_for_reservation(reservation, event)
            return ConfirmationResult(
                ConfirmationOutcome.CONFIRMED,
                reservation=await self.holds.load(reservation_id),
                order=order,
            )

        logger.warning(
            "Confirmation gave up after repeated contention",
            reservation_id=str(reservation_id),
            attempts=self.max_attempts,
        )
        return ConfirmationResult(
            ConfirmationOutcome.CONFLICT,
            reservation=reservation,
            message="Time slot no longer available",
        )

    async def _route(
        self,
        reservation: Reservation,
        event: PaymentEvent,
        now: datetime,
    ) -> Optional[ConfirmationResult]:
        """Outcome for a hold that cannot be confirmed, or None if it still can"""
        status = reservation.status

        if status in (ReservationStatus.CONFIRMED, ReservationStatus.SEATED, ReservationStatus.COMPLETED):
            if reservation.payment_reference == event.payment_reference:
                # Re-delivery: no state change; materialization converges on the same order
                reservation_id = reservation.id
                order = await self._materialize_for_reservation(reservation, event)
                return ConfirmationResult(
                    ConfirmationOutcome.ALREADY_CONFIRMED,
                    reservation=await self.holds.load(reservation_id),
                    order=order,
                )
            logger.warning(
                "Second payment for a confirmed reservation",
                reservation_id=str(reservation.id),
                payment_reference=event.payment_reference,
                confirmed_reference=reservation.payment_reference,
            )
            return ConfirmationResult(
                ConfirmationOutcome.ANOMALY,
                reservation=reservation,
                message="Reservation already confirmed by another payment",
            )

        if status == ReservationStatus.TENTATIVE:
            if self.expiration.is_expired(reservation, now):
                # Refund is reconciled elsewhere; the sweep will persist the expiry
                logger.warning(
                    "Payment arrived for an expired hold",
                    reservation_id=str(reservation.id),
                    payment_reference=event.payment_reference,
                    expires_at=reservation.expires_at.isoformat() if reservation.expires_at else None,
                )
                return ConfirmationResult(
                    ConfirmationOutcome.EXPIRED,
                    reservation=reservation,
                    message="Slot no longer available",
                )
            return None

        logger.warning(
            "Payment succeeded for a closed reservation",
            reservation_id=str(reservation.id),
            payment_reference=event.payment_reference,
            status=status.value,
        )
        return ConfirmationResult(
            ConfirmationOutcome.ANOMALY,
            reservation=reservation,
            message=f"Reservation is {status.value}",
        )

    async def _handle_plain_payment(self, event: PaymentEvent) -> ConfirmationResult:
        """Dine-in or takeout payment with no reservation attached"""
        if event.order is None:
            order = await self.orders.get_by_payment_reference(event.payment_reference)
            if order is None:
                logger.warning(
                    "Payment without reservation or cart contents",
                    payment_reference=event.payment_reference,
                )
                return ConfirmationResult(ConfirmationOutcome.IGNORED, message="Nothing to materialize")
            order = await self._settle(order, event)
            return ConfirmationResult(ConfirmationOutcome.ORDER_ONLY, order=order)

        order = await self._materialize(event, event.order)
        return ConfirmationResult(ConfirmationOutcome.ORDER_ONLY, order=order)

    async def _handle_failure(self, event: PaymentEvent) -> ConfirmationResult:
        """Failed payments leave holds to expire and only fail pending orders"""
        updated = await self.orders.record_payment_status(event.payment_reference, PaymentStatus.FAILED)

        if updated:
            logger.info("Order payment marked failed", payment_reference=event.payment_reference)
            return ConfirmationResult(ConfirmationOutcome.FAILURE_RECORDED)

        logger.info("Payment failure ignored", payment_reference=event.payment_reference)
        return ConfirmationResult(ConfirmationOutcome.IGNORED)

    async def _materialize_for_reservation(
        self,
        reservation: Reservation,
        event: PaymentEvent,
    ) -> Optional[Order]:
        order_spec = event.order or OrderCreate(
            restaurant_id=reservation.restaurant_id,
            order_type=OrderType.PRE_ORDER,
        )
        order_spec = order_spec.model_copy(update={
            "restaurant_id": reservation.restaurant_id,
            "reservation_id": reservation.id,
            "table_id": order_spec.table_id or reservation.table_id,
            "customer_name": order_spec.customer_name or reservation.customer_name,
            "customer_phone": order_spec.customer_phone or reservation.customer_phone,
            "customer_email": order_spec.customer_email or reservation.customer_email,
        })
        return await self._materialize(event, order_spec)

    async def _materialize(self, event: PaymentEvent, order_spec: OrderCreate) -> Optional[Order]:
        order_spec = order_spec.model_copy(update={
            "payment_status": PaymentStatus.COMPLETED,
            "payment_amount_cents": event.amount_cents,
        })
        try:
            order = await self.orders.materialize(event.payment_reference, order_spec)
        except ReservationError as e:
            # The payment stands; the order is reconciled out of band
            logger.error(
                "Order materialization failed",
                payment_reference=event.payment_reference,
                code=e.code,
                error=e.message,
            )
            return None
        return await self._settle(order, event)

    async def _settle(self, order: Order, event: PaymentEvent) -> Order:
        """Mark an order created before payment as paid"""
        if order.payment_status == PaymentStatus.COMPLETED:
            return order
        await self.orders.record_payment_status(event.payment_reference, PaymentStatus.COMPLETED)
        return await self.orders.get_by_payment_reference(event.payment_reference)
