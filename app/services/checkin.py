"""Guest arrival"""

from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import PolicyDenied
from app.models.order import Order, OrderType
from app.models.reservation import Reservation, ReservationStatus
from app.models.table import DiningTable, TableStatus
from app.services.clock import Clock
from app.services.expiration import ExpirationPolicy
from app.services.holds import ReservationHoldManager
from app.services.notifications import KITCHEN_TOPIC, Notifier, LoggingNotifier
from app.services.policy import load_policy

logger = structlog.get_logger()


class CheckInHandler:
    """Seats a confirmed reservation and tells the kitchen"""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[Notifier] = None,
        clock: Optional[Clock] = None,
        expiration: Optional[ExpirationPolicy] = None,
    ):
        self.db = db
        self.notifier = notifier or LoggingNotifier()
        self.clock = clock or Clock()
        self.expiration = expiration or ExpirationPolicy()
        self.holds = ReservationHoldManager(db, self.clock, self.expiration)

    async def check_in(self, reservation_id: UUID) -> Reservation:
        reservation = await self.holds.load(reservation_id)
        now = self.clock.now()

        if reservation.status == ReservationStatus.SEATED:
            return reservation

        status = self.expiration.effective_status(reservation, now)
        if status != ReservationStatus.CONFIRMED:
            raise PolicyDenied(
                f"Cannot check in a {status.value} reservation",
                code="INVALID_STATE",
            )

        policy = await load_policy(self.db, reservation.restaurant_id)
        if policy.local_date(now) != reservation.reservation_date:
            raise PolicyDenied(
                "Check-in is only possible on the day of the reservation",
                code="INVALID_STATE",
            )

        result = await self.db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.status == ReservationStatus.CONFIRMED)
            .values(
                status=ReservationStatus.SEATED,
                customer_arrived=True,
                arrival_time=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            current = await self.holds.load(reservation_id)
            if current.status == ReservationStatus.SEATED:
                return current
            raise PolicyDenied(
                f"Cannot check in a {current.status.value} reservation",
                code="INVALID_STATE",
            )

        if reservation.table_id:
            await self.db.execute(
                update(DiningTable)
                .where(DiningTable.id == reservation.table_id)
                .values(
                    status=TableStatus.OCCUPIED,
                    version=DiningTable.version + 1,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )

        # Deposit-only payments leave an empty order that the kitchen has no use for
        pre_order_id = await self._pre_order_id(reservation_id) if reservation.has_pre_order else None
        if pre_order_id:
            await self.db.execute(
                update(Reservation)
                .where(Reservation.id == reservation_id)
                .values(kitchen_notified=True)
                .execution_options(synchronize_session=False)
            )

        await self.db.commit()

        logger.info(
            "Guest checked in",
            reservation_id=str(reservation_id),
            table_id=str(reservation.table_id) if reservation.table_id else None,
        )

        payload = {
            "event": "customer-arrived",
            "reservation_id": str(reservation_id),
            "table_id": str(reservation.table_id) if reservation.table_id else None,
        }
        if pre_order_id:
            payload["order_id"] = str(pre_order_id)
        await self.notifier.notify(KITCHEN_TOPIC, payload)

        return await self.holds.load(reservation_id)

    async def _pre_order_id(self, reservation_id: UUID):
        result = await self.db.execute(
            select(Order.id)
            .where(Order.reservation_id == reservation_id, Order.order_type == OrderType.PRE_ORDER)
            .order_by(Order.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()
