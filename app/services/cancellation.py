"""Customer and owner cancellation policy"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import PolicyDenied
from app.models.reservation import Reservation, ReservationStatus, BINDING_STATUSES, can_transition
from app.models.table import DiningTable, TableStatus
from app.services.clock import Clock
from app.services.expiration import ExpirationPolicy
from app.services.holds import ReservationHoldManager
from app.services.policy import ReservationPolicy, load_policy

logger = structlog.get_logger()

CANCELLABLE_STATUSES = (ReservationStatus.TENTATIVE, ReservationStatus.CONFIRMED)


@dataclass(frozen=True)
class CancellationDecision:
    allowed: bool
    reason_code: Optional[str] = None
    message: Optional[str] = None


class CancellationPolicyEnforcer:
    """Decides and applies cancellations against the restaurant's window"""

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        expiration: Optional[ExpirationPolicy] = None,
    ):
        self.db = db
        self.clock = clock or Clock()
        self.expiration = expiration or ExpirationPolicy()
        self.holds = ReservationHoldManager(db, self.clock, self.expiration)

    def can_cancel(
        self,
        reservation: Reservation,
        now: datetime,
        policy: ReservationPolicy,
    ) -> CancellationDecision:
        status = self.expiration.effective_status(reservation, now)

        if status not in CANCELLABLE_STATUSES:
            return CancellationDecision(
                allowed=False,
                reason_code="INVALID_RESERVATION_STATUS",
                message=f"Cannot cancel a {status.value} reservation",
            )

        # Tentative holds are not a commitment yet
        if status == ReservationStatus.TENTATIVE:
            return CancellationDecision(allowed=True)

        starts_at = policy.to_utc(reservation.reservation_date, reservation.reservation_time)
        if starts_at - now < policy.cancellation_window:
            return CancellationDecision(
                allowed=False,
                reason_code="CANCELLATION_WINDOW_PASSED",
                message=(
                    f"Cancellations are only allowed more than {policy.cancellation_window_hours} "
                    "hours before your reservation time"
                ),
            )

        return CancellationDecision(allowed=True)

    async def cancel(self, reservation_id: UUID) -> Reservation:
        """Cancel if policy allows, releasing the table the booking was holding"""
        reservation = await self.holds.load(reservation_id)
        policy = await load_policy(self.db, reservation.restaurant_id)
        now = self.clock.now()

        decision = self.can_cancel(reservation, now, policy)
        if not decision.allowed:
            logger.info(
                "Cancellation denied",
                reservation_id=str(reservation_id),
                reason_code=decision.reason_code,
            )
            raise PolicyDenied(decision.message, code=decision.reason_code)

        previous_status = reservation.status
        if not can_transition(previous_status, ReservationStatus.CANCELLED):
            raise PolicyDenied(
                f"Cannot cancel a {previous_status.value} reservation",
                code="INVALID_RESERVATION_STATUS",
            )

        result = await self.db.execute(
            update(Reservation)
            .where(Reservation.id == reservation_id, Reservation.status == previous_status)
            .values(
                status=ReservationStatus.CANCELLED,
                cancelled_at=now,
                expires_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Someone else moved the row first; report against its new state
            await self.db.rollback()
            current = await self.holds.load(reservation_id)
            raise PolicyDenied(
                f"Cannot cancel a {current.status.value} reservation",
                code="INVALID_RESERVATION_STATUS",
            )

        if reservation.table_id and previous_status == ReservationStatus.CONFIRMED:
            await self._release_table(reservation.table_id, reservation_id, now)

        await self.db.commit()

        logger.info(
            "Reservation cancelled",
            reservation_id=str(reservation_id),
            previous_status=previous_status.value,
        )
        return await self.holds.load(reservation_id)

    async def _release_table(self, table_id: UUID, reservation_id: UUID, now: datetime) -> None:
        """Mark the table available unless another binding reservation still holds it"""
        result = await self.db.execute(
            select(func.count(Reservation.id)).where(
                Reservation.table_id == table_id,
                Reservation.id != reservation_id,
                Reservation.status.in_(BINDING_STATUSES),
            )
        )
        if result.scalar():
            return

        await self.db.execute(
            update(DiningTable)
            .where(DiningTable.id == table_id, DiningTable.status == TableStatus.RESERVED)
            .values(
                status=TableStatus.AVAILABLE,
                version=DiningTable.version + 1,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
