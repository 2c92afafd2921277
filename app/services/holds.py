"""Tentative table holds"""

from dataclasses import dataclass
from datetime import date, timedelta
from typing import List, Optional
from uuid import UUID

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.errors import Conflict, HoldExpired, NotFound, PolicyDenied, ValidationFailed
from app.models.reservation import Reservation, ReservationStatus
from app.models.table import DiningTable
from app.schemas.reservation import ReservationCreate, ReservationResponse
from app.services.clock import Clock
from app.services.conflicts import ConflictDetector
from app.services.expiration import ExpirationPolicy
from app.services.policy import load_policy

logger = structlog.get_logger()


@dataclass
class HoldVerification:
    reservation: Reservation
    already_confirmed: bool = False


class ReservationHoldManager:
    """Creates tentative holds and serves reads with logical expiration applied"""

    def __init__(
        self,
        db: AsyncSession,
        clock: Optional[Clock] = None,
        expiration: Optional[ExpirationPolicy] = None,
        conflicts: Optional[ConflictDetector] = None,
    ):
        self.db = db
        self.clock = clock or Clock()
        self.expiration = expiration or ExpirationPolicy()
        self.conflicts = conflicts or ConflictDetector(db, self.expiration)

    async def create_hold(self, request: ReservationCreate) -> Reservation:
        """Validate and persist a new tentative hold"""
        now = self.clock.now()

        if request.party_size <= 0:
            raise ValidationFailed("Party size must be greater than zero", code="INVALID_PARTY_SIZE")
        if not request.customer_name or not request.customer_name.strip():
            raise ValidationFailed("Customer name is required", code="CUSTOMER_NAME_REQUIRED")

        policy = await load_policy(self.db, request.restaurant_id)

        starts_at = policy.to_utc(request.reservation_date, request.reservation_time)
        if starts_at <= now:
            raise ValidationFailed("Reservation time must be in the future", code="RESERVATION_IN_PAST")

        if request.table_id:
            table = await self.db.get(DiningTable, request.table_id)
            if not table or table.restaurant_id != request.restaurant_id:
                raise NotFound(
                    "Table not found or does not belong to this restaurant",
                    code="TABLE_NOT_FOUND",
                )
            if table.capacity < request.party_size:
                raise ValidationFailed(
                    f"Table capacity ({table.capacity}) is insufficient for party size ({request.party_size})",
                    code="INSUFFICIENT_CAPACITY",
                )

            # Strict restaurants reject holds on slots that are already booked
            if not policy.allow_overlapping_holds and await self.conflicts.has_conflict(
                request.restaurant_id,
                request.table_id,
                request.reservation_date,
                request.reservation_time,
                policy.reservation_duration,
                now,
                include_tentative=False,
            ):
                logger.warning(
                    "Hold rejected, slot already booked",
                    restaurant_id=str(request.restaurant_id),
                    table_id=str(request.table_id),
                    reservation_date=request.reservation_date.isoformat(),
                    reservation_time=request.reservation_time.isoformat(),
                )
                raise Conflict("Table is already reserved for this time slot")

        reservation = Reservation(
            restaurant_id=request.restaurant_id,
            table_id=request.table_id,
            customer_name=request.customer_name.strip(),
            customer_phone=request.customer_phone,
            customer_email=request.customer_email,
            party_size=request.party_size,
            reservation_date=request.reservation_date,
            reservation_time=request.reservation_time,
            special_requests=request.special_requests,
            status=ReservationStatus.TENTATIVE,
            expires_at=self.expiration.expires_at_for(policy, now),
            created_at=now,
            updated_at=now,
        )

        self.db.add(reservation)
        await self.db.commit()
        await self.db.refresh(reservation)

        logger.info(
            "Hold created",
            reservation_id=str(reservation.id),
            restaurant_id=str(reservation.restaurant_id),
            expires_at=reservation.expires_at.isoformat(),
        )
        return reservation

    async def verify_for_payment(
        self,
        reservation_id: UUID,
        restaurant_id: Optional[UUID] = None,
    ) -> HoldVerification:
        """
        Re-check a hold right before the guest pays and give the payment time to finish.

        The hold must still be live and its slot must not have been booked by
        someone else. Its expiry is pushed to at least
        ``payment_hold_extension_minutes`` from now, never shortened.
        """
        reservation = await self.load(reservation_id)

        if restaurant_id and reservation.restaurant_id != restaurant_id:
            raise ValidationFailed("Reservation belongs to another restaurant", code="WRONG_RESTAURANT")

        if reservation.status == ReservationStatus.CONFIRMED:
            return HoldVerification(reservation, already_confirmed=True)

        now = self.clock.now()
        status = self.expiration.effective_status(reservation, now)
        if status == ReservationStatus.EXPIRED:
            if reservation.status == ReservationStatus.TENTATIVE:
                await self._persist_expiry(reservation_id)
            raise HoldExpired("Reservation hold has expired")
        if status != ReservationStatus.TENTATIVE:
            raise PolicyDenied(
                f"Reservation is {status.value}",
                code="INVALID_RESERVATION_STATUS",
            )

        if reservation.table_id:
            policy = await load_policy(self.db, reservation.restaurant_id)
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
                    "Hold verification failed, slot already booked",
                    reservation_id=str(reservation_id),
                )
                raise Conflict("Table is already reserved for this time slot")

        expires_at = max(
            reservation.expires_at,
            now + timedelta(minutes=settings.payment_hold_extension_minutes),
        )
        result = await self.db.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation_id,
                Reservation.status == ReservationStatus.TENTATIVE,
                Reservation.expires_at > now,
            )
            .values(expires_at=expires_at, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        reservation = await self.load(reservation_id)
        if result.rowcount != 1:
            # Another writer changed the hold after it was read
            if reservation.status == ReservationStatus.CONFIRMED:
                return HoldVerification(reservation, already_confirmed=True)
            if self.expiration.effective_status(reservation, now) == ReservationStatus.EXPIRED:
                raise HoldExpired("Reservation hold has expired")
            raise PolicyDenied(
                f"Reservation is {reservation.status.value}",
                code="INVALID_RESERVATION_STATUS",
            )

        logger.info(
            "Hold verified for payment",
            reservation_id=str(reservation_id),
            expires_at=expires_at.isoformat(),
        )
        return HoldVerification(reservation)

    async def load(self, reservation_id: UUID) -> Reservation:
        """Fetch the persisted row, bypassing any stale identity-map copy"""
        result = await self.db.execute(
            select(Reservation)
            .where(Reservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        reservation = result.scalar_one_or_none()

        if not reservation:
            raise NotFound("Reservation not found", code="RESERVATION_NOT_FOUND")

        return reservation

    def view(self, reservation: Reservation) -> ReservationResponse:
        """Read model of a row with logical expiration applied"""
        response = ReservationResponse.model_validate(reservation)
        status = self.expiration.effective_status(reservation, self.clock.now())
        if status != reservation.status:
            response = response.model_copy(update={"status": status})
        return response

    async def get_hold(self, reservation_id: UUID) -> ReservationResponse:
        reservation = await self.load(reservation_id)
        response = self.view(reservation)

        if response.status == ReservationStatus.EXPIRED and reservation.status == ReservationStatus.TENTATIVE:
            await self._persist_expiry(reservation_id)

        return response

    async def list_holds(
        self,
        restaurant_id: Optional[UUID] = None,
        reservation_date: Optional[date] = None,
        status: Optional[ReservationStatus] = None,
    ) -> List[ReservationResponse]:
        query = select(Reservation)

        if restaurant_id:
            query = query.where(Reservation.restaurant_id == restaurant_id)
        if reservation_date:
            query = query.where(Reservation.reservation_date == reservation_date)
        if status:
            # Stale tentative rows are logically expired
            statuses = {status}
            if status == ReservationStatus.EXPIRED:
                statuses.add(ReservationStatus.TENTATIVE)
            query = query.where(Reservation.status.in_(statuses))

        query = query.order_by(Reservation.reservation_date, Reservation.reservation_time)
        result = await self.db.execute(query)

        views = [self.view(reservation) for reservation in result.scalars().all()]
        if status:
            views = [view for view in views if view.status == status]
        return views

    async def _persist_expiry(self, reservation_id: UUID) -> None:
        """Best effort; the read already reports expired whatever happens here"""
        try:
            await self.expiration.persist_expiry(self.db, reservation_id, self.clock.now())
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                "Failed to persist hold expiry",
                reservation_id=str(reservation_id),
                error=str(e),
            )
