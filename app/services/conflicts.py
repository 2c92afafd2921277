"""Overlap detection for table time slots"""

from datetime import date, datetime, time, timedelta
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.reservation import Reservation, ReservationStatus, BINDING_STATUSES
from app.services.expiration import ExpirationPolicy


def slots_overlap(first: time, second: time, duration: timedelta, on: date) -> bool:
    """Whether ``[first, first+duration)`` and ``[second, second+duration)`` intersect"""
    first_start = datetime.combine(on, first)
    second_start = datetime.combine(on, second)
    return first_start < second_start + duration and second_start < first_start + duration


class ConflictDetector:
    """
    Finds reservations competing for the same table and time window.

    Confirmed and seated rows always block. Tentative rows block only while
    their hold is unexpired, and only when ``include_tentative`` is set:
    creation of holds is optimistic, confirmation checks binding rows only.
    """

    def __init__(self, db: AsyncSession, expiration: Optional[ExpirationPolicy] = None):
        self.db = db
        self.expiration = expiration or ExpirationPolicy()

    async def find_conflicts(
        self,
        restaurant_id: UUID,
        table_id: UUID,
        reservation_date: date,
        reservation_time: time,
        duration: timedelta,
        now: datetime,
        include_tentative: bool = True,
        exclude_id: Optional[UUID] = None,
    ) -> List[Reservation]:
        statuses = set(BINDING_STATUSES)
        if include_tentative:
            statuses.add(ReservationStatus.TENTATIVE)

        query = select(Reservation).where(
            Reservation.restaurant_id == restaurant_id,
            Reservation.table_id == table_id,
            Reservation.reservation_date == reservation_date,
            Reservation.status.in_(statuses),
        )
        if exclude_id is not None:
            query = query.where(Reservation.id != exclude_id)

        result = await self.db.execute(query.execution_options(populate_existing=True))
        rows = result.scalars().all()

        conflicts = []
        for row in rows:
            if row.status == ReservationStatus.TENTATIVE and self.expiration.is_expired(row, now):
                continue
            if slots_overlap(row.reservation_time, reservation_time, duration, reservation_date):
                conflicts.append(row)
        return conflicts

    async def has_conflict(
        self,
        restaurant_id: UUID,
        table_id: UUID,
        reservation_date: date,
        reservation_time: time,
        duration: timedelta,
        now: datetime,
        include_tentative: bool = True,
        exclude_id: Optional[UUID] = None,
    ) -> bool:
        conflicts = await self.find_conflicts(
            restaurant_id,
            table_id,
            reservation_date,
            reservation_time,
            duration,
            now,
            include_tentative=include_tentative,
            exclude_id=exclude_id,
        )
        return bool(conflicts)
