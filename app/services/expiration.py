"""
Hold expiration.

A tentative hold's timeout is data (``expires_at``), not a scheduled callback.
Every reader decides expiry by comparing ``expires_at`` with the clock; the
sweep below only rewrites rows that readers already treat as expired.
"""

from datetime import datetime
from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.reservation import Reservation, ReservationStatus
from app.services.policy import ReservationPolicy

logger = structlog.get_logger()


class ExpirationPolicy:
    """Computes hold expiry and the status a reader should trust"""

    def expires_at_for(self, policy: ReservationPolicy, now: datetime) -> datetime:
        return now + policy.hold_ttl

    def is_expired(self, reservation: Reservation, now: datetime) -> bool:
        """True when a tentative hold can no longer be relied on"""
        if reservation.status != ReservationStatus.TENTATIVE:
            return False
        # A tentative row without an expiry is malformed and never valid
        if reservation.expires_at is None:
            return True
        return reservation.expires_at <= now

    def effective_status(self, reservation: Reservation, now: datetime) -> ReservationStatus:
        """Persisted status with logical expiration applied"""
        if self.is_expired(reservation, now):
            return ReservationStatus.EXPIRED
        return reservation.status

    async def persist_expiry(self, db: AsyncSession, reservation_id, now: datetime) -> bool:
        """
        Conditionally rewrite one stale tentative row to expired.

        Returns False when the row moved on (confirmed, cancelled) or was not
        yet stale; the write never overrides another writer.
        """
        result = await db.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation_id,
                Reservation.status == ReservationStatus.TENTATIVE,
                Reservation.expires_at <= now,
            )
            .values(status=ReservationStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return result.rowcount == 1


async def sweep_expired_holds(
    db: AsyncSession,
    now: datetime,
    limit: Optional[int] = 500,
) -> List:
    """Advisory sweep: persist ``expired`` for stale tentative holds"""
    query = (
        select(Reservation.id)
        .where(
            Reservation.status == ReservationStatus.TENTATIVE,
            Reservation.expires_at <= now,
        )
        .order_by(Reservation.expires_at)
    )
    if limit:
        query = query.limit(limit)

    result = await db.execute(query)
    candidate_ids = list(result.scalars().all())

    if not candidate_ids:
        return []

    # Re-check status in the write so a concurrent confirmation always wins
    expired_ids = []
    for reservation_id in candidate_ids:
        update_result = await db.execute(
            update(Reservation)
            .where(
                Reservation.id == reservation_id,
                Reservation.status == ReservationStatus.TENTATIVE,
                Reservation.expires_at <= now,
            )
            .values(status=ReservationStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if update_result.rowcount == 1:
            expired_ids.append(reservation_id)

    await db.commit()

    logger.info("Expired holds swept", count=len(expired_ids))
    return expired_ids
