"""Background job tasks"""

from datetime import datetime
from typing import List
import asyncio
import structlog

from sqlalchemy.ext.asyncio import AsyncSession

from app.jobs.celery_app import celery_app
from app.services.clock import utcnow
from app.services.expiration import sweep_expired_holds as sweep_holds
from app.services.notifications import ADMIN_TOPIC, Notifier

logger = structlog.get_logger()


def run_async(coro):
    """Helper to run async functions in sync context"""
    return asyncio.run(coro)


async def sweep_and_notify(db: AsyncSession, notifier: Notifier, now: datetime) -> List[str]:
    """Persist expiry for stale holds and tell staff which ones lapsed"""
    expired_ids = [str(reservation_id) for reservation_id in await sweep_holds(db, now)]

    if expired_ids:
        await notifier.notify(ADMIN_TOPIC, {
            "event": "holds-expired",
            "reservation_ids": expired_ids,
        })

    return expired_ids


@celery_app.task(name="sweep_expired_holds")
def sweep_expired_holds():
    """Mark tentative holds past their expiry as expired"""
    logger.info("Sweeping expired holds")

    async def _sweep():
        from app.database import SessionLocal, engine
        from app.services.notifications import build_notifier

        notifier = build_notifier()
        try:
            async with SessionLocal() as db:
                return await sweep_and_notify(db, notifier, utcnow())
        finally:
            # Each run gets a fresh event loop; pooled connections belong to the old one
            await notifier.close()
            await engine.dispose()

    expired_ids = run_async(_sweep())
    return {"expired": len(expired_ids)}
