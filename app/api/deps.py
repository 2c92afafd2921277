"""Shared request dependencies"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.services.cancellation import CancellationPolicyEnforcer
from app.services.checkin import CheckInHandler
from app.services.clock import Clock
from app.services.conflicts import ConflictDetector
from app.services.expiration import ExpirationPolicy
from app.services.holds import ReservationHoldManager
from app.services.notifications import Notifier, get_notifier
from app.services.orders import OrderMaterializer
from app.services.payments import PaymentConfirmationHandler

_clock = Clock()
_expiration = ExpirationPolicy()


def get_clock() -> Clock:
    """Time source for a request (overridden in tests)"""
    return _clock


def get_expiration() -> ExpirationPolicy:
    return _expiration


def get_hold_manager(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    expiration: ExpirationPolicy = Depends(get_expiration),
) -> ReservationHoldManager:
    return ReservationHoldManager(db, clock, expiration, ConflictDetector(db, expiration))


def get_cancellation_enforcer(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    expiration: ExpirationPolicy = Depends(get_expiration),
) -> CancellationPolicyEnforcer:
    return CancellationPolicyEnforcer(db, clock, expiration)


def get_checkin_handler(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
    expiration: ExpirationPolicy = Depends(get_expiration),
) -> CheckInHandler:
    return CheckInHandler(db, notifier, clock, expiration)


def get_payment_handler(
    db: AsyncSession = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
    expiration: ExpirationPolicy = Depends(get_expiration),
) -> PaymentConfirmationHandler:
    return PaymentConfirmationHandler(db, notifier, clock, expiration)


def get_order_materializer(
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    expiration: ExpirationPolicy = Depends(get_expiration),
) -> OrderMaterializer:
    return OrderMaterializer(db, clock, expiration)
