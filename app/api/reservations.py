"""Reservation management API endpoints"""

from datetime import date, time
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import (
    get_cancellation_enforcer,
    get_checkin_handler,
    get_clock,
    get_hold_manager,
)
from app.database import get_db
from app.errors import PolicyDenied
from app.models.reservation import ReservationStatus
from app.schemas.reservation import (
    ReservationCreate,
    ReservationStatusUpdate,
    ReservationResponse,
    ReservationListResponse,
    AvailabilityResponse,
    HoldVerificationRequest,
    HoldVerificationResponse,
)
from app.services.cancellation import CancellationPolicyEnforcer
from app.services.checkin import CheckInHandler
from app.services.clock import Clock
from app.services.conflicts import ConflictDetector
from app.services.holds import ReservationHoldManager
from app.services.policy import load_policy

router = APIRouter()


@router.post("", response_model=ReservationResponse, status_code=201)
async def create_reservation(
    reservation_data: ReservationCreate,
    holds: ReservationHoldManager = Depends(get_hold_manager),
):
    """Place a tentative hold on a table"""
    reservation = await holds.create_hold(reservation_data)
    return holds.view(reservation)


@router.get("", response_model=ReservationListResponse)
async def list_reservations(
    restaurant_id: Optional[UUID] = None,
    reservation_date: Optional[date] = None,
    status: Optional[ReservationStatus] = None,
    holds: ReservationHoldManager = Depends(get_hold_manager),
):
    """List reservations with expired holds reported as expired"""
    items = await holds.list_holds(restaurant_id, reservation_date, status)
    return ReservationListResponse(items=items, total=len(items))


@router.get("/availability", response_model=AvailabilityResponse)
async def check_availability(
    restaurant_id: UUID,
    table_id: UUID,
    reservation_date: date,
    reservation_time: time,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Whether a table is free at a time, counting unexpired holds as taken"""
    policy = await load_policy(db, restaurant_id)
    taken = await ConflictDetector(db).has_conflict(
        restaurant_id,
        table_id,
        reservation_date,
        reservation_time,
        policy.reservation_duration,
        clock.now(),
        include_tentative=True,
    )
    return AvailabilityResponse(
        restaurant_id=restaurant_id,
        table_id=table_id,
        reservation_date=reservation_date,
        reservation_time=reservation_time,
        available=not taken,
    )


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: UUID,
    holds: ReservationHoldManager = Depends(get_hold_manager),
):
    """Get reservation details"""
    return await holds.get_hold(reservation_id)


@router.post("/{reservation_id}/verify", response_model=HoldVerificationResponse)
async def verify_reservation(
    reservation_id: UUID,
    verify_data: Optional[HoldVerificationRequest] = None,
    holds: ReservationHoldManager = Depends(get_hold_manager),
):
    """Confirm a hold is still payable and extend it while the guest pays"""
    verification = await holds.verify_for_payment(
        reservation_id,
        verify_data.restaurant_id if verify_data else None,
    )
    return HoldVerificationResponse(
        reservation=holds.view(verification.reservation),
        already_confirmed=verification.already_confirmed,
    )


@router.patch("/{reservation_id}/status", response_model=ReservationResponse)
async def update_reservation_status(
    reservation_id: UUID,
    status_data: ReservationStatusUpdate,
    enforcer: CancellationPolicyEnforcer = Depends(get_cancellation_enforcer),
):
    """Cancel a reservation within the restaurant's cancellation window"""
    if status_data.status != ReservationStatus.CANCELLED:
        raise PolicyDenied(
            f"Reservations cannot be moved to {status_data.status.value} directly",
            code="INVALID_RESERVATION_STATUS",
        )
    reservation = await enforcer.cancel(reservation_id)
    return enforcer.holds.view(reservation)


@router.post("/{reservation_id}/checkin", response_model=ReservationResponse)
async def check_in(
    reservation_id: UUID,
    handler: CheckInHandler = Depends(get_checkin_handler),
):
    """Mark the guest as arrived and seat them"""
    reservation = await handler.check_in(reservation_id)
    return handler.holds.view(reservation)
