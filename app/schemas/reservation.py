"""Reservation schemas"""

from datetime import date, datetime, time
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel

from app.models.reservation import ReservationStatus


class ReservationCreate(BaseModel):
    """Create hold request"""
    restaurant_id: UUID
    table_id: Optional[UUID] = None
    customer_name: str
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    party_size: int
    reservation_date: date
    reservation_time: time
    special_requests: Optional[str] = None


class ReservationStatusUpdate(BaseModel):
    """Status change request; only customer/owner cancellation is accepted"""
    status: ReservationStatus


class ReservationResponse(BaseModel):
    """Reservation response, with logical expiration already applied to status"""
    id: UUID
    restaurant_id: UUID
    table_id: Optional[UUID]
    customer_name: str
    customer_phone: Optional[str]
    customer_email: Optional[str]
    party_size: int
    reservation_date: date
    reservation_time: time
    special_requests: Optional[str]
    status: ReservationStatus
    expires_at: Optional[datetime]
    payment_reference: Optional[str]
    customer_arrived: bool
    arrival_time: Optional[datetime]
    has_pre_order: bool
    created_at: datetime
    confirmed_at: Optional[datetime]
    cancelled_at: Optional[datetime]

    class Config:
        from_attributes = True


class HoldVerificationRequest(BaseModel):
    """Pre-payment hold check; restaurant_id guards against cross-restaurant checkouts"""
    restaurant_id: Optional[UUID] = None


class HoldVerificationResponse(BaseModel):
    """Hold ready for payment"""
    reservation: ReservationResponse
    already_confirmed: bool


class ReservationListResponse(BaseModel):
    """Reservation list"""
    items: List[ReservationResponse]
    total: int


class AvailabilityResponse(BaseModel):
    """Availability check response"""
    restaurant_id: UUID
    table_id: UUID
    reservation_date: date
    reservation_time: time
    available: bool


class ReservationSettingsUpdate(BaseModel):
    """Update per-restaurant reservation policy; null restores the default"""
    hold_ttl_minutes: Optional[int] = None
    reservation_duration_minutes: Optional[int] = None
    cancellation_window_hours: Optional[int] = None
    allow_overlapping_holds: Optional[bool] = None


class ReservationSettingsResponse(BaseModel):
    """Effective reservation policy"""
    restaurant_id: UUID
    timezone: str
    hold_ttl_minutes: int
    reservation_duration_minutes: int
    cancellation_window_hours: int
    allow_overlapping_holds: bool

    class Config:
        from_attributes = True
