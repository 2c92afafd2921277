"""Pydantic schemas for request/response validation"""

from app.schemas.order import (
    OrderCreate,
    OrderRequest,
    OrderItemCreate,
    OrderItemResponse,
    OrderResponse,
)
from app.schemas.reservation import (
    ReservationCreate,
    ReservationStatusUpdate,
    ReservationResponse,
    ReservationListResponse,
    HoldVerificationRequest,
    HoldVerificationResponse,
    AvailabilityResponse,
    ReservationSettingsUpdate,
    ReservationSettingsResponse,
)
from app.schemas.payment import (
    PaymentEvent,
    PaymentEventOutcome,
    WebhookResponse,
)

__all__ = [
    "OrderCreate",
    "OrderRequest",
    "OrderItemCreate",
    "OrderItemResponse",
    "OrderResponse",
    "ReservationCreate",
    "ReservationStatusUpdate",
    "ReservationResponse",
    "ReservationListResponse",
    "HoldVerificationRequest",
    "HoldVerificationResponse",
    "AvailabilityResponse",
    "ReservationSettingsUpdate",
    "ReservationSettingsResponse",
    "PaymentEvent",
    "PaymentEventOutcome",
    "WebhookResponse",
]
