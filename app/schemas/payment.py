"""Payment event schemas"""

import enum
from typing import Optional
from uuid import UUID
from pydantic import BaseModel

from app.schemas.order import OrderCreate


class PaymentEventOutcome(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PaymentEvent(BaseModel):
    """
    Processor-neutral payment notification.

    Delivered at least once and in no particular order relative to other
    events for the same payment reference.
    """
    payment_reference: str
    outcome: PaymentEventOutcome
    amount_cents: Optional[int] = None
    reservation_id: Optional[UUID] = None
    # Cart contents and linkage, when the checkout carried them
    order: Optional[OrderCreate] = None


class WebhookResponse(BaseModel):
    """Webhook acknowledgement"""
    received: bool = True
    outcome: Optional[str] = None
    order_id: Optional[UUID] = None
    reservation_id: Optional[UUID] = None
