"""Order schemas"""

from datetime import datetime
from typing import Optional, List
from uuid import UUID
from pydantic import BaseModel

from app.models.order import OrderType, PaymentStatus


class OrderItemCreate(BaseModel):
    """Requested line item; price is taken from the menu, never from the client"""
    menu_item_id: UUID
    quantity: int = 1
    special_instructions: Optional[str] = None


class OrderRequest(BaseModel):
    """Order submitted by a client; payment state is never accepted from the caller"""
    restaurant_id: UUID
    reservation_id: Optional[UUID] = None
    table_id: Optional[UUID] = None
    order_type: OrderType = OrderType.DINE_IN
    items: List[OrderItemCreate] = []
    tip_cents: int = 0
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    notes: Optional[str] = None
    payment_reference: Optional[str] = None


class OrderCreate(OrderRequest):
    """Order specification passed to materialization"""
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_amount_cents: Optional[int] = None


class OrderItemResponse(BaseModel):
    """Order item in response"""
    menu_item_id: UUID
    name: str
    quantity: int
    unit_price_cents: int
    special_instructions: Optional[str] = None


class OrderResponse(BaseModel):
    """Order response"""
    id: UUID
    restaurant_id: UUID
    reservation_id: Optional[UUID]
    table_id: Optional[UUID]
    order_type: OrderType
    customer_name: Optional[str]
    items: List[OrderItemResponse]
    subtotal_cents: int
    tip_cents: int
    total_cents: int
    payment_reference: Optional[str]
    payment_status: PaymentStatus
    payment_amount_cents: Optional[int]
    notes: Optional[str]
    created_at: datetime

    @classmethod
    def from_order(cls, order) -> "OrderResponse":
        return cls(
            id=order.id,
            restaurant_id=order.restaurant_id,
            reservation_id=order.reservation_id,
            table_id=order.table_id,
            order_type=order.order_type,
            customer_name=order.customer_name,
            items=order.items_json or [],
            subtotal_cents=order.subtotal_cents,
            tip_cents=order.tip_cents,
            total_cents=order.total_cents,
            payment_reference=order.payment_reference,
            payment_status=order.payment_status,
            payment_amount_cents=order.payment_amount_cents,
            notes=order.notes,
            created_at=order.created_at,
        )
