"""Order model"""

import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Text, Integer, Enum, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class OrderType(str, enum.Enum):
    """How the order will be served"""
    DINE_IN = "dine_in"
    PRE_ORDER = "pre_order"
    TAKEOUT = "takeout"


class PaymentStatus(str, enum.Enum):
    """Payment state; completed is final"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Order(Base):
    """Orders, at most one per payment reference"""
    __tablename__ = "orders"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id"), nullable=False, index=True)
    reservation_id = Column(Uuid, ForeignKey("reservations.id"))
    table_id = Column(Uuid, ForeignKey("tables.id"))

    order_type = Column(
        Enum(OrderType, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        default=OrderType.DINE_IN,
        nullable=False,
    )

    # Customer information
    customer_name = Column(String(255))
    customer_phone = Column(String(20))
    customer_email = Column(String(255))

    # Line items with prices snapshotted from the menu at creation
    # [{"menu_item_id": "...", "name": "...", "quantity": 1, "unit_price_cents": 1500,
    #   "special_instructions": null}, ...]
    items_json = Column(JSON, nullable=False, default=list)

    # Pricing
    subtotal_cents = Column(Integer, nullable=False, default=0)
    tip_cents = Column(Integer, nullable=False, default=0)
    total_cents = Column(Integer, nullable=False, default=0)

    # Payment
    payment_reference = Column(String(255), unique=True)
    payment_status = Column(
        Enum(PaymentStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_amount_cents = Column(Integer)

    notes = Column(Text)

    # Metadata
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="orders")
    reservation = relationship("Reservation", back_populates="orders")
