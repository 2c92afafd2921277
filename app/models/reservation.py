"""Reservation model"""

import enum
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, Integer, Boolean, Date, Time, DateTime, ForeignKey, Text, Enum, Uuid, Index,
)
from sqlalchemy.orm import relationship

from app.database import Base


class ReservationStatus(str, enum.Enum):
    """Reservation lifecycle states"""
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    SEATED = "seated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    NO_SHOW = "no_show"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ReservationStatus.COMPLETED,
    ReservationStatus.CANCELLED,
    ReservationStatus.EXPIRED,
    ReservationStatus.NO_SHOW,
})

# Statuses that occupy a table slot unconditionally
BINDING_STATUSES = frozenset({ReservationStatus.CONFIRMED, ReservationStatus.SEATED})

ALLOWED_TRANSITIONS = {
    ReservationStatus.TENTATIVE: frozenset({
        ReservationStatus.CONFIRMED,
        ReservationStatus.EXPIRED,
        ReservationStatus.CANCELLED,
    }),
    ReservationStatus.CONFIRMED: frozenset({
        ReservationStatus.SEATED,
        ReservationStatus.CANCELLED,
        ReservationStatus.NO_SHOW,
    }),
    ReservationStatus.SEATED: frozenset({
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELLED,
    }),
    ReservationStatus.COMPLETED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
    ReservationStatus.EXPIRED: frozenset(),
    ReservationStatus.NO_SHOW: frozenset(),
}


def can_transition(current: ReservationStatus, target: ReservationStatus) -> bool:
    """Whether the lifecycle allows moving from ``current`` to ``target``"""
    return target in ALLOWED_TRANSITIONS[current]


class Reservation(Base):
    """Table reservations, starting life as a time-boxed tentative hold"""
    __tablename__ = "reservations"
    __table_args__ = (
        Index("ix_reservations_slot", "restaurant_id", "table_id", "reservation_date"),
        Index("ix_reservations_status_expires", "status", "expires_at"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id"), nullable=False)
    table_id = Column(Uuid, ForeignKey("tables.id"))

    # Customer information
    customer_name = Column(String(255), nullable=False)
    customer_phone = Column(String(20))
    customer_email = Column(String(255))

    # Reservation details (date and time are local to the restaurant)
    party_size = Column(Integer, nullable=False)
    reservation_date = Column(Date, nullable=False)
    reservation_time = Column(Time, nullable=False)
    special_requests = Column(Text)

    # Lifecycle
    status = Column(
        Enum(ReservationStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        default=ReservationStatus.TENTATIVE,
        nullable=False,
    )
    expires_at = Column(DateTime)  # UTC; set only while tentative
    payment_reference = Column(String(255))
    confirmed_at = Column(DateTime)
    cancelled_at = Column(DateTime)

    # Arrival
    customer_arrived = Column(Boolean, default=False, nullable=False)
    arrival_time = Column(DateTime)
    has_pre_order = Column(Boolean, default=False, nullable=False)
    kitchen_notified = Column(Boolean, default=False, nullable=False)

    # Metadata
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="reservations")
    orders = relationship("Order", back_populates="reservation")

    def __repr__(self):
        return f"<Reservation {self.id} - {self.status.value}>"
