"""Dining table model"""

import enum
import uuid
from datetime import datetime
from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, Enum, Uuid, UniqueConstraint
from sqlalchemy.orm import relationship

from app.database import Base


class TableStatus(str, enum.Enum):
    """Seating status of a table"""
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    UNAVAILABLE = "unavailable"


class DiningTable(Base):
    """
    A physical table. Seating management owns it; reservation flows only
    move its status and bump ``version`` when they do.
    """
    __tablename__ = "tables"
    __table_args__ = (
        UniqueConstraint("restaurant_id", "table_number", name="uq_tables_restaurant_number"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id"), nullable=False, index=True)
    table_number = Column(String(20), nullable=False)
    capacity = Column(Integer, nullable=False)
    status = Column(
        Enum(TableStatus, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        default=TableStatus.AVAILABLE,
        nullable=False,
    )

    # Compare-and-swap token for confirmations targeting this table
    version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="tables")
