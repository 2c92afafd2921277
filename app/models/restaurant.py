"""Restaurant-related models"""

import uuid
from datetime import datetime
from sqlalchemy import Column, String, Boolean, Integer, DateTime, ForeignKey, JSON, Text, Uuid
from sqlalchemy.orm import relationship

from app.database import Base


class Restaurant(Base):
    """Restaurant owning tables, menu, reservations and orders"""
    __tablename__ = "restaurants"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    timezone = Column(String(50), default="America/New_York", nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    settings = relationship("RestaurantSettings", back_populates="restaurant", uselist=False)
    tables = relationship("DiningTable", back_populates="restaurant")
    menu_items = relationship("MenuItem", back_populates="restaurant")
    reservations = relationship("Reservation", back_populates="restaurant")
    orders = relationship("Order", back_populates="restaurant")


class RestaurantSettings(Base):
    """Restaurant-specific reservation settings"""
    __tablename__ = "restaurant_settings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    restaurant_id = Column(Uuid, ForeignKey("restaurants.id"), unique=True, nullable=False)

    address = Column(Text)
    policies_json = Column(JSON, default=dict)  # Free-form policy text shown to guests

    # Reservation policy; NULL falls back to the global defaults
    hold_ttl_minutes = Column(Integer)
    reservation_duration_minutes = Column(Integer)
    cancellation_window_hours = Column(Integer)
    allow_overlapping_holds = Column(Boolean)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    restaurant = relationship("Restaurant", back_populates="settings")
