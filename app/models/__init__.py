"""Database models"""

from app.models.restaurant import Restaurant, RestaurantSettings
from app.models.table import DiningTable, TableStatus
from app.models.menu import MenuItem
from app.models.reservation import Reservation, ReservationStatus
from app.models.order import Order, OrderType, PaymentStatus

__all__ = [
    "Restaurant",
    "RestaurantSettings",
    "DiningTable",
    "TableStatus",
    "MenuItem",
    "Reservation",
    "ReservationStatus",
    "Order",
    "OrderType",
    "PaymentStatus",
]
