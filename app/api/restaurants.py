"""Restaurant reservation settings API endpoints"""

from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.database import get_db
from app.errors import NotFound, ValidationFailed
from app.models.restaurant import Restaurant, RestaurantSettings
from app.schemas.reservation import ReservationSettingsUpdate, ReservationSettingsResponse
from app.services.policy import policy_for

router = APIRouter()


async def _get_restaurant(db: AsyncSession, restaurant_id: UUID) -> Restaurant:
    result = await db.execute(
        select(Restaurant)
        .where(Restaurant.id == restaurant_id)
        .options(selectinload(Restaurant.settings))
        .execution_options(populate_existing=True)
    )
    restaurant = result.scalar_one_or_none()

    if not restaurant:
        raise NotFound("Restaurant not found", code="RESTAURANT_NOT_FOUND")

    return restaurant


@router.get("/{restaurant_id}/reservation-settings", response_model=ReservationSettingsResponse)
async def get_reservation_settings(
    restaurant_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Effective reservation policy, with defaults filled in"""
    restaurant = await _get_restaurant(db, restaurant_id)
    return policy_for(restaurant)


@router.put("/{restaurant_id}/reservation-settings", response_model=ReservationSettingsResponse)
async def update_reservation_settings(
    restaurant_id: UUID,
    settings_data: ReservationSettingsUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Update reservation policy"""
    restaurant = await _get_restaurant(db, restaurant_id)

    updates = settings_data.model_dump(exclude_unset=True)
    for field in ("hold_ttl_minutes", "reservation_duration_minutes", "cancellation_window_hours"):
        value = updates.get(field)
        if value is not None and value <= 0:
            raise ValidationFailed(f"{field} must be greater than zero", code="INVALID_SETTINGS")

    settings = restaurant.settings
    if not settings:
        settings = RestaurantSettings(restaurant_id=restaurant.id, policies_json={})
        db.add(settings)

    for field, value in updates.items():
        setattr(settings, field, value)

    await db.commit()

    restaurant = await _get_restaurant(db, restaurant_id)
    return policy_for(restaurant)
