"""Per-restaurant reservation policy"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.errors import NotFound
from app.models.restaurant import Restaurant


@dataclass(frozen=True)
class ReservationPolicy:
    """Effective reservation settings for one restaurant"""
    restaurant_id: UUID
    timezone: str
    hold_ttl_minutes: int
    reservation_duration_minutes: int
    cancellation_window_hours: int
    allow_overlapping_holds: bool

    @property
    def hold_ttl(self) -> timedelta:
        return timedelta(minutes=self.hold_ttl_minutes)

    @property
    def reservation_duration(self) -> timedelta:
        return timedelta(minutes=self.reservation_duration_minutes)

    @property
    def cancellation_window(self) -> timedelta:
        return timedelta(hours=self.cancellation_window_hours)

    def to_utc(self, local_date: date, local_time: time) -> datetime:
        """Convert a restaurant-local date and time to naive UTC"""
        local = datetime.combine(local_date, local_time, tzinfo=ZoneInfo(self.timezone))
        return local.astimezone(timezone.utc).replace(tzinfo=None)

    def local_date(self, utc_now: datetime) -> date:
        """The restaurant-local calendar date at ``utc_now``"""
        return utc_now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(self.timezone)).date()


def _pick(value, default):
    return default if value is None else value


def policy_for(restaurant: Restaurant) -> ReservationPolicy:
    """Build the effective policy, falling back to global defaults"""
    restaurant_settings = restaurant.settings
    return ReservationPolicy(
        restaurant_id=restaurant.id,
        timezone=restaurant.timezone or "UTC",
        hold_ttl_minutes=_pick(
            restaurant_settings and restaurant_settings.hold_ttl_minutes,
            settings.default_hold_ttl_minutes,
        ),
        reservation_duration_minutes=_pick(
            restaurant_settings and restaurant_settings.reservation_duration_minutes,
            settings.default_reservation_duration_minutes,
        ),
        cancellation_window_hours=_pick(
            restaurant_settings and restaurant_settings.cancellation_window_hours,
            settings.default_cancellation_window_hours,
        ),
        allow_overlapping_holds=_pick(
            restaurant_settings and restaurant_settings.allow_overlapping_holds,
            settings.default_allow_overlapping_holds,
        ),
    )


async def load_policy(db: AsyncSession, restaurant_id: UUID) -> ReservationPolicy:
    """Load the policy for a restaurant, raising NotFound if it does not exist"""
    result = await db.execute(
        select(Restaurant)
        .where(Restaurant.id == restaurant_id)
        .options(selectinload(Restaurant.settings))
        .execution_options(populate_existing=True)
    )
    restaurant = result.scalar_one_or_none()

    if not restaurant:
        raise NotFound("Restaurant not found", code="RESTAURANT_NOT_FOUND")

    return policy_for(restaurant)
