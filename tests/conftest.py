"""Test configuration and fixtures"""

import hashlib
import hmac
import json
import time
from dataclasses import dataclass
from datetime import date, datetime, time as dtime
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.api.deps import get_clock
from app.config import settings
from app.database import Base, get_db
from app.models.restaurant import Restaurant, RestaurantSettings
from app.models.table import DiningTable
from app.models.menu import MenuItem
from app.schemas.reservation import ReservationCreate
from app.services.clock import FrozenClock
from app.services.notifications import Notifier, get_notifier


# Test database URL (use in-memory SQLite for tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 06:00 UTC on the day of the seeded reservations
START = datetime(2025, 6, 1, 6, 0)
RESERVATION_DATE = date(2025, 6, 1)
RESERVATION_TIME = dtime(19, 0)

WEBHOOK_SECRET = "whsec_test_secret"


@dataclass
class SeedData:
    """Ids of the seeded restaurant; plain values so they survive session rollbacks"""
    restaurant_id: UUID
    table_id: UUID
    small_table_id: UUID
    other_table_id: UUID
    burger_id: UUID
    salad_id: UUID
    sold_out_id: UUID
    other_restaurant_id: UUID


class RecordingNotifier(Notifier):
    """Keeps notifications in memory"""

    def __init__(self):
        self.sent: List[tuple] = []
        self.closed = False

    async def notify(self, topic: str, payload: Dict[str, Any]) -> None:
        self.sent.append((topic, payload))

    async def close(self) -> None:
        self.closed = True

    def on(self, topic: str) -> List[Dict[str, Any]]:
        return [payload for sent_topic, payload in self.sent if sent_topic == topic]


@pytest.fixture
async def engine():
    """Create test database"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def seed(session_factory) -> SeedData:
    """A UTC restaurant with three tables and a small menu"""
    async with session_factory() as db:
        restaurant = Restaurant(id=uuid4(), name="Test Bistro", timezone="UTC")
        other = Restaurant(id=uuid4(), name="Other Place", timezone="UTC")
        db.add_all([restaurant, other])
        await db.flush()

        db.add(RestaurantSettings(
            restaurant_id=restaurant.id,
            address="1 Test St",
            policies_json={},
            hold_ttl_minutes=15,
            reservation_duration_minutes=90,
            cancellation_window_hours=12,
            allow_overlapping_holds=True,
        ))

        table = DiningTable(id=uuid4(), restaurant_id=restaurant.id, table_number="T1", capacity=4)
        small = DiningTable(id=uuid4(), restaurant_id=restaurant.id, table_number="T2", capacity=2)
        foreign = DiningTable(id=uuid4(), restaurant_id=other.id, table_number="T1", capacity=8)

        burger = MenuItem(id=uuid4(), restaurant_id=restaurant.id, name="Burger", price_cents=1500, category="Mains")
        salad = MenuItem(id=uuid4(), restaurant_id=restaurant.id, name="Salad", price_cents=900, category="Starters")
        sold_out = MenuItem(
            id=uuid4(),
            restaurant_id=restaurant.id,
            name="Special",
            price_cents=2500,
            category="Mains",
            is_available=False,
        )

        db.add_all([table, small, foreign, burger, salad, sold_out])
        await db.commit()

        return SeedData(
            restaurant_id=restaurant.id,
            table_id=table.id,
            small_table_id=small.id,
            other_table_id=foreign.id,
            burger_id=burger.id,
            salad_id=salad.id,
            sold_out_id=sold_out.id,
            other_restaurant_id=other.id,
        )


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
async def client(session_factory, clock, notifier, monkeypatch):
    """Create test client with overridden database, clock and notifier"""
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


def hold_request(seed: SeedData, **overrides) -> ReservationCreate:
    """Hold request for tonight at 19:00 on the four-top"""
    data = dict(
        restaurant_id=seed.restaurant_id,
        table_id=seed.table_id,
        customer_name="Ada Lovelace",
        customer_phone="+15550001111",
        customer_email="ada@example.com",
        party_size=2,
        reservation_date=RESERVATION_DATE,
        reservation_time=RESERVATION_TIME,
    )
    data.update(overrides)
    return ReservationCreate(**data)


def payment_intent_event(
    payment_reference: str,
    event_type: str = "payment_intent.succeeded",
    amount: int = 2000,
    metadata: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """Stripe-shaped payment intent event"""
    return {
        "id": f"evt_{uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "data": {
            "object": {
                "id": payment_reference,
                "object": "payment_intent",
                "amount": amount,
                "amount_received": amount if event_type == "payment_intent.succeeded" else 0,
                "metadata": metadata or {},
            },
        },
    }


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header for ``payload``"""
    timestamp = timestamp or int(time.time())
    signature = hmac.new(
        secret.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


async def post_event(client: AsyncClient, event: Dict[str, Any], secret: str = WEBHOOK_SECRET):
    payload = json.dumps(event)
    return await client.post(
        "/payments/webhook",
        content=payload,
        headers={
            "Content-Type": "application/json",
            "Stripe-Signature": sign_payload(payload, secret),
        },
    )
