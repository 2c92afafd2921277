#!/usr/bin/env python3
"""
Seed script to create a demo restaurant with tables and a menu
"""

import asyncio
import uuid


async def seed_demo_data():
    """Seed demo data for development"""
    from sqlalchemy import select

    from app.database import SessionLocal, init_db
    from app.models.restaurant import Restaurant, RestaurantSettings
    from app.models.table import DiningTable
    from app.models.menu import MenuItem

    # Create tables
    await init_db()

    async with SessionLocal() as db:
        # Check if demo restaurant already exists
        result = await db.execute(
            select(Restaurant).where(Restaurant.name == "Harbor Street Bistro")
        )
        existing = result.scalar_one_or_none()

        if existing:
            print("Demo data already exists. Skipping...")
            return

        print("Creating demo restaurant...")

        restaurant = Restaurant(
            id=uuid.uuid4(),
            name="Harbor Street Bistro",
            timezone="America/New_York",
        )
        db.add(restaurant)
        await db.flush()

        print(f"Created restaurant: {restaurant.name} (ID: {restaurant.id})")

        # Policy columns left NULL fall back to the global defaults
        settings = RestaurantSettings(
            restaurant_id=restaurant.id,
            address="12 Harbor Street",
            policies_json={
                "cancellation": "Please cancel at least 12 hours before your reservation.",
                "deposit": "A card payment holds your table for 15 minutes while you check out.",
            },
            cancellation_window_hours=12,
        )
        db.add(settings)

        print("Creating tables...")

        tables = [
            ("T1", 2), ("T2", 2), ("T3", 4), ("T4", 4),
            ("T5", 4), ("T6", 6), ("T7", 6), ("P1", 10),
        ]
        for table_number, capacity in tables:
            db.add(DiningTable(
                restaurant_id=restaurant.id,
                table_number=table_number,
                capacity=capacity,
            ))

        print("Creating menu items...")

        menu_items = [
            # Starters
            {"name": "Oysters (half dozen)", "description": "Shucked to order with mignonette", "price_cents": 1800, "category": "Starters"},
            {"name": "Clam Chowder", "description": "New England style, oyster crackers", "price_cents": 1100, "category": "Starters"},
            {"name": "Burrata", "description": "Heirloom tomatoes, basil oil, grilled bread", "price_cents": 1400, "category": "Starters"},

            # Mains
            {"name": "Seared Scallops", "description": "Brown butter, cauliflower puree, capers", "price_cents": 3400, "category": "Mains"},
            {"name": "Steak Frites", "description": "Hanger steak, herb butter, hand-cut fries", "price_cents": 3200, "category": "Mains"},
            {"name": "Lobster Roll", "description": "Warm butter-poached lobster on a split-top bun", "price_cents": 2900, "category": "Mains"},
            {"name": "Mushroom Risotto", "description": "Wild mushrooms, parmesan, thyme", "price_cents": 2400, "category": "Mains"},

            # Desserts
            {"name": "Creme Brulee", "description": "Vanilla bean custard", "price_cents": 1000, "category": "Desserts"},
            {"name": "Chocolate Torte", "description": "Flourless, with whipped cream", "price_cents": 1100, "category": "Desserts"},

            # Drinks
            {"name": "Sparkling Water", "description": "750ml bottle", "price_cents": 600, "category": "Drinks"},
            {"name": "Espresso", "description": "Single or double shot", "price_cents": 400, "category": "Drinks"},
        ]

        for item_data in menu_items:
            db.add(MenuItem(
                restaurant_id=restaurant.id,
                name=item_data["name"],
                description=item_data["description"],
                price_cents=item_data["price_cents"],
                category=item_data["category"],
                is_available=True,
            ))

        await db.commit()

        print(f"""
Demo data created successfully!

Restaurant: Harbor Street Bistro
  ID: {restaurant.id}
  Timezone: America/New_York

Tables: {len(tables)} created
Menu: {len(menu_items)} items created
""")


if __name__ == "__main__":
    asyncio.run(seed_demo_data())
