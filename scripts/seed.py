"""
Seed Script

Creates the dining tables and a starter menu in the configured database.
Run from project root: python scripts/seed.py [--tables 12]

Existing table codes and menu item names are left untouched, so the
script can be re-run safely.
"""

import argparse
import asyncio
import os
import sys
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select

from tableside.database import async_session_maker, engine, init_db
from tableside.models import DiningTable, MenuItem
from tableside.services.tables import canonical_table_code

MENU = [
    ("Starters", "Paneer Tikka", "Char-grilled cottage cheese, mint chutney", "320.00"),
    ("Starters", "Veg Samosa", "Two pieces with tamarind dip", "120.00"),
    ("Starters", "Chicken 65", None, "340.00"),
    ("Mains", "Masala Dosa", "Rice crepe with spiced potato", "180.00"),
    ("Mains", "Butter Chicken", "With one butter naan", "450.00"),
    ("Mains", "Dal Makhani", None, "260.00"),
    ("Mains", "Veg Biryani", "Dum-cooked, served with raita", "300.00"),
    ("Breads", "Butter Naan", None, "60.00"),
    ("Breads", "Garlic Naan", None, "75.00"),
    ("Drinks", "Mango Lassi", None, "140.00"),
    ("Drinks", "Masala Chai", None, "50.00"),
    ("Desserts", "Gulab Jamun", "Two pieces, warm", "110.00"),
]


async def seed(table_count: int, capacity: int) -> None:
    await init_db()

    async with async_session_maker() as db:
        async with db.begin():
            existing_codes = set((await db.execute(select(DiningTable.table_code))).scalars())
            existing_items = set((await db.execute(select(MenuItem.name))).scalars())

            new_tables = [
                DiningTable(table_code=code, capacity=capacity)
                for code in (canonical_table_code(str(n)) for n in range(1, table_count + 1))
                if code not in existing_codes
            ]
            new_items = [
                MenuItem(name=name, category=category, description=description, price=Decimal(price))
                for category, name, description, price in MENU
                if name not in existing_items
            ]
            db.add_all(new_tables + new_items)

    print("=" * 60)
    print("🌱 SEED COMPLETE")
    print("=" * 60)
    print(f"   Tables added: {len(new_tables)} (of {table_count})")
    print(f"   Menu items added: {len(new_items)} (of {len(MENU)})")
    print("=" * 60)

    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed tables and menu")
    parser.add_argument("--tables", type=int, default=12, help="Number of tables")
    parser.add_argument("--capacity", type=int, default=4, help="Seats per table")
    args = parser.parse_args()

    asyncio.run(seed(args.tables, args.capacity))
