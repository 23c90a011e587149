"""
Menu Catalog

Read-only lookups of orderable items. The order engine resolves every
referenced item in a single batch and copies name and price from here
into its line snapshots.
"""

from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tableside.models import MenuItem


async def fetch_menu_items(
    db: AsyncSession,
    menu_item_ids: Iterable[str],
    *,
    available_only: bool = False,
) -> dict[str, MenuItem]:
    """
    Resolve menu items by id in one query.

    Soft-deleted items are never returned; with ``available_only`` items
    whose availability flag is off are left out as well. Rows already in
    the session are refreshed, so snapshots always take the current price.

    Returns:
        Mapping of id to MenuItem for every id that resolved
    """
    ids = list(dict.fromkeys(menu_item_ids))
    if not ids:
        return {}

    query = select(MenuItem).where(
        MenuItem.id.in_(ids),
        MenuItem.deleted_at.is_(None),
    ).execution_options(populate_existing=True)
    if available_only:
        query = query.where(MenuItem.is_available.is_(True))

    result = await db.execute(query)
    return {item.id: item for item in result.scalars().all()}


async def list_menu(
    db: AsyncSession,
    *,
    available_only: bool = False,
    category: Optional[str] = None,
) -> list[MenuItem]:
    """Guest-facing menu, grouped by category then name."""
    async with db.begin():
        query = (
            select(MenuItem)
            .where(MenuItem.deleted_at.is_(None))
            .order_by(MenuItem.category, MenuItem.name)
            .execution_options(populate_existing=True)
        )
        if available_only:
            query = query.where(MenuItem.is_available.is_(True))
        if category:
            query = query.where(MenuItem.category == category)

        result = await db.execute(query)
        return list(result.scalars().all())
