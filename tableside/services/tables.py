"""
Table Registry

Physical table identity and occupancy. Occupancy is written by order
lifecycle side effects; the registry itself owns only the administrative
actions: provisioning, retirement and the explicit reset to VACANT.

Table codes are matched loosely so guests can type what is printed on the
table card: "4", "04", "t-4" and "T-04" all name the same table.
"""

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tableside.models import DiningTable, Order, OrderStatus, TableStatus, utcnow
from tableside.services.errors import (
    InvalidInputError,
    TableCodeExistsError,
    TableDeletedError,
    TableNotFoundError,
    TableOccupiedError,
)

logger = logging.getLogger(__name__)

TABLE_PREFIX = "T-"


# =============================================================================
# CODE MATCHING
# =============================================================================

def _split_code(code: str) -> tuple[str, str]:
    raw = str(code).strip().upper()
    base = raw[len(TABLE_PREFIX):] if raw.startswith(TABLE_PREFIX) else raw
    return raw, base


def table_code_candidates(code: str) -> list[str]:
    """
    Every spelling a table code may be stored under, upper-cased.

    >>> table_code_candidates("4")
    ['4', 'T-4', '04', 'T-04']
    """
    raw, base = _split_code(code)
    forms = [raw, base, f"{TABLE_PREFIX}{base}"]
    if base.isdigit():
        padded = base.zfill(2)
        unpadded = base.lstrip("0") or "0"
        forms += [padded, f"{TABLE_PREFIX}{padded}", unpadded, f"{TABLE_PREFIX}{unpadded}"]
    return [form for form in dict.fromkeys(forms) if form and form != TABLE_PREFIX]


def canonical_table_code(code: str) -> str:
    """Storage form for new tables: ``T-`` prefix, numbers padded to two digits."""
    _, base = _split_code(code)
    if not base:
        raise InvalidInputError("Table code is required")
    if base.isdigit():
        base = base.zfill(2)
    return f"{TABLE_PREFIX}{base}"


# =============================================================================
# LOOKUPS (run inside the caller's transaction)
# =============================================================================
# Rows are re-read even when the session already holds them; a reused
# session must not act on a stale deleted_at or status.

async def find_table(
    db: AsyncSession,
    *,
    table_id: Optional[str] = None,
    table_code: Optional[str] = None,
    include_deleted: bool = True,
) -> Optional[DiningTable]:
    """Find a table by id, or by fuzzy code when no id is given."""
    if table_id:
        table = await db.get(DiningTable, table_id, populate_existing=True)
        if table is not None and table.is_deleted and not include_deleted:
            return None
        return table

    if not table_code or not str(table_code).strip():
        return None

    query = (
        select(DiningTable)
        .where(func.upper(DiningTable.table_code).in_(table_code_candidates(table_code)))
        .order_by(DiningTable.deleted_at.is_not(None), DiningTable.table_code)
        .limit(1)
        .execution_options(populate_existing=True)
    )
    if not include_deleted:
        query = query.where(DiningTable.deleted_at.is_(None))

    result = await db.execute(query)
    return result.scalars().first()


async def find_open_order(db: AsyncSession, table_id: str) -> Optional[Order]:
    """The table's non-CLOSED order, if any."""
    result = await db.execute(
        select(Order)
        .where(Order.table_id == table_id, Order.status != OrderStatus.CLOSED)
        .order_by(Order.created_at.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _require_live_table(db: AsyncSession, table_id: str) -> DiningTable:
    table = await db.get(DiningTable, table_id, populate_existing=True)
    if table is None:
        raise TableNotFoundError(f"Table {table_id} not found")
    if table.is_deleted:
        raise TableDeletedError("Table is no longer available")
    return table


async def _refuse_if_occupied(db: AsyncSession, table: DiningTable, action: str) -> None:
    open_order = await find_open_order(db, table.id)
    if open_order is not None:
        raise TableOccupiedError(
            f"Cannot {action} table {table.table_code} while order {open_order.id} is open",
            details={"orderId": open_order.id, "orderStatus": open_order.status.value},
        )


# =============================================================================
# READ OPERATIONS
# =============================================================================

async def resolve_table_code(db: AsyncSession, table_code: str) -> Optional[DiningTable]:
    """Resolve a guest-entered code to a live table."""
    async with db.begin():
        return await find_table(db, table_code=table_code, include_deleted=False)


async def list_tables(
    db: AsyncSession,
    code: Optional[str] = None,
) -> list[tuple[DiningTable, Optional[Order]]]:
    """
    Live tables ordered by code, each paired with its open order.

    Args:
        db: Database session
        code: Optional fuzzy code filter

    Returns:
        List of (table, open order or None)
    """
    async with db.begin():
        query = (
            select(DiningTable)
            .where(DiningTable.deleted_at.is_(None))
            .order_by(DiningTable.table_code)
            .execution_options(populate_existing=True)
        )
        if code:
            query = query.where(
                func.upper(DiningTable.table_code).in_(table_code_candidates(code))
            )
        tables = list((await db.execute(query)).scalars().all())
        if not tables:
            return []

        result = await db.execute(
            select(Order)
            .where(
                Order.table_id.in_([t.id for t in tables]),
                Order.status != OrderStatus.CLOSED,
            )
            .order_by(Order.created_at.desc())
            .execution_options(populate_existing=True)
        )
        open_orders: dict[str, Order] = {}
        for order in result.scalars().all():
            open_orders.setdefault(order.table_id, order)

        return [(table, open_orders.get(table.id)) for table in tables]


# =============================================================================
# ADMINISTRATIVE OPERATIONS
# =============================================================================

async def provision_table(
    db: AsyncSession,
    table_code: str,
    capacity: int,
) -> DiningTable:
    """
    Register a new physical table in VACANT state.

    Raises:
        InvalidInputError: Blank code or capacity below one
        TableCodeExistsError: A table already uses the canonical code
    """
    if capacity is None or int(capacity) < 1:
        raise InvalidInputError("Capacity must be at least 1")
    code = canonical_table_code(table_code)

    try:
        async with db.begin():
            existing = await db.execute(
                select(DiningTable).where(func.upper(DiningTable.table_code) == code)
            )
            if existing.scalars().first() is not None:
                raise TableCodeExistsError(f"Table code {code} already exists")

            table = DiningTable(
                table_code=code,
                capacity=int(capacity),
                status=TableStatus.VACANT,
            )
            db.add(table)
    except IntegrityError as exc:
        raise TableCodeExistsError(f"Table code {code} already exists") from exc

    logger.info(f"Table {code} provisioned (capacity={table.capacity})")
    return table


async def reset_table(db: AsyncSession, table_id: str) -> DiningTable:
    """
    Mark a table VACANT after it has been cleaned.

    This is the only writer of table status outside the order engine.
    """
    async with db.begin():
        table = await _require_live_table(db, table_id)
        await _refuse_if_occupied(db, table, "reset")
        previous = table.status
        table.status = TableStatus.VACANT

    logger.info(f"Table {table.table_code} reset: {previous.value} → VACANT")
    return table


async def retire_table(db: AsyncSession, table_id: str) -> DiningTable:
    """Soft-delete a table that has no open order."""
    async with db.begin():
        table = await _require_live_table(db, table_id)
        await _refuse_if_occupied(db, table, "retire")
        table.deleted_at = utcnow()

    logger.info(f"Table {table.table_code} retired")
    return table
