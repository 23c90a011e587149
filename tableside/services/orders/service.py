"""
Order Lifecycle Engine

Creates orders, advances them through the status machine, appends late
items and settles the bill. Every mutating operation is one
``session.begin()`` unit spanning order, items, table and audit rows:
a failure at any step rolls the whole unit back, and nothing is visible
to other readers before commit.

Concurrency control is optimistic only. Callers pass the version they
last saw; a mismatch is rejected with VersionConflictError, never merged.
The ``Order.version`` mapper counter adds a second guard for a writer
that commits between our read and our write.
"""

import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional, Sequence

from fastapi.concurrency import run_in_threadpool
from kombu.exceptions import OperationalError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from tableside.core.config import get_settings
from tableside.models import (
    AuditAction,
    MenuItem,
    Order,
    OrderItem,
    OrderItemStatus,
    OrderStatus,
    Payment,
    PaymentMethod,
    TableStatus,
    utcnow,
)
from tableside.services.audit import record_audit
from tableside.services.catalog import fetch_menu_items
from tableside.services.errors import (
    CreationFailedError,
    InvalidInputError,
    MenuItemNotFoundError,
    MenuItemUnavailableError,
    OrderClosedError,
    OrderError,
    OrderItemNotFoundError,
    OrderNotFoundError,
    TableDeletedError,
    TableNotFoundError,
    TableOccupiedError,
    VersionConflictError,
)
from tableside.services.orders.state_machine import ensure_transition
from tableside.services.tables import find_open_order, find_table
from tableside.tasks import export_closed_order

logger = logging.getLogger(__name__)

# Table status mirrored from an order transition; other transitions leave it alone
TABLE_STATUS_ON_TRANSITION = {
    OrderStatus.READY: TableStatus.READY,
    OrderStatus.CLOSED: TableStatus.DIRTY,
}


@dataclass(frozen=True)
class OrderLine:
    """One requested line: which catalog item and how many."""
    menu_item_id: str
    quantity: int


# =============================================================================
# INPUT VALIDATION
# =============================================================================

def _validate_lines(items: Optional[Sequence[Any]]) -> list[OrderLine]:
    if not items:
        raise InvalidInputError("At least one item is required")

    lines = []
    for item in items:
        menu_item_id = getattr(item, "menu_item_id", None)
        quantity = getattr(item, "quantity", None)
        if (
            not menu_item_id
            or not str(menu_item_id).strip()
            or isinstance(quantity, bool)
            or not isinstance(quantity, int)
            or quantity < 1
        ):
            raise InvalidInputError(
                "Invalid item: each item needs menuItemId and quantity >= 1"
            )
        lines.append(OrderLine(menu_item_id=str(menu_item_id).strip(), quantity=quantity))
    return lines


def _require_version(version: Any) -> int:
    if isinstance(version, bool) or not isinstance(version, int):
        raise InvalidInputError("version is required for optimistic locking")
    return version


def _coerce_enum(enum_cls, value: Any, label: str):
    if isinstance(value, str):
        value = value.strip().upper()
    try:
        return enum_cls(value)
    except ValueError:
        valid = ", ".join(member.value for member in enum_cls)
        raise InvalidInputError(f"Invalid {label}. Must be one of: {valid}")


def parse_order_statuses(raw: Iterable[str]) -> list[OrderStatus]:
    """Turn status names from a query string into OrderStatus members."""
    return [_coerce_enum(OrderStatus, value, "status") for value in raw if str(value).strip()]


# =============================================================================
# HELPERS
# =============================================================================

def calculate_order_total(items: Iterable[OrderItem]) -> Decimal:
    """Sum of ``price_snapshot × quantity``. Derived on every read, never stored."""
    return sum((item.price_snapshot * item.quantity for item in items), Decimal("0"))


async def _load_order(db: AsyncSession, order_id: str) -> Optional[Order]:
    """Fetch an order with items, table and payment, refreshing any cached copy."""
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def _require_order(db: AsyncSession, order_id: str) -> Order:
    order = await _load_order(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    return order


def _check_version(order: Order, expected_version: int) -> None:
    if order.version != expected_version:
        raise VersionConflictError(order.id, expected_version, order.version)


def _snapshot_lines(
    order_id: str,
    lines: list[OrderLine],
    menu_items: dict[str, MenuItem],
) -> list[OrderItem]:
    """Copy the catalog's current name and price into new order lines."""
    return [
        OrderItem(
            order_id=order_id,
            menu_item_id=line.menu_item_id,
            item_name=menu_items[line.menu_item_id].name,
            price_snapshot=menu_items[line.menu_item_id].price,
            quantity=line.quantity,
            status=OrderItemStatus.PENDING,
        )
        for line in lines
    ]


def _apply_transition(order: Order, new_status: OrderStatus) -> OrderStatus:
    """Move the order and its table; returns the previous status."""
    previous = order.status
    ensure_transition(previous, new_status)

    order.status = new_status
    if new_status == OrderStatus.CLOSED:
        order.closed_at = utcnow()

    table_status = TABLE_STATUS_ON_TRANSITION.get(new_status)
    if table_status is not None:
        order.table.status = table_status
    return previous


# =============================================================================
# ORDER CREATION
# =============================================================================

async def create_order(
    db: AsyncSession,
    items: Sequence[Any],
    table_id: Optional[str] = None,
    *,
    table_code: Optional[str] = None,
    customer_name: Optional[str] = None,
    session_id: Optional[str] = None,
    actor_id: Optional[str] = None,
) -> Order:
    """
    Create a new order with snapshotted lines.

    Flow (one atomic unit):
        1. Resolve the table (id, else fuzzy code); it must be live
        2. Refuse if the table already has an open order
        3. Resolve all menu items in one batch; every id must exist
        4. Every item must be available
        5. Insert the order at NEW, version 1
        6. Insert one line per requested item with name/price snapshots
        7. Mark the table ACTIVE
        8. Append an ORDER_CREATED audit entry

    Args:
        db: Database session
        items: Lines with ``menu_item_id`` and ``quantity`` attributes
        table_id: Owning table id
        table_code: Guest-entered code, used when no id is given
        customer_name: Optional guest name
        session_id: Guest party correlator; issued here when absent
        actor_id: Who placed the order, for the audit trail

    Returns:
        The created order with items and table loaded

    Raises:
        InvalidInputError: Missing table reference or malformed lines
        TableNotFoundError / TableDeletedError: Unusable table
        TableOccupiedError: The table already has an open order
        MenuItemNotFoundError: Lists every missing id
        MenuItemUnavailableError: Lists every unavailable item
    """
    has_table_id = bool(table_id and str(table_id).strip())
    if not has_table_id and not (table_code and str(table_code).strip()):
        raise InvalidInputError("tableId or tableCode is required")
    lines = _validate_lines(items)
    session_id = session_id or uuid.uuid4().hex

    try:
        async with db.begin():
            table = await find_table(
                db,
                table_id=table_id if has_table_id else None,
                table_code=None if has_table_id else table_code,
            )
            if table is None:
                raise TableNotFoundError("Table not found")
            if table.is_deleted:
                raise TableDeletedError("Table is no longer available")

            open_order = await find_open_order(db, table.id)
            if open_order is not None:
                raise TableOccupiedError(
                    f"Table {table.table_code} already has an open order",
                    details={"orderId": open_order.id, "orderStatus": open_order.status.value},
                )

            requested_ids = list(dict.fromkeys(line.menu_item_id for line in lines))
            menu_items = await fetch_menu_items(db, requested_ids)

            missing = [item_id for item_id in requested_ids if item_id not in menu_items]
            if missing:
                raise MenuItemNotFoundError(missing)

            unavailable = [menu_items[i] for i in requested_ids if not menu_items[i].is_available]
            if unavailable:
                raise MenuItemUnavailableError(
                    f"Menu items not available: {', '.join(m.name for m in unavailable)}",
                    [m.id for m in unavailable],
                )

            order = Order(
                table_id=table.id,
                customer_name=customer_name,
                session_id=session_id,
                status=OrderStatus.NEW,
            )
            db.add(order)
            await db.flush()

            db.add_all(_snapshot_lines(order.id, lines, menu_items))
            table.status = TableStatus.ACTIVE

            record_audit(
                db,
                AuditAction.ORDER_CREATED,
                order.id,
                actor_id=actor_id,
                tableCode=table.table_code,
                itemCount=len(lines),
            )

            created = await _load_order(db, order.id)
            if created is None:
                raise CreationFailedError("Failed to create order")

    except IntegrityError as exc:
        # Lost the race for the table's single open-order slot
        logger.warning(f"Concurrent order creation rejected for table {table_id or table_code}")
        raise TableOccupiedError("Table already has an open order") from exc
    except OrderError as exc:
        logger.warning(f"Order creation rejected: {exc.code} - {exc.message}")
        raise

    logger.info(
        f"Order {created.id} created for table {created.table_code} "
        f"({len(lines)} lines)"
    )
    return created


# =============================================================================
# ORDER RETRIEVAL
# =============================================================================

async def get_order(db: AsyncSession, order_id: str) -> Optional[Order]:
    """Order with items and table, or None."""
    async with db.begin():
        return await _load_order(db, order_id)


async def list_orders_by_status(
    db: AsyncSession,
    statuses: Iterable[OrderStatus],
    *,
    limit: Optional[int] = None,
    newest_first: bool = False,
) -> list[Order]:
    """
    Orders whose status is in ``statuses`` (kitchen, floor and cashier views).

    Args:
        db: Database session
        statuses: Status subset to include
        limit: Optional cap on the number of orders
        newest_first: Sort by creation time descending instead of ascending
    """
    wanted = list(dict.fromkeys(OrderStatus(s) for s in statuses))
    if not wanted:
        return []

    ordering = Order.created_at.desc() if newest_first else Order.created_at.asc()
    query = (
        select(Order)
        .where(Order.status.in_(wanted))
        .order_by(ordering)
        .execution_options(populate_existing=True)
    )
    if limit is not None:
        query = query.limit(limit)

    async with db.begin():
        result = await db.execute(query)
        return list(result.scalars().all())


async def list_active_orders_for_table(db: AsyncSession, table_id: str) -> list[Order]:
    """Non-CLOSED orders for a table, newest first."""
    async with db.begin():
        result = await db.execute(
            select(Order)
            .where(Order.table_id == table_id, Order.status != OrderStatus.CLOSED)
            .order_by(Order.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())


# =============================================================================
# ORDER STATUS UPDATES
# =============================================================================

async def update_order_status(
    db: AsyncSession,
    order_id: str,
    new_status: OrderStatus,
    expected_version: int,
    actor_id: Optional[str] = None,
    *,
    customer_name: Optional[str] = None,
) -> Order:
    """
    Advance an order one step, guarded by the caller's last-seen version.

    ``customer_name`` may accompany the move to BILL_REQUESTED, when the
    guest gives a name for the bill.

    Raises:
        OrderNotFoundError: Unknown order
        VersionConflictError: Stale version; refetch and retry
        InvalidTransitionError: Not the immediate successor
    """
    new_status = _coerce_enum(OrderStatus, new_status, "status")
    expected_version = _require_version(expected_version)
    if customer_name is not None and new_status != OrderStatus.BILL_REQUESTED:
        raise InvalidInputError("customerName can only be set when requesting the bill")

    try:
        async with db.begin():
            order = await _require_order(db, order_id)
            _check_version(order, expected_version)

            previous = _apply_transition(order, new_status)
            if customer_name and customer_name.strip():
                order.customer_name = customer_name.strip()

            record_audit(
                db,
                AuditAction.STATUS_CHANGED,
                order.id,
                actor_id=actor_id,
                previousStatus=previous.value,
                newStatus=new_status.value,
                tableCode=order.table_code,
            )

            await db.flush()
            updated = await _load_order(db, order.id)

    except StaleDataError as exc:
        logger.warning(f"Order {order_id} changed underneath a status update")
        raise VersionConflictError(order_id, expected_version) from exc
    except OrderError as exc:
        logger.warning(f"Status update rejected for order {order_id}: {exc.code} - {exc.message}")
        raise

    logger.info(
        f"Order {updated.id} {previous.value} → {new_status.value} "
        f"(v{updated.version}, table {updated.table_code})"
    )
    if updated.status == OrderStatus.CLOSED:
        await queue_ledger_export(updated)
    return updated


async def settle_order(
    db: AsyncSession,
    order_id: str,
    method: PaymentMethod,
    expected_version: int,
    *,
    amount: Optional[Decimal] = None,
    actor_id: Optional[str] = None,
) -> Order:
    """
    Record the cashier's settlement and close the order.

    Only a BILL_REQUESTED order can be settled. The amount defaults to the
    bill total and may exceed it (tips, rounding) but never fall short.
    No payment gateway is involved.

    Raises:
        OrderNotFoundError, VersionConflictError, InvalidTransitionError,
        InvalidInputError (unknown method or short amount)
    """
    method = _coerce_enum(PaymentMethod, method, "payment method")
    expected_version = _require_version(expected_version)

    try:
        async with db.begin():
            order = await _require_order(db, order_id)
            _check_version(order, expected_version)
            ensure_transition(order.status, OrderStatus.CLOSED)

            total = calculate_order_total(order.items)
            paid = total if amount is None else Decimal(str(amount))
            if paid < total:
                raise InvalidInputError(
                    f"Amount {paid:.2f} is less than the bill total {total:.2f}",
                    details={"total": float(total), "amount": float(paid)},
                )

            previous = _apply_transition(order, OrderStatus.CLOSED)
            db.add(Payment(order_id=order.id, method=method, amount=paid, actor_id=actor_id))

            record_audit(
                db,
                AuditAction.STATUS_CHANGED,
                order.id,
                actor_id=actor_id,
                previousStatus=previous.value,
                newStatus=OrderStatus.CLOSED.value,
                tableCode=order.table_code,
                paymentMethod=method.value,
                amountPaid=f"{paid:.2f}",
            )

            await db.flush()
            settled = await _load_order(db, order.id)

    except StaleDataError as exc:
        logger.warning(f"Order {order_id} changed underneath settlement")
        raise VersionConflictError(order_id, expected_version) from exc
    except OrderError as exc:
        logger.warning(f"Settlement rejected for order {order_id}: {exc.code} - {exc.message}")
        raise

    logger.info(
        f"Order {settled.id} settled by {method.value} for {paid:.2f} "
        f"(table {settled.table_code} now DIRTY)"
    )
    await queue_ledger_export(settled)
    return settled


# =============================================================================
# ORDER ITEM MANAGEMENT
# =============================================================================

async def add_items_to_order(
    db: AsyncSession,
    order_id: str,
    items: Sequence[Any],
    actor_id: Optional[str] = None,
    *,
    expected_version: Optional[int] = None,
) -> Order:
    """
    Append lines to an open order (waiter upsells, late add-ons).

    Allowed at every status except CLOSED, including after the bill was
    requested. Each appended line takes a fresh price snapshot. The whole
    batch is refused if any item is missing or unavailable.

    Raises:
        OrderNotFoundError: Unknown order
        OrderClosedError: Order is CLOSED
        VersionConflictError: ``expected_version`` given and stale
        MenuItemUnavailableError: Any item missing or unavailable
    """
    lines = _validate_lines(items)
    if expected_version is not None:
        expected_version = _require_version(expected_version)

    try:
        async with db.begin():
            order = await _require_order(db, order_id)
            if order.status == OrderStatus.CLOSED:
                raise OrderClosedError("Cannot add items to a closed order")
            if expected_version is not None:
                _check_version(order, expected_version)

            requested_ids = list(dict.fromkeys(line.menu_item_id for line in lines))
            menu_items = await fetch_menu_items(db, requested_ids, available_only=True)
            if len(menu_items) != len(requested_ids):
                rejected = [item_id for item_id in requested_ids if item_id not in menu_items]
                raise MenuItemUnavailableError("Some menu items are not available", rejected)

            db.add_all(_snapshot_lines(order.id, lines, menu_items))
            # Touching the row makes the mapper issue the versioned UPDATE
            order.updated_at = utcnow()

            record_audit(
                db,
                AuditAction.ITEM_ADDED,
                order.id,
                actor_id=actor_id,
                itemsAdded=len(lines),
                tableCode=order.table_code,
            )

            await db.flush()
            updated = await _load_order(db, order.id)

    except StaleDataError as exc:
        logger.warning(f"Order {order_id} changed underneath an item append")
        raise VersionConflictError(order_id, expected_version) from exc
    except OrderError as exc:
        logger.warning(f"Item append rejected for order {order_id}: {exc.code} - {exc.message}")
        raise

    logger.info(f"{len(lines)} lines added to order {updated.id} (v{updated.version})")
    return updated


async def update_order_item_status(
    db: AsyncSession,
    item_id: str,
    new_status: OrderItemStatus,
    actor_id: Optional[str] = None,
) -> OrderItem:
    """
    Set one line's kitchen-station status.

    Item status is an independent sub-resource: it is not checked against
    the order version and does not bump it, and any item status may follow
    any other. Lines of a CLOSED order are frozen.

    Raises:
        OrderItemNotFoundError: Unknown item
        OrderClosedError: The owning order is CLOSED
    """
    new_status = _coerce_enum(OrderItemStatus, new_status, "item status")

    try:
        async with db.begin():
            item = await db.get(OrderItem, item_id, populate_existing=True)
            if item is None:
                raise OrderItemNotFoundError(item_id)

            order = await _require_order(db, item.order_id)
            if order.status == OrderStatus.CLOSED:
                raise OrderClosedError("Cannot change items of a closed order")

            previous = item.status
            item.status = new_status

            record_audit(
                db,
                AuditAction.ITEM_STATUS_CHANGED,
                order.id,
                actor_id=actor_id,
                itemId=item.id,
                previousStatus=previous.value,
                newStatus=new_status.value,
            )

            await db.flush()
            await db.refresh(item)

    except OrderError as exc:
        logger.warning(f"Item status update rejected for {item_id}: {exc.code} - {exc.message}")
        raise

    logger.info(f"Order item {item.id} {previous.value} → {new_status.value}")
    return item


# =============================================================================
# LEDGER HAND-OFF
# =============================================================================

def build_ledger_payload(order: Order) -> dict[str, Any]:
    """JSON-safe snapshot of a closed order for the ledger task."""
    total = calculate_order_total(order.items)
    payment = order.payment
    return {
        "order_id": order.id,
        "table_code": order.table_code,
        "customer_name": order.customer_name,
        "session_id": order.session_id,
        "items": ", ".join(f"{item.quantity}x {item.item_name}" for item in order.items),
        "item_count": sum(item.quantity for item in order.items),
        "total_amount": float(total),
        "currency": get_settings().currency,
        "payment_method": payment.method.value if payment else None,
        "amount_paid": float(payment.amount) if payment else None,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "closed_at": order.closed_at.isoformat() if order.closed_at else None,
    }


async def queue_ledger_export(order: Order) -> None:
    """
    Queue a committed, closed order for the Excel ledger.

    Runs after commit: an unreachable broker is logged and the closed
    order stands. The broker call runs off the event loop.
    """
    if not get_settings().ledger_export_enabled:
        return

    try:
        await run_in_threadpool(export_closed_order.delay, build_ledger_payload(order))
    except OperationalError as exc:
        logger.error(f"Could not queue ledger export for order {order.id}: {exc}")
