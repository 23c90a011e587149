"""
Order Lifecycle Engine

Usage:
    from tableside.services.orders import create_order, update_order_status

    order = await create_order(db, lines, table_id)
    order = await update_order_status(db, order.id, OrderStatus.PREPARING, order.version)
"""

from tableside.services.orders.service import (
    OrderLine,
    add_items_to_order,
    build_ledger_payload,
    calculate_order_total,
    create_order,
    get_order,
    list_active_orders_for_table,
    list_orders_by_status,
    parse_order_statuses,
    queue_ledger_export,
    settle_order,
    update_order_item_status,
    update_order_status,
)
from tableside.services.orders.state_machine import (
    STATUS_SEQUENCE,
    STATUS_TRANSITIONS,
    allowed_transitions,
    ensure_transition,
    is_valid_transition,
    next_status,
)

__all__ = [
    # Operations
    "OrderLine",
    "create_order",
    "get_order",
    "list_orders_by_status",
    "list_active_orders_for_table",
    "update_order_status",
    "settle_order",
    "add_items_to_order",
    "update_order_item_status",
    "calculate_order_total",
    "parse_order_statuses",
    "build_ledger_payload",
    "queue_ledger_export",
    # State machine
    "STATUS_SEQUENCE",
    "STATUS_TRANSITIONS",
    "allowed_transitions",
    "ensure_transition",
    "is_valid_transition",
    "next_status",
]
