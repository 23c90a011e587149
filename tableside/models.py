"""
SQLAlchemy Database Models

Relational layout for the dine-in order lifecycle:
- Dining tables with occupancy state
- Menu catalog with availability and price
- Orders with optimistic version column and snapshotted line items
- Settlement payments and the append-only audit log
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    Text,
    Enum,
    Boolean,
    ForeignKey,
    Index,
    JSON,
    text,
)
from sqlalchemy.orm import relationship

from tableside.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# ENUMS
# =============================================================================

class OrderStatus(str, enum.Enum):
    """Order status workflow, strictly forward."""
    NEW = "NEW"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"
    BILL_REQUESTED = "BILL_REQUESTED"
    CLOSED = "CLOSED"


class OrderItemStatus(str, enum.Enum):
    """Kitchen-station status of a single line."""
    PENDING = "PENDING"
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"


class TableStatus(str, enum.Enum):
    """Physical occupancy of a table."""
    VACANT = "VACANT"
    ACTIVE = "ACTIVE"
    READY = "READY"
    DIRTY = "DIRTY"


class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    CARD = "CARD"
    UPI = "UPI"


class AuditAction(str, enum.Enum):
    ORDER_CREATED = "ORDER_CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    ITEM_ADDED = "ITEM_ADDED"
    ITEM_STATUS_CHANGED = "ITEM_STATUS_CHANGED"


# Statuses shown to staff when a listing names none
ACTIVE_ORDER_STATUSES = (
    OrderStatus.NEW,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.SERVED,
)


# =============================================================================
# TABLES
# =============================================================================

class DiningTable(Base):
    """
    Physical seating unit.

    Status is driven by order lifecycle side effects; the only other
    writer is the explicit reset to VACANT.
    """
    __tablename__ = "tables"

    id = Column(String(36), primary_key=True, default=new_id)
    table_code = Column(String(20), nullable=False, unique=True, index=True)
    capacity = Column(Integer, nullable=False, default=4)
    status = Column(
        Enum(TableStatus, name="table_status"),
        default=TableStatus.VACANT,
        nullable=False,
    )
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def __repr__(self):
        return f"<DiningTable {self.table_code} - {self.status.value}>"


# =============================================================================
# MENU
# =============================================================================

class MenuItem(Base):
    """Orderable catalog entry. Read-only from the order engine's side."""
    __tablename__ = "menu_items"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(120), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="Mains", index=True)
    price = Column(Numeric(10, 2), nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<MenuItem {self.name} - {self.price}>"


# =============================================================================
# ORDERS
# =============================================================================

class Order(Base):
    """
    A party's tab at a table.

    ``version`` is the mapper's version counter: SQLAlchemy bumps it on
    every UPDATE and adds ``WHERE version = :seen`` to the statement, so a
    write based on a stale read fails with ``StaleDataError``.
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=new_id)
    table_id = Column(String(36), ForeignKey("tables.id"), nullable=False, index=True)
    customer_name = Column(String(100), nullable=True)
    session_id = Column(String(64), nullable=True, index=True)
    status = Column(
        Enum(OrderStatus, name="order_status"),
        default=OrderStatus.NEW,
        nullable=False,
        index=True,
    )
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    table = relationship("DiningTable", lazy="joined")
    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.created_at",
        lazy="selectin",
    )
    payment = relationship("Payment", back_populates="order", uselist=False, lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        # At most one open order per table
        Index(
            "uq_orders_open_table",
            "table_id",
            unique=True,
            sqlite_where=text("status != 'CLOSED'"),
            postgresql_where=text("status != 'CLOSED'"),
        ),
    )

    @property
    def table_code(self) -> str:
        return self.table.table_code

    def __repr__(self):
        return f"<Order {self.id} - {self.status.value} v{self.version}>"


class OrderItem(Base):
    """
    One priced line of an order.

    ``item_name`` and ``price_snapshot`` are copied from the catalog when the
    line is created and never re-read afterwards.
    """
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(String(36), ForeignKey("menu_items.id"), nullable=False)
    item_name = Column(String(120), nullable=False)
    price_snapshot = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    status = Column(
        Enum(OrderItemStatus, name="order_item_status"),
        default=OrderItemStatus.PENDING,
        nullable=False,
    )
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self):
        return self.price_snapshot * self.quantity

    def __repr__(self):
        return f"<OrderItem {self.quantity}x {self.item_name}>"


class Payment(Base):
    """Cashier settlement record. No gateway is involved."""
    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, unique=True)
    method = Column(Enum(PaymentMethod, name="payment_method"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    actor_id = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    order = relationship("Order", back_populates="payment")

    def __repr__(self):
        return f"<Payment {self.method.value} {self.amount} for {self.order_id}>"


# =============================================================================
# AUDIT
# =============================================================================

class AuditLog(Base):
    """
    Append-only record of every mutating order operation.

    Rows are written inside the same transaction as the change they describe.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(Enum(AuditAction, name="audit_action"), nullable=False, index=True)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    actor_id = Column(String(64), nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<AuditLog {self.action.value} {self.order_id}>"
