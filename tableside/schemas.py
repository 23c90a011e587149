"""
Pydantic Schemas for Request/Response Validation

JSON bodies use camelCase on the wire (``tableId``, ``menuItemId``) while
Python code keeps snake_case; both spellings are accepted on input.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from tableside.models import DiningTable, MenuItem, Order, OrderItem, Payment
from tableside.services.orders import calculate_order_total


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderItemCreate(CamelModel):
    """Single requested line."""
    menu_item_id: str = Field(..., min_length=1, examples=["b3c1f0b2-..."])
    quantity: int = Field(..., ge=1, examples=[2])


class OrderCreate(CamelModel):
    """Request schema for creating a new order."""
    table_id: Optional[str] = Field(None, examples=["5d0c7a8e-..."])
    table_code: Optional[str] = Field(None, max_length=20, examples=["T-04", "4"])
    items: List[OrderItemCreate] = Field(default_factory=list)
    customer_name: Optional[str] = Field(None, max_length=100, examples=["Asha"])
    session_id: Optional[str] = Field(None, max_length=64)

    @field_validator("table_code", mode="before")
    @classmethod
    def stringify_table_code(cls, v: Any) -> Optional[str]:
        # QR payloads often carry the bare table number
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class OrderStatusUpdate(CamelModel):
    """PATCH /orders/{id} body."""
    status: str = Field(..., examples=["PREPARING"])
    version: int = Field(..., examples=[1])
    customer_name: Optional[str] = Field(None, max_length=100)


class OrderItemsAppend(CamelModel):
    """POST /orders/{id}/items body."""
    items: List[OrderItemCreate] = Field(default_factory=list)
    version: Optional[int] = None


class PaymentCreate(CamelModel):
    """POST /orders/{id}/payment body."""
    method: str = Field(..., examples=["CASH", "CARD", "UPI"])
    version: int
    amount: Optional[Decimal] = Field(None, gt=0, examples=[1300])


class OrderItemStatusUpdate(CamelModel):
    status: str = Field(..., examples=["READY"])


class TableCreate(CamelModel):
    table_code: str = Field(..., min_length=1, max_length=20, examples=["T-12"])
    capacity: int = Field(..., ge=1, le=50, examples=[4])


class TableStatusUpdate(CamelModel):
    """The only status staff may set directly is VACANT."""
    status: Literal["VACANT"]


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderItemResponse(CamelModel):
    id: str
    menu_item_id: str
    item_name: str
    price: float
    quantity: int
    line_total: float
    status: str

    @classmethod
    def from_item(cls, item: OrderItem) -> "OrderItemResponse":
        return cls(
            id=item.id,
            menu_item_id=item.menu_item_id,
            item_name=item.item_name,
            price=float(item.price_snapshot),
            quantity=item.quantity,
            line_total=float(item.line_total),
            status=item.status.value,
        )


class PaymentResponse(CamelModel):
    method: str
    amount: float
    created_at: datetime

    @classmethod
    def from_payment(cls, payment: Payment) -> "PaymentResponse":
        return cls(
            method=payment.method.value,
            amount=float(payment.amount),
            created_at=payment.created_at,
        )


class OrderResponse(CamelModel):
    """Order as every role-scoped view sees it."""
    id: str
    table_id: str
    table_code: str
    status: str
    version: int
    customer_name: Optional[str] = None
    session_id: Optional[str] = None
    items: List[OrderItemResponse]
    total: float
    created_at: datetime
    closed_at: Optional[datetime] = None
    payment: Optional[PaymentResponse] = None

    @classmethod
    def from_order(cls, order: Order) -> "OrderResponse":
        return cls(
            id=order.id,
            table_id=order.table_id,
            table_code=order.table_code,
            status=order.status.value,
            version=order.version,
            customer_name=order.customer_name,
            session_id=order.session_id,
            items=[OrderItemResponse.from_item(item) for item in order.items],
            total=float(calculate_order_total(order.items)),
            created_at=order.created_at,
            closed_at=order.closed_at,
            payment=PaymentResponse.from_payment(order.payment) if order.payment else None,
        )


class OrderEnvelope(CamelModel):
    success: bool = True
    order: OrderResponse


class OrderListResponse(CamelModel):
    success: bool = True
    total: int
    orders: List[OrderResponse]


class OrderItemEnvelope(CamelModel):
    success: bool = True
    item: OrderItemResponse


class ActiveOrderSummary(CamelModel):
    id: str
    status: str
    version: int
    customer_name: Optional[str] = None
    session_id: Optional[str] = None


class TableResponse(CamelModel):
    id: str
    table_code: str
    capacity: int
    status: str
    active_order: Optional[ActiveOrderSummary] = None

    @classmethod
    def from_table(cls, table: DiningTable, open_order: Optional[Order] = None) -> "TableResponse":
        summary = None
        if open_order is not None:
            summary = ActiveOrderSummary(
                id=open_order.id,
                status=open_order.status.value,
                version=open_order.version,
                customer_name=open_order.customer_name,
                session_id=open_order.session_id,
            )
        return cls(
            id=table.id,
            table_code=table.table_code,
            capacity=table.capacity,
            status=table.status.value,
            active_order=summary,
        )


class TableEnvelope(CamelModel):
    success: bool = True
    table: TableResponse


class TableListResponse(CamelModel):
    success: bool = True
    tables: List[TableResponse]


class MenuItemResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    category: str
    price: float
    is_available: bool

    @classmethod
    def from_menu_item(cls, item: MenuItem) -> "MenuItemResponse":
        return cls(
            id=item.id,
            name=item.name,
            description=item.description,
            category=item.category,
            price=float(item.price),
            is_available=item.is_available,
        )


class MenuListResponse(CamelModel):
    success: bool = True
    items: List[MenuItemResponse]


class ErrorResponse(CamelModel):
    """Standard error response."""
    success: bool = False
    error: str
    code: Optional[str] = None
    details: Optional[dict[str, Any]] = None


class HealthResponse(CamelModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    timestamp: datetime
