"""
FastAPI Application Entry Point

Tableside POS - order lifecycle backend for dine-in service.
Kitchen, floor and cashier screens poll these endpoints; every mutation
carries the order version the caller last saw.

Endpoints:
    - POST /orders: Guest order submission
    - GET /orders: Status-filtered order listing (role views)
    - GET /orders/{id}: Single order
    - PATCH /orders/{id}: Advance order status
    - POST /orders/{id}/items: Append items
    - POST /orders/{id}/payment: Cashier settlement
    - PATCH /order-items/{id}: Kitchen-station item status
    - GET/POST /tables, PATCH/DELETE /tables/{id}: Table registry
    - GET /tables/{id}/orders: Open orders at a table
    - GET /menu: Menu catalog
    - GET /health: System health check
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Literal, Optional

import redis
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from tableside.core.config import get_settings, setup_logging
from tableside.database import engine, get_db, init_db
from tableside.models import ACTIVE_ORDER_STATUSES
from tableside.schemas import (
    ErrorResponse,
    HealthResponse,
    MenuItemResponse,
    MenuListResponse,
    OrderCreate,
    OrderEnvelope,
    OrderItemEnvelope,
    OrderItemResponse,
    OrderItemStatusUpdate,
    OrderItemsAppend,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    PaymentCreate,
    TableCreate,
    TableEnvelope,
    TableListResponse,
    TableResponse,
    TableStatusUpdate,
)
from tableside.services import catalog
from tableside.services import orders as order_engine
from tableside.services import tables as table_registry
from tableside.services.errors import OrderError, OrderNotFoundError

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
}


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    await init_db()
    logger.info("Database initialized")

    if settings.demo_provisioning_active:
        logger.warning("Demo mode: unknown table codes will be provisioned on order")
    elif settings.demo_auto_provision_tables:
        logger.warning(f"DEMO_AUTO_PROVISION_TABLES ignored in {settings.env_mode.value} mode")
    if not settings.ledger_export_enabled:
        logger.info("Ledger export disabled")

    yield  # Application runs

    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Dine-in order lifecycle engine: strict status machine, "
        "optimistic versioning and table occupancy side effects."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url=None if settings.is_production else "/docs",
    redoc_url=None if settings.is_production else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


def _ping_redis() -> None:
    r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
    try:
        r.ping()
    finally:
        r.close()


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    db: AsyncSession = Depends(get_db)
) -> HealthResponse:
    """Verify the database and the ledger broker are reachable."""

    db_status = "healthy"
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        db_status = f"unhealthy: {str(e)}"
        logger.error(f"Database health check failed: {e}")

    redis_status = "healthy"
    try:
        await run_in_threadpool(_ping_redis)
    except Exception as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/orders",
    response_model=OrderEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Create Order",
)
async def create_order(
    order_data: OrderCreate,
    db: AsyncSession = Depends(get_db),
    x_actor_id: Optional[str] = Header(None, alias="x-actor-id"),
) -> OrderEnvelope:
    """
    Create a new order from a guest's table.

    ``tableCode`` is resolved to a table when ``tableId`` is absent. In demo
    mode an unknown code provisions the table first, as its own step.
    """
    table_id = order_data.table_id
    if not table_id and order_data.table_code and settings.demo_provisioning_active:
        table = await table_registry.resolve_table_code(db, order_data.table_code)
        if table is None:
            table = await table_registry.provision_table(
                db, order_data.table_code, settings.default_table_capacity
            )
            logger.info(f"Demo mode provisioned table {table.table_code}")
        table_id = table.id

    order = await order_engine.create_order(
        db,
        order_data.items,
        table_id,
        table_code=order_data.table_code,
        customer_name=order_data.customer_name,
        session_id=order_data.session_id,
        actor_id=x_actor_id,
    )
    return OrderEnvelope(order=OrderResponse.from_order(order))


@app.get(
    "/orders",
    response_model=OrderListResponse,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="List Orders By Status",
)
async def list_orders(
    status: Optional[str] = Query(None, description="Comma-separated statuses"),
    limit: Optional[int] = Query(None, ge=1),
    sort: Literal["asc", "desc"] = Query("asc"),
    db: AsyncSession = Depends(get_db),
) -> OrderListResponse:
    """
    Orders in a status subset, oldest first by default.

    Kitchen polls NEW,PREPARING; the floor READY,SERVED; the cashier
    BILL_REQUESTED. Without ``status`` the four active statuses are used.
    """
    statuses = order_engine.parse_order_statuses(status.split(",")) if status else []
    if not statuses:
        statuses = list(ACTIVE_ORDER_STATUSES)

    capped = min(limit or settings.default_order_limit, settings.max_order_limit)
    orders = await order_engine.list_orders_by_status(
        db, statuses, limit=capped, newest_first=(sort == "desc")
    )
    return OrderListResponse(
        total=len(orders),
        orders=[OrderResponse.from_order(order) for order in orders],
    )


@app.get(
    "/orders/{order_id}",
    response_model=OrderEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
)
async def get_order(
    order_id: str,
    db: AsyncSession = Depends(get_db),
) -> OrderEnvelope:
    """Get a specific order by ID."""
    order = await order_engine.get_order(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    return OrderEnvelope(order=OrderResponse.from_order(order))


@app.patch(
    "/orders/{order_id}",
    response_model=OrderEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Advance Order Status",
)
async def update_order_status(
    order_id: str,
    update: OrderStatusUpdate,
    db: AsyncSession = Depends(get_db),
    x_actor_id: Optional[str] = Header(None, alias="x-actor-id"),
) -> OrderEnvelope:
    """
    Move an order to its next status.

    Kitchen: NEW → PREPARING → READY. Floor: READY → SERVED.
    Guest: SERVED → BILL_REQUESTED (optionally with ``customerName``).
    """
    order = await order_engine.update_order_status(
        db,
        order_id,
        update.status,
        update.version,
        x_actor_id,
        customer_name=update.customer_name,
    )
    return OrderEnvelope(order=OrderResponse.from_order(order))


@app.post(
    "/orders/{order_id}/items",
    response_model=OrderEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Append Items",
)
async def add_items(
    order_id: str,
    payload: OrderItemsAppend,
    db: AsyncSession = Depends(get_db),
    x_actor_id: Optional[str] = Header(None, alias="x-actor-id"),
) -> OrderEnvelope:
    """Append lines to an order that is not yet closed."""
    order = await order_engine.add_items_to_order(
        db,
        order_id,
        payload.items,
        x_actor_id,
        expected_version=payload.version,
    )
    return OrderEnvelope(order=OrderResponse.from_order(order))


@app.post(
    "/orders/{order_id}/payment",
    response_model=OrderEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Settle Order",
)
async def settle_order(
    order_id: str,
    payment: PaymentCreate,
    db: AsyncSession = Depends(get_db),
    x_actor_id: Optional[str] = Header(None, alias="x-actor-id"),
) -> OrderEnvelope:
    """Record the cashier's payment method and amount, then close the order."""
    order = await order_engine.settle_order(
        db,
        order_id,
        payment.method,
        payment.version,
        amount=payment.amount,
        actor_id=x_actor_id,
    )
    return OrderEnvelope(order=OrderResponse.from_order(order))


@app.patch(
    "/order-items/{item_id}",
    response_model=OrderItemEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Orders"],
    summary="Set Item Status",
)
async def update_order_item_status(
    item_id: str,
    update: OrderItemStatusUpdate,
    db: AsyncSession = Depends(get_db),
    x_actor_id: Optional[str] = Header(None, alias="x-actor-id"),
) -> OrderItemEnvelope:
    """Kitchen-station tracking of a single line; does not touch the order version."""
    item = await order_engine.update_order_item_status(db, item_id, update.status, x_actor_id)
    return OrderItemEnvelope(item=OrderItemResponse.from_item(item))


# =============================================================================
# TABLE ENDPOINTS
# =============================================================================

@app.get(
    "/tables",
    response_model=TableListResponse,
    tags=["Tables"],
)
async def list_tables(
    code: Optional[str] = Query(None, description="Table code; 4, 04 and T-04 match alike"),
    db: AsyncSession = Depends(get_db),
) -> TableListResponse:
    """Live tables with their open order, if any."""
    rows = await table_registry.list_tables(db, code)
    return TableListResponse(
        tables=[TableResponse.from_table(table, open_order) for table, open_order in rows]
    )


@app.post(
    "/tables",
    response_model=TableEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def provision_table(
    payload: TableCreate,
    db: AsyncSession = Depends(get_db),
) -> TableEnvelope:
    """Register a new table (administrative)."""
    table = await table_registry.provision_table(db, payload.table_code, payload.capacity)
    return TableEnvelope(table=TableResponse.from_table(table))


@app.patch(
    "/tables/{table_id}",
    response_model=TableEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def reset_table(
    table_id: str,
    payload: TableStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> TableEnvelope:
    """Mark a cleaned table VACANT."""
    table = await table_registry.reset_table(db, table_id)
    return TableEnvelope(table=TableResponse.from_table(table))


@app.delete(
    "/tables/{table_id}",
    response_model=TableEnvelope,
    responses=ERROR_RESPONSES,
    tags=["Tables"],
)
async def retire_table(
    table_id: str,
    db: AsyncSession = Depends(get_db),
) -> TableEnvelope:
    """Soft-delete a table."""
    table = await table_registry.retire_table(db, table_id)
    return TableEnvelope(table=TableResponse.from_table(table))


@app.get(
    "/tables/{table_id}/orders",
    response_model=OrderListResponse,
    tags=["Tables"],
)
async def list_table_orders(
    table_id: str,
    db: AsyncSession = Depends(get_db),
) -> OrderListResponse:
    """Open orders at a table, newest first."""
    orders = await order_engine.list_active_orders_for_table(db, table_id)
    return OrderListResponse(
        total=len(orders),
        orders=[OrderResponse.from_order(order) for order in orders],
    )


# =============================================================================
# MENU ENDPOINTS
# =============================================================================

@app.get(
    "/menu",
    response_model=MenuListResponse,
    tags=["Menu"],
)
async def get_menu(
    available_only: bool = Query(False, alias="availableOnly"),
    category: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
) -> MenuListResponse:
    """Menu catalog, grouped by category."""
    items = await catalog.list_menu(db, available_only=available_only, category=category)
    return MenuListResponse(items=[MenuItemResponse.from_menu_item(item) for item in items])


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(OrderError)
async def order_error_handler(request: Request, exc: OrderError) -> JSONResponse:
    """Map engine error codes to HTTP statuses."""
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code} - {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}")

    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query strings are INVALID_INPUT, not 422."""
    errors = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
    message = errors[0]["msg"] if errors else "Invalid request"

    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": message,
            "code": "INVALID_INPUT",
            "details": {"errors": errors},
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
