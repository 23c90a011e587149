import os

# Must be set before tableside modules read their settings
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["LEDGER_EXPORT_ENABLED"] = "false"
os.environ["DEMO_AUTO_PROVISION_TABLES"] = "false"
os.environ["ENV_MODE"] = "development"

from decimal import Decimal
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from tableside.database import Base, get_db
from tableside.main import app
from tableside.models import DiningTable, MenuItem
from tableside.services.orders import OrderLine


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


async def _seed(session_maker) -> SimpleNamespace:
    """Two tables and a small menu: A=500, B=300, plus one unavailable drink."""
    table_01 = DiningTable(table_code="T-01", capacity=4)
    table_04 = DiningTable(table_code="T-04", capacity=2)
    item_a = MenuItem(name="Paneer Tikka", category="Starters", price=Decimal("500.00"))
    item_b = MenuItem(name="Masala Dosa", category="Mains", price=Decimal("300.00"))
    lassi = MenuItem(
        name="Mango Lassi",
        category="Drinks",
        price=Decimal("150.00"),
        is_available=False,
    )

    async with session_maker() as session:
        async with session.begin():
            session.add_all([table_01, table_04, item_a, item_b, lassi])

    return SimpleNamespace(
        table=table_01,
        table_04=table_04,
        item_a=item_a,
        item_b=item_b,
        unavailable=lassi,
    )


@pytest.fixture
async def seeded(session_maker):
    return await _seed(session_maker)


@pytest.fixture
def starter_lines(seeded):
    """A×2 + B×1, totalling 1300."""
    return [
        OrderLine(menu_item_id=seeded.item_a.id, quantity=2),
        OrderLine(menu_item_id=seeded.item_b.id, quantity=1),
    ]


@pytest.fixture
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def file_db_path(tmp_path):
    """SQLite file shared by the async engine and a second, plain writer."""
    return tmp_path / "tableside.db"


@pytest.fixture
async def file_session_maker(file_db_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{file_db_path}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def file_seeded(file_session_maker):
    return await _seed(file_session_maker)
