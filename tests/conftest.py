"""Shared test fixtures — async DB, client, seed helpers.

Uses SQLite + aiosqlite for fast isolated tests without PostgreSQL.
"""

from __future__ import annotations

import os

# Point settings at SQLite before anything imports leave_service.database
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("ENVIRONMENT", "test")

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from leave_service.common.constants import AccrualMethod, LeaveCategory
from leave_service.common.rate_limit import limiter
from leave_service.database import Base, get_db
from leave_service.main import create_app

# Import ALL model modules so every table is registered on Base.metadata
import leave_service.common.audit  # noqa: F401
import leave_service.leave.models  # noqa: F401
import leave_service.notifications.models  # noqa: F401

from leave_service.leave.balances import BalanceStore
from leave_service.leave.models import LeaveType

# ── SQLite compat: compile PG-specific types ────────────────────────

from sqlalchemy.dialects.postgresql import JSONB, UUID as PG_UUID
from sqlalchemy.ext.compiler import compiles


@compiles(JSONB, "sqlite")
def _jsonb_sqlite(element, compiler, **kw):
    return "TEXT"


@compiles(PG_UUID, "sqlite")
def _uuid_sqlite(element, compiler, **kw):
    return "CHAR(36)"


# ── Test database (SQLite in-memory) ────────────────────────────────

TEST_DATABASE_URL = "sqlite+aiosqlite://"

engine = create_async_engine(
    TEST_DATABASE_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


# pysqlite's own transaction handling breaks SAVEPOINT; emit BEGIN ourselves
@event.listens_for(engine.sync_engine, "connect")
def _disable_driver_transactions(dbapi_conn, connection_record):
    dbapi_conn.isolation_level = None


@event.listens_for(engine.sync_engine, "begin")
def _emit_begin(conn):
    conn.exec_driver_sql("BEGIN")


TestSessionFactory = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False,
)


@pytest.fixture(autouse=True)
async def _setup_db():
    """Create all tables before each test, drop after."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """Reset slowapi's in-memory counters between tests."""
    limiter.reset()
    yield


async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── FastAPI test client ─────────────────────────────────────────────

@pytest.fixture
async def app():
    """Create a fresh app instance with DB dependency overridden."""
    application = create_app()
    application.dependency_overrides[get_db] = _override_get_db
    yield application
    application.dependency_overrides.clear()


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client wired to the test app."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ── Database session (for direct DB operations in tests) ────────────

@pytest.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSessionFactory() as session:
        yield session
        await session.commit()


# ── Seed helpers ────────────────────────────────────────────────────

def actor_headers(actor_id: Optional[uuid.UUID] = None) -> dict[str, str]:
    """Headers the gateway forwards for an authenticated caller."""
    return {"X-Actor-Id": str(actor_id or uuid.uuid4())}


async def seed_leave_type(
    db: AsyncSession,
    *,
    code: str = "AL",
    name: str = "Annual Leave",
    category: LeaveCategory = LeaveCategory.annual,
    accrual_method: AccrualMethod = AccrualMethod.monthly,
    days_per_year: Decimal = Decimal("15"),
    carry_over_days: Optional[Decimal] = Decimal("5"),
    allow_negative_balance: bool = False,
    requires_attachment: bool = False,
    is_paid: bool = True,
    is_active: bool = True,
) -> LeaveType:
    lt = LeaveType(
        id=uuid.uuid4(),
        code=code,
        name=name,
        category=category,
        accrual_method=accrual_method,
        days_per_year=days_per_year,
        carry_over_days=carry_over_days,
        allow_negative_balance=allow_negative_balance,
        requires_attachment=requires_attachment,
        is_paid=is_paid,
        is_active=is_active,
        created_at=datetime.now(timezone.utc),
        updated_at=datetime.now(timezone.utc),
    )
    db.add(lt)
    await db.flush()
    return lt


async def seed_balance(
    db: AsyncSession,
    employee_id: uuid.UUID,
    leave_type_id: uuid.UUID,
    accrued: Decimal = Decimal("10"),
):
    """Open a balance through the ledger so ``accrued`` matches its history."""
    return await BalanceStore.adjust(
        db, employee_id, leave_type_id, accrued, "Opening balance", "system",
    )
