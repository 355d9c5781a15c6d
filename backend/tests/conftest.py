"""Pytest configuration and fixtures for async testing."""
import os
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID, uuid4

# Point the application at SQLite before any booking_billing module reads settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import booking_billing.models  # noqa: F401  registers every table on Base.metadata
from booking_billing.auth.rbac import AuthContext, Role
from booking_billing.database import Base
from booking_billing.main import app
from booking_billing.models.plan import BillingInterval, Plan, PricingTier
from utils.fakes import FakePaymentGateway, FakeUsageReader

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create a fresh in-memory database and session for each test.

    Yields:
        AsyncSession: Database session for testing
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def usage_reader() -> FakeUsageReader:
    return FakeUsageReader()


@pytest.fixture
def business_id() -> UUID:
    return uuid4()


@pytest.fixture
def owner(business_id: UUID) -> AuthContext:
    """Business owner of the test business."""
    return AuthContext(user_id="owner-1", role=Role.BUSINESS_OWNER.value, business_ids=frozenset({business_id}))


@pytest.fixture
def admin() -> AuthContext:
    """Platform admin owning no business."""
    return AuthContext(user_id="admin-1", role=Role.PLATFORM_ADMIN.value)


async def _create_plan(db_session: AsyncSession, **fields) -> Plan:
    plan = Plan(**fields)
    db_session.add(plan)
    await db_session.commit()
    await db_session.refresh(plan)
    return plan


@pytest_asyncio.fixture(scope="function")
async def basic_plan(db_session: AsyncSession) -> Plan:
    """Monthly 100 TRY plan without a trial."""
    return await _create_plan(
        db_session,
        name="basic",
        display_name="Basic",
        price=Decimal("100.00"),
        currency="TRY",
        billing_interval=BillingInterval.MONTHLY,
        trial_days=0,
        tier=PricingTier.STARTER,
        max_businesses=1,
        max_staff_per_business=5,
        sort_order=1,
    )


@pytest_asyncio.fixture(scope="function")
async def pro_plan(db_session: AsyncSession) -> Plan:
    """Monthly 300 TRY plan without a trial."""
    return await _create_plan(
        db_session,
        name="pro",
        display_name="Pro",
        price=Decimal("300.00"),
        currency="TRY",
        billing_interval=BillingInterval.MONTHLY,
        trial_days=0,
        tier=PricingTier.PROFESSIONAL,
        max_businesses=3,
        max_staff_per_business=10,
        sort_order=2,
    )


@pytest_asyncio.fixture(scope="function")
async def trial_plan(db_session: AsyncSession) -> Plan:
    """Monthly 100 TRY plan with a 14 day trial."""
    return await _create_plan(
        db_session,
        name="trial-basic",
        display_name="Basic with trial",
        price=Decimal("100.00"),
        currency="TRY",
        billing_interval=BillingInterval.MONTHLY,
        trial_days=14,
        tier=PricingTier.STARTER,
        max_businesses=1,
        max_staff_per_business=5,
        sort_order=3,
    )


@pytest_asyncio.fixture(scope="function")
async def async_client(
    db_session: AsyncSession,
    gateway: FakePaymentGateway,
    usage_reader: FakeUsageReader,
    owner: AuthContext,
) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client wired to the test session and fakes.

    Requests are made as the business owner unless a test swaps
    ``app.dependency_overrides[get_current_user]``.

    Yields:
        AsyncClient: Async HTTP client for API testing
    """
    from booking_billing.api.deps import get_current_user, get_db, get_payment_gateway, get_usage_reader

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        """Override database dependency to use test database."""
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = lambda: owner
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_usage_reader] = lambda: usage_reader

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    # Clean up
    app.dependency_overrides.clear()
