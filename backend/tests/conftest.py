import asyncio
import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

# Keep pytest output high-signal by disabling outbound Sentry capture in tests.
os.environ["SENTRY_DSN"] = ""

from storefront_coupons.core import metrics
from storefront_coupons.db.base import Base
from storefront_coupons.db.session import get_session
from storefront_coupons.main import app
from storefront_coupons.models.coupon import Coupon, DiscountType


def future(days: int = 30) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def make_coupon(**overrides) -> Coupon:
    """Transient coupon for pure evaluator/calculator tests."""
    fields = {
        "tenant_id": "default",
        "code": "SAVE",
        "discount_type": DiscountType.fixed,
        "value": Decimal("10.00"),
        "min_purchase_amount": None,
        "max_discount_amount": None,
        "usage_limit": None,
        "usage_count": 0,
        "active": True,
        "expires_at": future(),
        "applicable_services": [],
    }
    fields.update(overrides)
    return Coupon(**fields)


def init_engine(url: str = "sqlite+aiosqlite:///:memory:") -> tuple[AsyncEngine, async_sessionmaker]:
    engine = create_async_engine(url, future=True)
    SessionLocal = async_sessionmaker(engine, expire_on_commit=False)

    async def init_models() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(init_models())
    return engine, SessionLocal


@pytest.fixture(scope="module")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def _reset_metrics() -> Generator[None, None, None]:
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def session_factory() -> Generator[async_sessionmaker, None, None]:
    engine, SessionLocal = init_engine()
    yield SessionLocal
    asyncio.run(engine.dispose())


@pytest.fixture
def client(session_factory: async_sessionmaker) -> Generator[TestClient, None, None]:
    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    test_client = TestClient(app)
    yield test_client
    test_client.close()
    app.dependency_overrides.clear()
