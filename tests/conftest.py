"""
Test Suite Configuration
"""
from copy import deepcopy
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from inventory_sync.config.settings import IngestionSettings, SecuritySettings, Settings
from inventory_sync.database.connection import create_engine_for_url, create_session_factory, create_tables

TEST_DATABASE_URL = "sqlite+aiosqlite://"
WEBHOOK_SECRET = "test-secret"


def build_settings(**ingestion) -> Settings:
    """Settings for tests; ``ingestion`` overrides IngestionSettings fields."""
    options = {
        "progress_throttle_ms": 0,
        "progress_reset_delay_seconds": 60,
        **ingestion,
    }
    return Settings(
        APP_ENV="testing",
        security=SecuritySettings(WEBHOOK_SECRET=WEBHOOK_SECRET),
        ingestion=IngestionSettings(**options),
    )


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings"""
    return build_settings()


@pytest.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database with all tables, one per test"""
    engine = create_engine_for_url(TEST_DATABASE_URL)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(test_engine)


@pytest.fixture
async def client(session_factory, test_settings) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with the test database and settings injected"""
    from inventory_sync.main import app
    from inventory_sync.serving.api.dependencies import get_app_settings, get_db_factory

    app.dependency_overrides[get_db_factory] = lambda: session_factory
    app.dependency_overrides[get_app_settings] = lambda: test_settings

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict:
    return {"X-Webhook-Secret": WEBHOOK_SECRET}


def month_map(year: int, values) -> dict:
    """{year: {month: value}} for consecutive months starting in January"""
    return {str(year): {str(month): value for month, value in enumerate(values, start=1)}}


@pytest.fixture
def valid_variant() -> dict:
    """Fully valid variant with twelve months of history and an external forecast"""
    return {
        "id": "40001",
        "sku": "SKU-001",
        "title": "Wool Sock - Grey / M",
        "barcode": "0123456789012",
        "brand": "Acme",
        "product_type": "socks",
        "price": 25.0,
        "cost_price": 10.0,
        "in_stock": 120,
        "purchase_orders_qty": 40,
        "last_7_days_sales": 8,
        "last_30_days_sales": 30,
        "last_90_days_sales": 95,
        "last_180_days_sales": 190,
        "last_365_days_sales": 380,
        "total_sales": 900,
        "orders_by_month": month_map(2025, [30, 28, 35, 32, 40, 38, 30, 29, 33, 36, 41, 45]),
        "forecast_by_period": month_map(2025, [28, 30, 33, 34, 37, 40, 31, 30, 31, 35, 40, 47]),
        "current_forecast": 42.0,
        "replenishment": 10,
        "to_order": 0,
        "minimum_stock": 20,
        "lead_time": 14,
        "oos": 3,
        "oos_last_60_days": 0,
        "forecasted_lost_revenue": 150.0,
    }


@pytest.fixture
def make_variant(valid_variant):
    """Factory for variants derived from the valid one"""
    def _make(index: int = 0, **overrides) -> dict:
        variant = deepcopy(valid_variant)
        variant["id"] = str(40001 + index)
        variant["sku"] = f"SKU-{index + 1:03d}"
        variant.update(overrides)
        return variant
    return _make
