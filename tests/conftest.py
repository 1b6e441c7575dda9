# tests/conftest.py
import os

# syncbridge.database builds its engine at import time
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from syncbridge.core.config import Settings
from syncbridge.core.enums import ConflictPolicy, ExchangeRateMode, ExchangeRateSource
from syncbridge.database import Base
from syncbridge import models  # noqa: F401
from syncbridge.integrations.retry import RetryPolicy
from syncbridge.schemas.mapping import MappingData
from syncbridge.services.exchange_rate_service import ExchangeRateService
from syncbridge.services.mapping_registry import MappingRegistry
from tests.mocks.mock_platform import MockPlatform


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        ENVIRONMENT="test",
        SHOPIFY_WEBHOOK_SECRET="shopify_test_secret",
        NAVER_WEBHOOK_SECRET="naver_test_secret",
        DEFAULT_CONFLICT_POLICY="naver_priority",
        DRIFT_CHECK_DELAY_SECONDS=0,
        QUEUE_CONCURRENCY=1,
        QUEUE_REDELIVERY_DELAY=0,
        QUEUE_MAX_DELIVERY_ATTEMPTS=2,
        RETRY_INITIAL_DELAY=0,
        RETRY_MAX_DELAY=0,
    )


@pytest.fixture
async def test_engine(tmp_path):
    """Create and configure the test database engine (function-scoped)."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'syncbridge_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def retry_policy():
    """Three attempts, no waiting"""
    return RetryPolicy(max_attempts=3, initial_delay=0, max_delay=0)


@pytest.fixture
def shopify():
    return MockPlatform("shopify")


@pytest.fixture
def naver():
    return MockPlatform("naver")


@pytest.fixture
def platforms(shopify, naver):
    return {"shopify": shopify, "naver": naver}


@pytest.fixture
async def exchange_rate(db_session, settings):
    """A current auto rate of 1333.33 KRW per USD"""
    service = ExchangeRateService(db_session, settings)
    return await service.record_rate(1333.33, ExchangeRateSource.AUTO)


@pytest.fixture
def make_mapping(db_session, settings):
    """Factory creating an active mapping; defaults to naver priority"""
    async def _make(
        sku="GTR-001",
        shopify_variant_id="1001",
        naver_product_id="2001",
        margin_multiplier=1.15,
        conflict_policy=ConflictPolicy.NAVER_PRIORITY,
        exchange_rate_mode=ExchangeRateMode.AUTO,
        manual_rate=None,
        is_active=True,
    ):
        registry = MappingRegistry(db_session, settings)
        return await registry.upsert(MappingData(
            sku=sku,
            shopify_variant_id=shopify_variant_id,
            naver_product_id=naver_product_id,
            margin_multiplier=margin_multiplier,
            conflict_policy=conflict_policy,
            exchange_rate_mode=exchange_rate_mode,
            manual_rate=manual_rate,
            is_active=is_active,
        ))
    return _make
