"""
Test configuration and fixtures.
Uses SQLite in-memory for fast tests. Mocks Redis and the PMS database.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_SECRET_KEY", "test-app-secret")
os.environ.setdefault("DASHBOARD_JWT_SECRET", "test-jwt-secret")

import pytest
from unittest.mock import AsyncMock, patch
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.dialects.postgresql import JSONB

from moneybridge.config import get_settings
from moneybridge.database import Base
from moneybridge.models import IncomeSource, PaymentProject, DebtCategory


# Register JSONB as JSON for SQLite compatibility in tests
@compiles(JSONB, "sqlite")
def _compile_jsonb_sqlite(type_, compiler, **kw):
    return "JSON"


@pytest.fixture
async def db():
    """In-memory SQLite database for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Each test sees settings built from the current environment."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings_env(monkeypatch):
    """Set env vars and rebuild settings: settings_env(STRICT_WEBHOOK_AUTH="true")."""
    def _apply(**env):
        for key, value in env.items():
            monkeypatch.setenv(key, value)
        get_settings.cache_clear()
        return get_settings()
    return _apply


@pytest.fixture
def mock_redis():
    """Mock for async Redis — prevents real Redis calls in tests."""
    with patch("moneybridge.utils.redis_client.get_redis") as mock:
        redis_mock = AsyncMock()
        redis_mock.set = AsyncMock(return_value=True)
        redis_mock.get = AsyncMock(return_value=None)
        redis_mock.eval = AsyncMock(return_value=1)
        redis_mock.ping = AsyncMock(return_value=True)
        mock.return_value = redis_mock
        yield redis_mock


@pytest.fixture
async def project(db):
    project = PaymentProject(project_name="Guesthouse Revenue")
    db.add(project)
    await db.commit()
    return project


@pytest.fixture
async def category(db):
    category = DebtCategory(category_name="Room Income")
    db.add(category)
    await db.commit()
    return category


@pytest.fixture
def make_source(db):
    """Factory for committed income sources. Secrets are stored as given (no ENCRYPTION_KEY)."""
    async def _make(**overrides) -> IncomeSource:
        values = {
            "source_name": "LINE Pay",
            "source_key": "linepay",
            "source_type": "linepay",
            "auth_type": "token",
            "api_token": "tok-123",
            "webhook_secret": None,
            "allowed_ips": [],
            "field_mapping": {
                "amount": "$.data.amount",
                "transactionId": "$.data.tx",
                "payerName": "$.data.payer.name",
                "description": "$.data.note",
                "paidAt": "$.data.paid_at",
            },
            "default_currency": "TWD",
            "is_active": True,
            "auto_confirm": False,
        }
        values.update(overrides)
        source = IncomeSource(**values)
        db.add(source)
        await db.commit()
        return source
    return _make
