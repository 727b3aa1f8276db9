from datetime import UTC, datetime

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from meterproxy.billing.cycle import BillingCalendar
from meterproxy.config import Settings
from meterproxy.database import Base

import meterproxy.models  # noqa: F401
from tests.fakes import FakeClock


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 18, 12, 0, tzinfo=UTC))


@pytest.fixture
def calendar(clock):
    return BillingCalendar(start_day=1, clock=clock)


@pytest_asyncio.fixture
async def session_factory():
    """Fresh in-memory SQLite database per test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factory
    await engine.dispose()


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        values = {
            "anthropic_api_key": "test-key",
            "upstream_base_url": "https://upstream.test",
            "database_url": f"sqlite+aiosqlite:///{tmp_path / 'usage.db'}",
            "data_dir": str(tmp_path),
            "tenant_id": "tenant-42",
            "budget_limit": 40.0,
            "billing_cycle_start": 1,
            "reporter_enabled": False,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make
