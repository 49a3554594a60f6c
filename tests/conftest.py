"""
Pytest configuration and fixtures.
"""
import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, List, Set, Tuple

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from fx_platform.config import Settings
from fx_platform.core.accounts import AccountStore
from fx_platform.core.conversion import ConversionEngine
from fx_platform.core.exchange import ExchangeVenue
from fx_platform.core.money import Currency
from fx_platform.database.connection import create_session_factory
from fx_platform.database.models import Base
from fx_platform.integrations.event_stream import DeliveryFailureError
from fx_platform.integrations.exchange_client import LocalExchangeClient


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingEventStream:
    """Event stream keeping sent messages in memory; can be told to fail."""

    def __init__(self) -> None:
        self.sent: List[Tuple[str, str, str]] = []
        self.failing_keys: Set[str] = set()
        self.fail_all = False

    async def send(self, topic: str, key: str, value: str) -> None:
        if self.fail_all or key in self.failing_keys:
            raise DeliveryFailureError(topic, key, "broker unavailable")
        self.sent.append((topic, key, value))

    def close(self) -> None:
        pass


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        app_name="fx-platform-test",
        app_env="test",
        log_level="DEBUG",
        quote_unavailable_rate=0.0,
        execution_failure_rate=0.0,
        exchange_latency_min_seconds=0.0,
        exchange_latency_max_seconds=0.0,
        outbox_publisher_enabled=False,
    )


@pytest_asyncio.fixture
async def db_engine(tmp_path: Any) -> AsyncGenerator[AsyncEngine, Any]:
    """File-backed SQLite database, fresh per test."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'fx_platform_test.db'}",
        poolclass=NullPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def venue(clock: FrozenClock) -> ExchangeVenue:
    """Venue that always quotes, always fills and never sleeps."""
    return ExchangeVenue(
        quote_ttl_seconds=30,
        quote_unavailable_rate=0.0,
        execution_failure_rate=0.0,
        latency_seconds=(0.0, 0.0),
        rng=random.Random(42),
        clock=clock,
    )


@pytest.fixture
def exchange_client(venue: ExchangeVenue) -> LocalExchangeClient:
    return LocalExchangeClient(venue, timeout_seconds=5.0)


@pytest.fixture
def account_store(session_factory: async_sessionmaker[AsyncSession]) -> AccountStore:
    return AccountStore(session_factory)


@pytest.fixture
def conversion_engine(
    account_store: AccountStore, exchange_client: LocalExchangeClient
) -> ConversionEngine:
    return ConversionEngine(account_store, exchange_client)


@pytest_asyncio.fixture
async def funded_account(account_store: AccountStore) -> int:
    """User 1 holding 1000.00 USD."""
    await account_store.create_account(1, {Currency.USD: Decimal("1000.00")})
    return 1


@pytest.fixture
def event_stream() -> RecordingEventStream:
    return RecordingEventStream()
