"""
Service providers for route dependencies.

Each provider returns a process-wide instance; tests replace them through
``app.dependency_overrides``.
"""
from functools import lru_cache

from fastapi import Depends

from fx_platform.config import get_settings
from fx_platform.core.accounts import AccountStore
from fx_platform.core.conversion import ConversionEngine
from fx_platform.core.exchange import ExchangeVenue
from fx_platform.core.outbox import OutboxPublisher
from fx_platform.core.payments import PaymentService
from fx_platform.database.connection import get_session_factory
from fx_platform.integrations.event_stream import KafkaEventStream
from fx_platform.integrations.exchange_client import ExchangeClient, build_exchange_client
from fx_platform.monitoring.health import HealthCheck
from fx_platform.workers.outbox_publisher import build_outbox_publisher


@lru_cache()
def get_account_store() -> AccountStore:
    # One store per process: it owns the per-account locks
    return AccountStore(get_session_factory())


@lru_cache()
def get_exchange_venue() -> ExchangeVenue:
    return ExchangeVenue.from_settings(get_settings())


@lru_cache()
def get_exchange_client() -> ExchangeClient:
    return build_exchange_client(get_settings(), get_exchange_venue())


def get_conversion_engine(
    account_store: AccountStore = Depends(get_account_store),
    exchange_client: ExchangeClient = Depends(get_exchange_client),
) -> ConversionEngine:
    return ConversionEngine(account_store, exchange_client)


@lru_cache()
def get_payment_service() -> PaymentService:
    return PaymentService(get_session_factory())


@lru_cache()
def get_outbox_publisher() -> OutboxPublisher:
    settings = get_settings()
    return build_outbox_publisher(settings, KafkaEventStream.from_settings(settings))


@lru_cache()
def get_health_check() -> HealthCheck:
    return HealthCheck()
