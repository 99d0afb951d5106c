"""Test fixtures."""

from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from shipping_engine.api.deps import build_services, get_services
from shipping_engine.config import Settings
from shipping_engine.main import app
from shipping_engine.services.carriers import CarrierRegistry
from shipping_engine.services.defaults import seed_defaults
from shipping_engine.services.quotes import QuoteBuilder
from shipping_engine.services.repositories import (
    InMemoryMethodRepository,
    InMemoryRateRepository,
    InMemoryTrackingRepository,
    InMemoryZoneRepository,
)
from shipping_engine.services.tracking import ShipmentTracker

# Monday morning, before the 15:00 express cutoff
FIXED_NOW = datetime(2024, 3, 4, 10, 0, tzinfo=timezone.utc)


class Clock:
    """Settable clock for deterministic timestamps."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def repos():
    zones, methods, rates = (
        InMemoryZoneRepository(), InMemoryMethodRepository(), InMemoryRateRepository()
    )
    seed_defaults(zones, methods, rates)
    return zones, methods, rates


@pytest.fixture
def quotes(repos, clock):
    return QuoteBuilder(*repos, clock=clock)


@pytest.fixture
def tracker(clock):
    return ShipmentTracker(InMemoryTrackingRepository(), CarrierRegistry(), clock=clock)


@pytest.fixture
def services():
    return build_services(Settings(storage_backend="memory", seed_defaults=True, config_file=""))


@pytest_asyncio.fixture
async def client(services) -> AsyncGenerator[AsyncClient, None]:
    app.dependency_overrides[get_services] = lambda: services
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
