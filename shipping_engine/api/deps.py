"""Service wiring for the HTTP layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache

from shipping_engine.config import Settings, get_settings
from shipping_engine.database import create_all, make_engine, make_session_factory
from shipping_engine.services.audit import ConfigurationAuditor
from shipping_engine.services.carriers import CarrierRegistry
from shipping_engine.services.config_io import apply_document, read_document
from shipping_engine.services.defaults import seed_defaults
from shipping_engine.services.quotes import QuoteBuilder
from shipping_engine.services.repositories import (
    InMemoryMethodRepository,
    InMemoryRateRepository,
    InMemoryTrackingRepository,
    InMemoryZoneRepository,
)
from shipping_engine.services.sql_store import (
    SqlMethodRepository,
    SqlRateRepository,
    SqlTrackingRepository,
    SqlZoneRepository,
)
from shipping_engine.services.tracking import ShipmentTracker

logger = logging.getLogger(__name__)


@dataclass
class ShippingServices:
    zones: object
    methods: object
    rates: object
    tracking: object
    carriers: CarrierRegistry
    quotes: QuoteBuilder
    tracker: ShipmentTracker
    auditor: ConfigurationAuditor


def build_services(settings: Settings) -> ShippingServices:
    """Create repositories for the configured backend and the services on top of them."""
    if settings.storage_backend == "sql":
        engine = make_engine(settings.database_url, echo=settings.debug)
        create_all(engine)
        sessions = make_session_factory(engine)
        zones = SqlZoneRepository(sessions)
        methods = SqlMethodRepository(sessions)
        rates = SqlRateRepository(sessions)
        tracking = SqlTrackingRepository(sessions)
    elif settings.storage_backend == "memory":
        zones = InMemoryZoneRepository()
        methods = InMemoryMethodRepository()
        rates = InMemoryRateRepository()
        tracking = InMemoryTrackingRepository()
    else:
        raise ValueError(f"Unknown storage backend: {settings.storage_backend}")

    if settings.config_file:
        apply_document(read_document(settings.config_file), zones, methods, rates)
    elif settings.seed_defaults and seed_defaults(zones, methods, rates):
        logger.info("Seeded default shipping zones, methods and rates")

    carriers = CarrierRegistry()
    return ShippingServices(
        zones=zones,
        methods=methods,
        rates=rates,
        tracking=tracking,
        carriers=carriers,
        quotes=QuoteBuilder(
            zones, methods, rates,
            recommended_max_days=settings.recommended_max_days,
            cutoff_timezone=settings.cutoff_timezone,
        ),
        tracker=ShipmentTracker(tracking, carriers),
        auditor=ConfigurationAuditor(zones, methods, rates),
    )


@lru_cache
def get_services() -> ShippingServices:
    return build_services(get_settings())
