"""Conversion between configuration documents (JSON) and repository contents."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from shipping_engine.schemas import (
    ConfigurationDocument,
    MethodIn,
    RateIn,
    RestrictionsIn,
    TierIn,
    ZoneIn,
)
from shipping_engine.services.methods import MethodRestrictions, ShippingMethod
from shipping_engine.services.rates import RateTier, ShippingRate
from shipping_engine.services.zones import ShippingZone

logger = logging.getLogger(__name__)


def zone_from_schema(data: ZoneIn) -> ShippingZone:
    return ShippingZone(
        id=data.id,
        name=data.name,
        description=data.description,
        countries=[c.upper() for c in data.countries],
        regions=list(data.regions),
        postal_codes=list(data.postal_codes),
        is_active=data.is_active,
    )


def method_from_schema(data: MethodIn) -> ShippingMethod:
    r = data.restrictions
    return ShippingMethod(
        id=data.id,
        name=data.name,
        type=data.type,
        carrier=data.carrier,
        zone_id=data.zone_id,
        estimated_days_min=data.estimated_days_min,
        estimated_days_max=data.estimated_days_max,
        description=data.description,
        is_active=data.is_active,
        cutoff_time=data.cutoff_time,
        features=list(data.features),
        restrictions=MethodRestrictions(
            min_weight=r.min_weight,
            max_weight=r.max_weight,
            min_value=r.min_value,
            max_value=r.max_value,
            excluded_products=tuple(r.excluded_products),
        ),
    )


def _tiers(rows: list[TierIn]) -> list[RateTier]:
    return [RateTier(min_bound=t.min_bound, max_bound=t.max_bound, rate=t.rate) for t in rows]


def rate_from_schema(data: RateIn) -> ShippingRate:
    return ShippingRate(
        id=data.id,
        method_id=data.method_id,
        rate_type=data.rate_type,
        name=data.name,
        base_rate=data.base_rate,
        weight_tiers=_tiers(data.weight_tiers),
        price_tiers=_tiers(data.price_tiers),
        per_item_rate=data.per_item_rate,
        free_shipping_threshold=data.free_shipping_threshold,
        handling_fee=data.handling_fee,
        insurance_fee=data.insurance_fee,
        fuel_surcharge_pct=data.fuel_surcharge_pct,
        is_active=data.is_active,
    )


def export_document(zones, methods, rates) -> ConfigurationDocument:
    """Snapshot repository contents as a configuration document."""
    return ConfigurationDocument(
        zones=[
            ZoneIn(
                id=z.id, name=z.name, description=z.description,
                countries=z.countries, regions=z.regions,
                postal_codes=z.postal_codes, is_active=z.is_active,
            )
            for z in zones.list_zones()
        ],
        methods=[
            MethodIn(
                id=m.id, name=m.name, type=m.type, carrier=m.carrier,
                zone_id=m.zone_id,
                estimated_days_min=m.estimated_days_min,
                estimated_days_max=m.estimated_days_max,
                description=m.description, is_active=m.is_active,
                cutoff_time=m.cutoff_time, features=m.features,
                restrictions=RestrictionsIn(
                    min_weight=m.restrictions.min_weight,
                    max_weight=m.restrictions.max_weight,
                    min_value=m.restrictions.min_value,
                    max_value=m.restrictions.max_value,
                    excluded_products=list(m.restrictions.excluded_products),
                ),
            )
            for m in methods.list_methods()
        ],
        rates=[
            RateIn(
                id=r.id, method_id=r.method_id, rate_type=r.rate_type,
                name=r.name, base_rate=r.base_rate,
                weight_tiers=[
                    TierIn(min_bound=t.min_bound, max_bound=t.max_bound, rate=t.rate)
                    for t in r.weight_tiers
                ],
                price_tiers=[
                    TierIn(min_bound=t.min_bound, max_bound=t.max_bound, rate=t.rate)
                    for t in r.price_tiers
                ],
                per_item_rate=r.per_item_rate,
                free_shipping_threshold=r.free_shipping_threshold,
                handling_fee=r.handling_fee,
                insurance_fee=r.insurance_fee,
                fuel_surcharge_pct=r.fuel_surcharge_pct,
                is_active=r.is_active,
            )
            for r in rates.list_rates()
        ],
    )


def apply_document(
    document: ConfigurationDocument,
    zones,
    methods,
    rates,
    replace: bool = True,
) -> dict:
    """Write a document into the repositories.

    Entries are upserted first. With ``replace``, entries the document no
    longer names are pruned afterwards, so a concurrent quote sees either
    the old or the new entry for every id and never an empty store.
    Entries that already exist keep their stored position.
    """
    for z in document.zones:
        zones.save_zone(zone_from_schema(z))
    for m in document.methods:
        methods.save_method(method_from_schema(m))
    for r in document.rates:
        rates.save_rate(rate_from_schema(r))

    if replace:
        keep_rates = {r.id for r in document.rates}
        keep_methods = {m.id for m in document.methods}
        keep_zones = {z.id for z in document.zones}
        for r in rates.list_rates():
            if r.id not in keep_rates:
                rates.delete_rate(r.id)
        for m in methods.list_methods():
            if m.id not in keep_methods:
                methods.delete_method(m.id)
        for z in zones.list_zones():
            if z.id not in keep_zones:
                zones.delete_zone(z.id)

    counts = {
        "zones": len(document.zones),
        "methods": len(document.methods),
        "rates": len(document.rates),
    }
    logger.info("Loaded shipping configuration: %s", counts)
    return counts


def read_document(path: str | Path) -> ConfigurationDocument:
    """Parse a JSON configuration file; raises pydantic.ValidationError on bad data."""
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    return ConfigurationDocument.model_validate(raw)
