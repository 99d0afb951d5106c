"""Starter zones, methods and rates for a Kenya-based storefront."""

from decimal import Decimal

from shipping_engine.services.methods import ShippingMethod, ShippingMethodType
from shipping_engine.services.rates import RateTier, RateType, ShippingRate
from shipping_engine.services.zones import ShippingZone


def default_zones() -> list[ShippingZone]:
    return [
        ShippingZone(
            id="zone_local", name="Local (Kenya)",
            description="Shipping within Kenya", countries=["KE"],
        ),
        ShippingZone(
            id="zone_east_africa", name="East Africa",
            description="Uganda, Tanzania, Rwanda, Burundi",
            countries=["UG", "TZ", "RW", "BI"],
        ),
        ShippingZone(
            id="zone_africa", name="Rest of Africa",
            description="Other African countries",
            countries=["NG", "GH", "ZA", "EG", "MA"],
        ),
        ShippingZone(
            id="zone_international", name="International",
            description="Rest of the world",
            countries=["US", "GB", "CA", "AU", "DE", "FR", "IT", "ES", "NL"],
        ),
    ]


def default_methods() -> list[ShippingMethod]:
    return [
        ShippingMethod(
            id="method_standard_local", name="Standard Delivery",
            type=ShippingMethodType.STANDARD, carrier="posta_kenya",
            zone_id="zone_local", estimated_days_min=3, estimated_days_max=5,
            description="Regular delivery within Kenya",
            features=["Tracking", "Insurance up to KSH 10,000"],
        ),
        ShippingMethod(
            id="method_express_local", name="Express Delivery",
            type=ShippingMethodType.EXPRESS, carrier="dhl",
            zone_id="zone_local", estimated_days_min=1, estimated_days_max=2,
            description="Fast delivery within Kenya", cutoff_time="15:00",
            features=["Real-time Tracking", "Insurance", "Signature Required"],
        ),
        ShippingMethod(
            id="method_pickup", name="Store Pickup",
            type=ShippingMethodType.PICKUP, carrier="custom",
            zone_id="zone_local", estimated_days_min=0, estimated_days_max=1,
            description="Pick up from our store",
            features=["Free", "Same Day Available"],
        ),
        ShippingMethod(
            id="method_international", name="International Shipping",
            type=ShippingMethodType.INTERNATIONAL, carrier="dhl",
            zone_id="zone_international", estimated_days_min=7, estimated_days_max=14,
            description="Worldwide shipping",
            features=["Tracking", "Customs Clearance", "Insurance"],
        ),
    ]


def _tiers(*rows) -> list[RateTier]:
    return [
        RateTier(
            min_bound=Decimal(str(low)),
            max_bound=Decimal(str(high)) if high is not None else None,
            rate=Decimal(str(rate)),
        )
        for low, high, rate in rows
    ]


def default_rates() -> list[ShippingRate]:
    return [
        ShippingRate(
            id="rate_standard_local", method_id="method_standard_local",
            name="Standard Local Rate", rate_type=RateType.FLAT,
            base_rate=Decimal("500"), free_shipping_threshold=Decimal("10000"),
        ),
        ShippingRate(
            id="rate_express_local", method_id="method_express_local",
            name="Express Local Rate", rate_type=RateType.WEIGHT_BASED,
            base_rate=Decimal("1500"),
            weight_tiers=_tiers((0, 2, 1500), (2, 5, 2500), (5, 10, 4000), (10, None, 6000)),
            fuel_surcharge_pct=Decimal("10"),
        ),
        ShippingRate(
            id="rate_pickup", method_id="method_pickup",
            name="Pickup Rate", rate_type=RateType.FLAT, base_rate=Decimal("0"),
        ),
        ShippingRate(
            id="rate_international", method_id="method_international",
            name="International Rate", rate_type=RateType.WEIGHT_BASED,
            base_rate=Decimal("5000"),
            weight_tiers=_tiers((0, 1, 5000), (1, 3, 8000), (3, 5, 12000), (5, None, 18000)),
            handling_fee=Decimal("500"),
            insurance_fee=Decimal("300"),
            fuel_surcharge_pct=Decimal("15"),
        ),
    ]


def seed_defaults(zones, methods, rates) -> bool:
    """Load the defaults into empty repositories; returns True when seeded."""
    if zones.list_zones() or methods.list_methods() or rates.list_rates():
        return False
    for zone in default_zones():
        zones.save_zone(zone)
    for method in default_methods():
        methods.save_method(method)
    for rate in default_rates():
        rates.save_rate(rate)
    return True
