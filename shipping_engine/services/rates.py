"""Shipping rate rules and the cost pipeline.

Cost is computed as an ordered pipeline:

    free-shipping override (order value at threshold: cost 0, fees waived)
      -> base (flat / tier / per item)
      -> + handling fee + insurance fee
      -> x (1 + fuel surcharge %)
      -> floor at 0
      -> round to 2 places
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from shipping_engine.exceptions import ConfigurationError
from shipping_engine.services.clock import utcnow

ZERO = Decimal("0")
CENT = Decimal("0.01")


class RateType(str, Enum):
    FLAT = "flat"
    WEIGHT_BASED = "weight_based"
    PRICE_BASED = "price_based"
    ITEM_BASED = "item_based"


@dataclass(frozen=True)
class RateTier:
    """Price for magnitudes in [min_bound, max_bound); open-ended when max_bound is None."""
    min_bound: Decimal
    rate: Decimal
    max_bound: Optional[Decimal] = None

    def contains(self, value: Decimal) -> bool:
        if value < self.min_bound:
            return False
        return self.max_bound is None or value < self.max_bound


@dataclass
class ShippingRate:
    """Pricing rule attached to one shipping method."""
    id: str
    method_id: str
    rate_type: RateType
    name: str = ""
    base_rate: Decimal = ZERO
    weight_tiers: list[RateTier] = field(default_factory=list)
    price_tiers: list[RateTier] = field(default_factory=list)
    per_item_rate: Optional[Decimal] = None
    free_shipping_threshold: Optional[Decimal] = None
    handling_fee: Decimal = ZERO
    insurance_fee: Decimal = ZERO
    fuel_surcharge_pct: Decimal = ZERO
    is_active: bool = True
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class RateContext:
    """Shipment magnitudes a rate is evaluated against."""
    weight: Decimal
    order_value: Decimal
    item_count: int

    def __post_init__(self):
        if self.weight < 0:
            raise ValueError(f"Weight must be >= 0, got {self.weight}")
        if self.order_value < 0:
            raise ValueError(f"Order value must be >= 0, got {self.order_value}")
        if self.item_count < 0:
            raise ValueError(f"Item count must be >= 0, got {self.item_count}")


@dataclass(frozen=True)
class RateBreakdown:
    """Each stage of the cost pipeline, for display and auditing."""
    base: Decimal
    handling_fee: Decimal
    insurance_fee: Decimal
    fuel_surcharge: Decimal
    total: Decimal
    is_free_shipping: bool


def validate_tiers(tiers: list[RateTier], rate_id: str = "", method_id: str = "") -> list[RateTier]:
    """Return tiers sorted by min bound, raising ConfigurationError on gaps or overlaps."""
    if not tiers:
        raise ConfigurationError(
            f"Rate {rate_id} has no tiers", method_id=method_id, rate_id=rate_id
        )
    ordered = sorted(tiers, key=lambda t: t.min_bound)
    for i, tier in enumerate(ordered):
        last = i == len(ordered) - 1
        if tier.max_bound is None:
            if not last:
                raise ConfigurationError(
                    f"Rate {rate_id}: open-ended tier at {tier.min_bound} is not the last tier",
                    method_id=method_id, rate_id=rate_id,
                )
            continue
        if tier.max_bound <= tier.min_bound:
            raise ConfigurationError(
                f"Rate {rate_id}: tier max {tier.max_bound} must exceed min {tier.min_bound}",
                method_id=method_id, rate_id=rate_id,
            )
        if not last:
            nxt = ordered[i + 1]
            if nxt.min_bound > tier.max_bound:
                raise ConfigurationError(
                    f"Rate {rate_id}: gap in tier coverage between {tier.max_bound} and {nxt.min_bound}",
                    method_id=method_id, rate_id=rate_id,
                )
            if nxt.min_bound < tier.max_bound:
                raise ConfigurationError(
                    f"Rate {rate_id}: tiers overlap at {nxt.min_bound}",
                    method_id=method_id, rate_id=rate_id,
                )
    return ordered


class RateEvaluator:
    """Turns a rate rule and a shipment context into a cost."""

    def evaluate(self, rate: ShippingRate, context: RateContext) -> Decimal:
        return self.breakdown(rate, context).total

    def breakdown(self, rate: ShippingRate, context: RateContext) -> RateBreakdown:
        if (
            rate.free_shipping_threshold is not None
            and context.order_value >= rate.free_shipping_threshold
        ):
            return RateBreakdown(
                base=ZERO,
                handling_fee=ZERO,
                insurance_fee=ZERO,
                fuel_surcharge=ZERO,
                total=ZERO.quantize(CENT),
                is_free_shipping=True,
            )

        base = self._base_cost(rate, context)

        subtotal = base + rate.handling_fee + rate.insurance_fee
        surcharge = subtotal * rate.fuel_surcharge_pct / Decimal("100")
        total = max(ZERO, subtotal + surcharge)

        return RateBreakdown(
            base=base,
            handling_fee=rate.handling_fee,
            insurance_fee=rate.insurance_fee,
            fuel_surcharge=surcharge.quantize(CENT, rounding=ROUND_HALF_UP),
            total=total.quantize(CENT, rounding=ROUND_HALF_UP),
            is_free_shipping=False,
        )

    def _base_cost(self, rate: ShippingRate, context: RateContext) -> Decimal:
        if rate.rate_type == RateType.FLAT:
            return rate.base_rate
        if rate.rate_type == RateType.WEIGHT_BASED:
            return self._tier_rate(rate, rate.weight_tiers, context.weight, "weight")
        if rate.rate_type == RateType.PRICE_BASED:
            return self._tier_rate(rate, rate.price_tiers, context.order_value, "order value")
        if rate.rate_type == RateType.ITEM_BASED:
            if rate.per_item_rate is None:
                raise ConfigurationError(
                    f"Rate {rate.id} is item based but has no per-item rate",
                    method_id=rate.method_id, rate_id=rate.id,
                )
            return rate.per_item_rate * context.item_count
        raise ConfigurationError(
            f"Rate {rate.id} has unknown rate type {rate.rate_type!r}",
            method_id=rate.method_id, rate_id=rate.id,
        )

    @staticmethod
    def _tier_rate(
        rate: ShippingRate,
        tiers: list[RateTier],
        value: Decimal,
        label: str,
    ) -> Decimal:
        ordered = validate_tiers(tiers, rate_id=rate.id, method_id=rate.method_id)
        for tier in ordered:
            if tier.contains(value):
                return tier.rate
        if value < ordered[0].min_bound:
            reason = f"below the first tier minimum {ordered[0].min_bound}"
        else:
            reason = f"above the last tier maximum {ordered[-1].max_bound}"
        raise ConfigurationError(
            f"Rate {rate.id}: {label} {value} is {reason}",
            method_id=rate.method_id, rate_id=rate.id,
        )
