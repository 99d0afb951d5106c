"""Shipping methods and their eligibility restrictions."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from shipping_engine.services.clock import utcnow


class ShippingMethodType(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    OVERNIGHT = "overnight"
    INTERNATIONAL = "international"
    PICKUP = "pickup"


@dataclass(frozen=True)
class MethodRestrictions:
    """Inclusive eligibility bounds; None means unbounded on that side."""
    min_weight: Optional[Decimal] = None
    max_weight: Optional[Decimal] = None
    min_value: Optional[Decimal] = None
    max_value: Optional[Decimal] = None
    excluded_products: tuple[str, ...] = ()

    def rejection_reason(
        self,
        weight: Decimal,
        order_value: Decimal,
        product_ids: Iterable[str] = (),
    ) -> Optional[str]:
        """Why a shipment is not eligible, or None when it is."""
        if self.min_weight is not None and weight < self.min_weight:
            return f"weight {weight} below minimum {self.min_weight}"
        if self.max_weight is not None and weight > self.max_weight:
            return f"weight {weight} above maximum {self.max_weight}"
        if self.min_value is not None and order_value < self.min_value:
            return f"order value {order_value} below minimum {self.min_value}"
        if self.max_value is not None and order_value > self.max_value:
            return f"order value {order_value} above maximum {self.max_value}"
        excluded = set(self.excluded_products).intersection(str(p) for p in product_ids)
        if excluded:
            return f"excluded products {sorted(excluded)}"
        return None


@dataclass
class ShippingMethod:
    """A named shipping service scoped to one zone."""
    id: str
    name: str
    type: ShippingMethodType
    carrier: str
    zone_id: str
    estimated_days_min: int
    estimated_days_max: int
    description: str = ""
    is_active: bool = True
    cutoff_time: Optional[str] = None  # "HH:MM", local to the configured cutoff timezone
    features: list[str] = field(default_factory=list)
    restrictions: MethodRestrictions = field(default_factory=MethodRestrictions)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def day_range_error(self) -> Optional[str]:
        if self.estimated_days_min < 0 or self.estimated_days_max < 0:
            return "estimated days must be >= 0"
        if self.estimated_days_min > self.estimated_days_max:
            return (
                f"estimated days min {self.estimated_days_min} "
                f"exceeds max {self.estimated_days_max}"
            )
        return None


def parse_cutoff(value: str) -> time:
    """Parse an "HH:MM" cutoff time."""
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as e:
        raise ValueError(f"Invalid cutoff time: {value!r}") from e
