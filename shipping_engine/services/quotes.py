"""Shipping quotation: zones -> eligible methods -> priced, ranked quotes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Iterable, Optional
from zoneinfo import ZoneInfo

from shipping_engine.exceptions import ConfigurationError
from shipping_engine.services.clock import as_utc, utcnow
from shipping_engine.services.methods import (
    ShippingMethod,
    ShippingMethodType,
    parse_cutoff,
)
from shipping_engine.services.rates import RateContext, RateEvaluator
from shipping_engine.services.zones import Destination, ZoneResolver

logger = logging.getLogger(__name__)

FREE_SHIPPING_TAG = "Free Shipping"
DEFAULT_RECOMMENDED_MAX_DAYS = 5


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class DeliveryWindow:
    earliest: datetime
    latest: datetime


@dataclass(frozen=True)
class ShippingQuote:
    """Price and ETA for one method; built fresh per request, never mutated."""
    method_id: str
    method_name: str
    type: ShippingMethodType
    carrier: str
    zone_id: str
    cost: Decimal
    estimated_days_min: int
    estimated_days_max: int
    delivery_window: Optional[DeliveryWindow] = None
    features: tuple[str, ...] = ()
    is_free_shipping: bool = False
    is_recommended: bool = False


@dataclass
class _Candidate:
    method: ShippingMethod
    cost: Decimal
    is_free_shipping: bool
    window: Optional[DeliveryWindow] = None
    features: list[str] = field(default_factory=list)


class QuoteBuilder:
    """Stateless quotation over zone/method/rate repositories."""

    def __init__(
        self,
        zones,
        methods,
        rates,
        evaluator: Optional[RateEvaluator] = None,
        recommended_max_days: int = DEFAULT_RECOMMENDED_MAX_DAYS,
        cutoff_timezone: str = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ):
        self._resolver = ZoneResolver(zones)
        self._methods = methods  # MethodRepository
        self._rates = rates  # RateRepository
        self._evaluator = evaluator or RateEvaluator()
        self.recommended_max_days = recommended_max_days
        self._tz = timezone.utc if cutoff_timezone.upper() == "UTC" else ZoneInfo(cutoff_timezone)
        self._clock = clock

    @property
    def resolver(self) -> ZoneResolver:
        return self._resolver

    def get_quotes(
        self,
        destination: Destination,
        order_value: Decimal,
        weight: Decimal,
        item_count: int,
        product_ids: Iterable[str] = (),
    ) -> list[ShippingQuote]:
        """Quotes sorted by cost, then by max estimated days.

        An empty list means nothing can ship; broken method configuration
        is logged and the method skipped, never raised.
        """
        context = RateContext(
            weight=to_decimal(weight),
            order_value=to_decimal(order_value),
            item_count=int(item_count),
        )
        product_ids = [str(p) for p in product_ids]
        now = as_utc(self._clock())

        candidates: list[_Candidate] = []
        for zone in self._resolver.resolve(destination):
            for method in self._methods.methods_for_zone(zone.id):
                if not method.is_active:
                    continue
                reason = method.restrictions.rejection_reason(
                    context.weight, context.order_value, product_ids
                )
                if reason:
                    logger.debug("Method %s not eligible: %s", method.id, reason)
                    continue
                try:
                    candidates.append(self._price(method, context, now))
                except ConfigurationError as e:
                    logger.warning(
                        "Skipping method %s (rate %s): %s", method.id, e.rate_id or "-", e
                    )

        candidates.sort(key=lambda c: (c.cost, c.method.estimated_days_max, c.method.name))
        recommended = self._pick_recommended(candidates)

        return [
            ShippingQuote(
                method_id=c.method.id,
                method_name=c.method.name,
                type=c.method.type,
                carrier=c.method.carrier,
                zone_id=c.method.zone_id,
                cost=c.cost,
                estimated_days_min=c.method.estimated_days_min,
                estimated_days_max=c.method.estimated_days_max,
                delivery_window=c.window,
                features=tuple(c.features),
                is_free_shipping=c.is_free_shipping,
                is_recommended=c is recommended,
            )
            for c in candidates
        ]

    def get_quote(
        self,
        method_id: str,
        destination: Destination,
        order_value: Decimal,
        weight: Decimal,
        item_count: int,
        product_ids: Iterable[str] = (),
    ) -> Optional[ShippingQuote]:
        """The quote for one method, or None when it is not offered for this order."""
        quotes = self.get_quotes(destination, order_value, weight, item_count, product_ids)
        return next((q for q in quotes if q.method_id == method_id), None)

    def can_ship_to(self, destination: Destination) -> bool:
        return bool(self._resolver.resolve(destination))

    def _price(self, method: ShippingMethod, context: RateContext, now: datetime) -> _Candidate:
        day_error = method.day_range_error()
        if day_error:
            raise ConfigurationError(f"Method {method.id}: {day_error}", method_id=method.id)
        rates = self._rates.rates_for_method(method.id)
        if not rates:
            raise ConfigurationError(f"Method {method.id} has no active rate", method_id=method.id)
        breakdown = self._evaluator.breakdown(rates[0], context)

        features = list(method.features)
        if breakdown.is_free_shipping and FREE_SHIPPING_TAG not in features:
            features.append(FREE_SHIPPING_TAG)

        return _Candidate(
            method=method,
            cost=breakdown.total,
            is_free_shipping=breakdown.is_free_shipping,
            window=self.delivery_window(method, now),
            features=features,
        )

    def delivery_window(self, method: ShippingMethod, now: datetime) -> DeliveryWindow:
        """Add the method's day range to now, one day later when past the cutoff."""
        start = now
        if method.cutoff_time:
            try:
                cutoff = parse_cutoff(method.cutoff_time)
            except ValueError as e:
                raise ConfigurationError(f"Method {method.id}: {e}", method_id=method.id) from e
            local = now.astimezone(self._tz)
            if local.time() > cutoff:
                start = now + timedelta(days=1)
        return DeliveryWindow(
            earliest=start + timedelta(days=method.estimated_days_min),
            latest=start + timedelta(days=method.estimated_days_max),
        )

    def _pick_recommended(self, ordered: list[_Candidate]) -> Optional[_Candidate]:
        if not ordered:
            return None
        for candidate in ordered:
            if candidate.method.estimated_days_max <= self.recommended_max_days:
                return candidate
        return ordered[0]
