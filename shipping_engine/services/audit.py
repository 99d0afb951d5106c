"""Operator-facing checks over zone/method/rate configuration."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from shipping_engine.exceptions import ConfigurationError
from shipping_engine.services.methods import parse_cutoff
from shipping_engine.services.rates import RateType, validate_tiers

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfigurationIssue:
    entity: str  # zone | method | rate
    entity_id: str
    message: str
    method_id: Optional[str] = None


class ConfigurationAuditor:
    """Finds configuration that would make methods drop out of quotes."""

    def __init__(self, zones, methods, rates):
        self._zones = zones
        self._methods = methods
        self._rates = rates

    def audit(self) -> list[ConfigurationIssue]:
        issues: list[ConfigurationIssue] = []
        zone_ids = {z.id for z in self._zones.list_zones()}
        methods = self._methods.list_methods()
        method_ids = {m.id for m in methods}
        rates = self._rates.list_rates()

        for zone in self._zones.list_zones():
            if not zone.countries:
                issues.append(ConfigurationIssue("zone", zone.id, "zone lists no countries"))

        active_rate_methods = {r.method_id for r in rates if r.is_active}
        for method in methods:
            if method.zone_id not in zone_ids:
                issues.append(ConfigurationIssue(
                    "method", method.id,
                    f"references non-existent zone {method.zone_id}", method.id,
                ))
            day_error = method.day_range_error()
            if day_error:
                issues.append(ConfigurationIssue("method", method.id, day_error, method.id))
            if method.cutoff_time:
                try:
                    parse_cutoff(method.cutoff_time)
                except ValueError as e:
                    issues.append(ConfigurationIssue("method", method.id, str(e), method.id))
            if method.is_active and method.id not in active_rate_methods:
                issues.append(ConfigurationIssue(
                    "method", method.id, "has no active rate", method.id,
                ))

        for rate in rates:
            if rate.method_id not in method_ids:
                issues.append(ConfigurationIssue(
                    "rate", rate.id,
                    f"references non-existent method {rate.method_id}", rate.method_id,
                ))
            try:
                self._check_rate(rate)
            except ConfigurationError as e:
                issues.append(ConfigurationIssue("rate", rate.id, str(e), rate.method_id))

        for issue in issues:
            logger.warning("Configuration issue on %s %s: %s", issue.entity, issue.entity_id, issue.message)
        return issues

    @staticmethod
    def _check_rate(rate) -> None:
        if rate.rate_type == RateType.WEIGHT_BASED:
            validate_tiers(rate.weight_tiers, rate_id=rate.id, method_id=rate.method_id)
        elif rate.rate_type == RateType.PRICE_BASED:
            validate_tiers(rate.price_tiers, rate_id=rate.id, method_id=rate.method_id)
        elif rate.rate_type == RateType.ITEM_BASED and rate.per_item_rate is None:
            raise ConfigurationError(
                f"Rate {rate.id} is item based but has no per-item rate",
                method_id=rate.method_id, rate_id=rate.id,
            )
        for label, value in (
            ("handling fee", rate.handling_fee),
            ("insurance fee", rate.insurance_fee),
            ("fuel surcharge", rate.fuel_surcharge_pct),
        ):
            if value < 0:
                raise ConfigurationError(
                    f"Rate {rate.id}: {label} is negative",
                    method_id=rate.method_id, rate_id=rate.id,
                )
