"""Configuration audit tests."""

import logging
from decimal import Decimal

from shipping_engine.services.audit import ConfigurationAuditor
from shipping_engine.services.methods import ShippingMethod, ShippingMethodType
from shipping_engine.services.rates import RateTier, RateType, ShippingRate
from shipping_engine.services.zones import ShippingZone


def _messages(issues):
    return {(i.entity, i.entity_id): i.message for i in issues}


class TestConfigurationAuditor:
    def test_defaults_clean(self, repos):
        assert ConfigurationAuditor(*repos).audit() == []

    def test_detects_problems(self, repos, caplog):
        zones, methods, rates = repos
        zones.save_zone(ShippingZone(id="zone_empty", name="Empty"))
        methods.save_method(ShippingMethod(
            id="method_orphan", name="Orphan", type=ShippingMethodType.EXPRESS,
            carrier="dhl", zone_id="zone_missing",
            estimated_days_min=4, estimated_days_max=1, cutoff_time="noon",
        ))
        rates.save_rate(ShippingRate(
            id="rate_gap", method_id="method_orphan", rate_type=RateType.WEIGHT_BASED,
            weight_tiers=[
                RateTier(Decimal("0"), Decimal("100"), Decimal("1")),
                RateTier(Decimal("3"), Decimal("200")),
            ],
        ))
        rates.save_rate(ShippingRate(
            id="rate_stray", method_id="method_gone", rate_type=RateType.ITEM_BASED,
        ))
        rates.save_rate(ShippingRate(
            id="rate_negative", method_id="method_pickup", rate_type=RateType.FLAT,
            handling_fee=Decimal("-5"),
        ))

        with caplog.at_level(logging.WARNING):
            issues = ConfigurationAuditor(zones, methods, rates).audit()

        entities = {(i.entity, i.entity_id) for i in issues}
        assert ("zone", "zone_empty") in entities
        assert ("rate", "rate_stray") in entities
        assert ("rate", "rate_negative") in entities

        orphan = [i.message for i in issues if i.entity_id == "method_orphan"]
        assert any("zone_missing" in m for m in orphan)
        assert any("exceeds max" in m for m in orphan)
        assert any("Invalid cutoff" in m for m in orphan)

        assert "gap" in _messages(issues)[("rate", "rate_gap")]
        stray = [i.message for i in issues if i.entity_id == "rate_stray"]
        assert any("method_gone" in m for m in stray)
        assert any("per-item" in m for m in stray)
        assert "Configuration issue" in caplog.text

    def test_method_without_active_rate(self, repos):
        zones, methods, rates = repos
        rate = rates.get_rate("rate_pickup")
        rate.is_active = False
        rates.save_rate(rate)
        issues = ConfigurationAuditor(zones, methods, rates).audit()
        assert [(i.entity_id, i.message) for i in issues] == [("method_pickup", "has no active rate")]
