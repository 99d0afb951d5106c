"""Quotation tests against the default Kenya configuration."""

import logging
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from shipping_engine.services.methods import (
    MethodRestrictions,
    ShippingMethod,
    ShippingMethodType,
)
from shipping_engine.services.quotes import FREE_SHIPPING_TAG, QuoteBuilder
from shipping_engine.services.rates import RateTier, RateType, ShippingRate
from shipping_engine.services.zones import Destination

from conftest import FIXED_NOW

KENYA = Destination("KE")


def _quotes(builder, dest=KENYA, value="4000", weight="3", items=1, products=()):
    return builder.get_quotes(dest, Decimal(value), Decimal(weight), items, products)


def _add_method(repos, method_id, rate=None, **overrides):
    _, methods, rates = repos
    fields = dict(
        id=method_id, name=method_id, type=ShippingMethodType.STANDARD,
        carrier="posta_kenya", zone_id="zone_local",
        estimated_days_min=2, estimated_days_max=4,
    )
    fields.update(overrides)
    methods.save_method(ShippingMethod(**fields))
    if rate is not None:
        rates.save_rate(rate)


def _flat(method_id, amount="100"):
    return ShippingRate(
        id=f"rate_{method_id}", method_id=method_id,
        rate_type=RateType.FLAT, base_rate=Decimal(amount),
    )


class TestGetQuotes:
    def test_sorted_by_cost(self, quotes):
        result = _quotes(quotes)
        assert [q.method_id for q in result] == [
            "method_pickup", "method_standard_local", "method_express_local",
        ]
        assert [q.cost for q in result] == [
            Decimal("0.00"), Decimal("500.00"), Decimal("2750.00"),
        ]

    def test_single_recommended(self, quotes):
        result = _quotes(quotes)
        assert sum(q.is_recommended for q in result) == 1
        assert result[0].is_recommended

    def test_recommended_within_threshold(self, repos, clock):
        _, methods, _ = repos
        pickup = methods.get_method("method_pickup")
        pickup.is_active = False
        methods.save_method(pickup)

        default = _quotes(QuoteBuilder(*repos, clock=clock))
        assert [q.method_id for q in default if q.is_recommended] == ["method_standard_local"]

        strict = _quotes(QuoteBuilder(*repos, recommended_max_days=2, clock=clock))
        assert [q.method_id for q in strict if q.is_recommended] == ["method_express_local"]

    def test_recommended_falls_back_to_cheapest(self, quotes):
        result = _quotes(quotes, dest=Destination("US"), weight="2", value="1000")
        assert len(result) == 1
        assert result[0].cost == Decimal("10120.00")
        assert result[0].is_recommended

    def test_free_shipping_tagged(self, quotes):
        result = _quotes(quotes, value="12000")
        standard = next(q for q in result if q.method_id == "method_standard_local")
        assert standard.cost == Decimal("0.00")
        assert standard.is_free_shipping
        assert FREE_SHIPPING_TAG in standard.features
        # equal cost: fewer days first
        assert [q.method_id for q in result][:2] == ["method_pickup", "method_standard_local"]

    def test_equal_cost_sorted_by_max_days(self, repos, quotes):
        _add_method(repos, "a_slow", _flat("a_slow"), estimated_days_min=1, estimated_days_max=4)
        _add_method(repos, "b_fast", _flat("b_fast"), estimated_days_min=1, estimated_days_max=2)
        _add_method(repos, "c_fast", _flat("c_fast"), estimated_days_min=1, estimated_days_max=2)
        ids = [q.method_id for q in _quotes(quotes) if q.cost == Decimal("100.00")]
        assert ids == ["b_fast", "c_fast", "a_slow"]

    def test_pickup_not_tagged_free(self, quotes):
        pickup = next(q for q in _quotes(quotes) if q.method_id == "method_pickup")
        assert not pickup.is_free_shipping
        assert FREE_SHIPPING_TAG not in pickup.features

    def test_unknown_destination_empty(self, quotes):
        assert _quotes(quotes, dest=Destination("JP")) == []

    def test_negative_weight_rejected(self, quotes):
        with pytest.raises(ValueError):
            _quotes(quotes, weight="-1")

    def test_accepts_floats(self, quotes):
        result = quotes.get_quotes(KENYA, 4000.0, 3.0, 1)
        assert result[-1].cost == Decimal("2750.00")


class TestEligibility:
    def test_weight_restriction_inclusive(self, repos, quotes):
        _add_method(
            repos, "method_light", _flat("method_light"),
            restrictions=MethodRestrictions(max_weight=Decimal("1")),
        )
        assert "method_light" not in [q.method_id for q in _quotes(quotes, weight="3")]
        assert "method_light" in [q.method_id for q in _quotes(quotes, weight="1")]

    def test_value_restriction(self, repos, quotes):
        _add_method(
            repos, "method_premium", _flat("method_premium"),
            restrictions=MethodRestrictions(min_value=Decimal("5000")),
        )
        assert "method_premium" not in [q.method_id for q in _quotes(quotes, value="4000")]

    def test_excluded_products(self, repos, quotes):
        _add_method(
            repos, "method_no_batteries", _flat("method_no_batteries"),
            restrictions=MethodRestrictions(excluded_products=("SKU-BATTERY",)),
        )
        ids = [q.method_id for q in _quotes(quotes, products=["SKU-BATTERY", "SKU-2"])]
        assert "method_no_batteries" not in ids
        assert "method_no_batteries" in [q.method_id for q in _quotes(quotes)]

    def test_inactive_rate_drops_method(self, repos, quotes):
        rate = _flat("method_dormant")
        rate.is_active = False
        _add_method(repos, "method_dormant", rate)
        assert "method_dormant" not in [q.method_id for q in _quotes(quotes)]


class TestBrokenConfiguration:
    def test_tier_gap_skipped_and_logged(self, repos, quotes, caplog):
        rate = ShippingRate(
            id="rate_gappy", method_id="method_gappy", rate_type=RateType.WEIGHT_BASED,
            weight_tiers=[
                RateTier(Decimal("0"), Decimal("100"), Decimal("1")),
                RateTier(Decimal("2"), Decimal("200"), None),
            ],
        )
        _add_method(repos, "method_gappy", rate)
        with caplog.at_level(logging.WARNING):
            result = _quotes(quotes)
        assert "method_gappy" not in [q.method_id for q in result]
        assert len(result) == 3
        assert "method_gappy" in caplog.text

    def test_bad_day_range_skipped(self, repos, quotes):
        _add_method(
            repos, "method_backwards", _flat("method_backwards"),
            estimated_days_min=5, estimated_days_max=2,
        )
        assert "method_backwards" not in [q.method_id for q in _quotes(quotes)]

    def test_bad_cutoff_skipped(self, repos, quotes):
        _add_method(repos, "method_late", _flat("method_late"), cutoff_time="25:99")
        assert "method_late" not in [q.method_id for q in _quotes(quotes)]

    def test_missing_rate_skipped(self, repos, quotes):
        _add_method(repos, "method_unpriced")
        assert "method_unpriced" not in [q.method_id for q in _quotes(quotes)]


class TestDeliveryWindow:
    def _express(self, builder):
        return next(q for q in _quotes(builder) if q.method_id == "method_express_local")

    def test_before_cutoff(self, quotes):
        window = self._express(quotes).delivery_window
        assert window.earliest == FIXED_NOW + timedelta(days=1)
        assert window.latest == FIXED_NOW + timedelta(days=2)

    def test_after_cutoff(self, quotes, clock):
        clock.now = FIXED_NOW.replace(hour=16)
        window = self._express(quotes).delivery_window
        assert window.earliest == clock.now + timedelta(days=2)
        assert window.latest == clock.now + timedelta(days=3)

    def test_no_cutoff(self, quotes):
        pickup = next(q for q in _quotes(quotes) if q.method_id == "method_pickup")
        assert pickup.delivery_window.earliest == FIXED_NOW
        assert pickup.delivery_window.latest == FIXED_NOW + timedelta(days=1)

    def test_naive_clock_is_utc(self, repos):
        builder = QuoteBuilder(*repos, clock=lambda: datetime(2024, 3, 4, 16, 0))
        window = self._express(builder).delivery_window
        assert window.earliest == FIXED_NOW.replace(hour=16) + timedelta(days=2)


class TestSingleQuote:
    def test_get_quote(self, quotes):
        quote = quotes.get_quote("method_express_local", KENYA, Decimal("4000"), Decimal("3"), 1)
        assert quote.cost == Decimal("2750.00")
        assert quote.carrier == "dhl"

    def test_get_quote_not_offered(self, quotes):
        dest = Destination("US")
        assert quotes.get_quote("method_pickup", dest, Decimal("100"), Decimal("1"), 1) is None

    def test_can_ship_to(self, quotes):
        assert quotes.can_ship_to(KENYA)
        assert not quotes.can_ship_to(Destination("JP"))
