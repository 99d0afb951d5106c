"""Shipment tracking tests."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from shipping_engine.exceptions import (
    CarrierUnavailableError,
    DuplicateTrackingNumberError,
    ShipmentNotFoundError,
)
from shipping_engine.services.carriers import CarrierRegistry, ShipmentStatus
from shipping_engine.services.defaults import default_methods
from shipping_engine.services.quotes import DeliveryWindow
from shipping_engine.services.repositories import InMemoryTrackingRepository
from shipping_engine.services.tracking import (
    AnomalyKind,
    Recipient,
    ShipmentTracker,
    TrackingEvent,
)

from conftest import FIXED_NOW

T = FIXED_NOW
EXPRESS = next(m for m in default_methods() if m.id == "method_express_local")
RECIPIENT = Recipient(name="Wanjiru Kamau", address="Moi Avenue 12, Nairobi")


def _event(status, offset=timedelta(0), location="", **kw):
    return TrackingEvent(timestamp=T + offset, status=status, location=location, **kw)


@pytest.fixture
def shipment(tracker):
    return tracker.create_shipment("ORD-1001", EXPRESS, RECIPIENT)


class TestCreateShipment:
    def test_seeded_pending_event(self, shipment):
        assert shipment.tracking_number.startswith("DHL")
        assert shipment.status == ShipmentStatus.PENDING
        assert len(shipment.events) == 1
        assert shipment.events[0].status == ShipmentStatus.PENDING
        assert shipment.current_location == "Warehouse"
        assert shipment.anomalies == []

    def test_estimate_from_method_days(self, shipment):
        assert shipment.estimated_delivery == T + timedelta(days=2)

    def test_estimate_from_quote(self, tracker):
        window = DeliveryWindow(earliest=T + timedelta(days=1), latest=T + timedelta(days=4))

        class Quote:
            delivery_window = window

        tracking = tracker.create_shipment("ORD-2", EXPRESS, RECIPIENT, quote=Quote())
        assert tracking.estimated_delivery == window.latest

    def test_quote_for_other_method_rejected(self, tracker):
        class Quote:
            method_id = "method_pickup"
            delivery_window = DeliveryWindow(earliest=T, latest=T + timedelta(days=9))

        with pytest.raises(ValueError, match="method_pickup"):
            tracker.create_shipment("ORD-2", EXPRESS, RECIPIENT, quote=Quote())
        assert tracker.list_shipments() == []

    def test_naive_quote_window_is_utc(self, tracker):
        latest = datetime(2024, 3, 8, 18, 0)

        class Quote:
            method_id = EXPRESS.id
            delivery_window = DeliveryWindow(earliest=latest - timedelta(days=2), latest=latest)

        tracking = tracker.create_shipment("ORD-2", EXPRESS, RECIPIENT, quote=Quote())
        assert tracking.estimated_delivery == latest.replace(tzinfo=timezone.utc)
        assert tracking.estimated_delivery.tzinfo is not None

    def test_persisted(self, tracker, shipment):
        stored = tracker.get_tracking(shipment.tracking_number)
        assert stored.order_id == "ORD-1001"
        assert stored.events == shipment.events

    def test_requires_order_and_recipient(self, tracker):
        with pytest.raises(ValueError, match="Order ID"):
            tracker.create_shipment("", EXPRESS, RECIPIENT)
        with pytest.raises(ValueError, match="Recipient"):
            tracker.create_shipment("ORD-3", EXPRESS, Recipient(name="", address=""))

    def test_adapter_failure_propagates(self, clock):
        class DownAdapter:
            def generate_tracking_number(self, carrier):
                raise CarrierUnavailableError("dhl is down")

            def normalize_status(self, carrier_status):
                return ShipmentStatus.IN_TRANSIT

        carriers = CarrierRegistry()
        carriers.register("dhl", DownAdapter())
        repo = InMemoryTrackingRepository()
        tracker = ShipmentTracker(repo, carriers, clock=clock)
        with pytest.raises(CarrierUnavailableError):
            tracker.create_shipment("ORD-4", EXPRESS, RECIPIENT)
        assert repo.list() == []

    def test_duplicate_tracking_number(self, clock):
        class FixedAdapter:
            def generate_tracking_number(self, carrier):
                return "DHL000001"

            def normalize_status(self, carrier_status):
                return ShipmentStatus.IN_TRANSIT

        carriers = CarrierRegistry(fallback=FixedAdapter())
        tracker = ShipmentTracker(InMemoryTrackingRepository(), carriers, clock=clock)
        tracker.create_shipment("ORD-5", EXPRESS, RECIPIENT)
        with pytest.raises(DuplicateTrackingNumberError):
            tracker.create_shipment("ORD-6", EXPRESS, RECIPIENT)


class TestAppendEvent:
    def test_out_of_order_keeps_latest_status(self, tracker, shipment):
        tn = shipment.tracking_number
        tracker.append_event(tn, _event(ShipmentStatus.SHIPPED, timedelta(hours=1)))
        tracking = tracker.append_event(tn, _event(ShipmentStatus.PROCESSING, timedelta(minutes=30)))

        assert tracking.status == ShipmentStatus.SHIPPED
        assert [e.status for e in tracking.events] == [
            ShipmentStatus.PENDING, ShipmentStatus.SHIPPED, ShipmentStatus.PROCESSING,
        ]
        assert [a.kind for a in tracking.anomalies] == [AnomalyKind.OUT_OF_ORDER]
        assert tracking.anomalies[0].event_index == 2

    def test_out_of_order_logged(self, tracker, shipment, caplog):
        tn = shipment.tracking_number
        tracker.append_event(tn, _event(ShipmentStatus.SHIPPED, timedelta(hours=1)))
        with caplog.at_level(logging.WARNING):
            tracker.append_event(tn, _event(ShipmentStatus.PROCESSING, timedelta(minutes=30)))
        assert "out_of_order" in caplog.text

    def test_same_timestamp_later_append_wins(self, tracker, shipment):
        tn = shipment.tracking_number
        tracker.append_event(tn, _event(ShipmentStatus.SHIPPED, timedelta(hours=1)))
        tracking = tracker.append_event(tn, _event(ShipmentStatus.IN_TRANSIT, timedelta(hours=1)))
        assert tracking.status == ShipmentStatus.IN_TRANSIT
        assert tracking.anomalies == []

    def test_location_follows_latest_located_event(self, tracker, shipment):
        tn = shipment.tracking_number
        tracker.append_event(tn, _event(ShipmentStatus.IN_TRANSIT, timedelta(hours=5), "Nakuru"))
        tracking = tracker.append_event(
            tn, _event(ShipmentStatus.SHIPPED, timedelta(hours=2), "Nairobi Hub"),
        )
        assert tracking.current_location == "Nakuru"
        tracking = tracker.append_event(tn, _event(ShipmentStatus.IN_TRANSIT, timedelta(hours=6)))
        assert tracking.current_location == "Nakuru"

    def test_delivery_sets_actual(self, tracker, shipment):
        tn = shipment.tracking_number
        tracking = tracker.append_event(tn, _event(ShipmentStatus.DELIVERED, timedelta(days=1)))
        assert tracking.status == ShipmentStatus.DELIVERED
        assert tracking.is_terminal
        assert tracking.actual_delivery == T + timedelta(days=1)

    def test_out_for_delivery_moves_estimate(self, tracker, shipment):
        tn = shipment.tracking_number
        tracking = tracker.append_event(
            tn, _event(ShipmentStatus.OUT_FOR_DELIVERY, timedelta(hours=3)),
        )
        assert tracking.estimated_delivery == datetime(2024, 3, 4, 23, 59, 59, tzinfo=timezone.utc)

    def test_terminal_after_terminal(self, tracker, shipment):
        tn = shipment.tracking_number
        tracker.append_event(tn, _event(ShipmentStatus.DELIVERED, timedelta(days=1)))
        tracking = tracker.append_event(tn, _event(ShipmentStatus.RETURNED, timedelta(days=3)))
        assert len(tracking.events) == 3
        assert tracking.status == ShipmentStatus.RETURNED
        assert [a.kind for a in tracking.anomalies] == [AnomalyKind.TERMINAL_AFTER_TERMINAL]
        assert tracking.actual_delivery == T + timedelta(days=1)

    def test_regression_recorded_without_anomaly(self, tracker, shipment):
        tn = shipment.tracking_number
        tracker.append_event(tn, _event(ShipmentStatus.IN_TRANSIT, timedelta(hours=1)))
        tracking = tracker.append_event(tn, _event(ShipmentStatus.PROCESSING, timedelta(hours=2)))
        assert tracking.status == ShipmentStatus.PROCESSING
        assert tracking.anomalies == []

    def test_naive_timestamp_is_utc(self, tracker, shipment):
        tracking = tracker.append_event(
            shipment.tracking_number,
            TrackingEvent(timestamp=datetime(2024, 3, 5, 8, 0), status=ShipmentStatus.SHIPPED),
        )
        assert tracking.events[-1].timestamp.tzinfo is not None
        assert tracking.status == ShipmentStatus.SHIPPED

    def test_unknown_tracking_number(self, tracker):
        with pytest.raises(ShipmentNotFoundError, match="NOPE"):
            tracker.append_event("NOPE", _event(ShipmentStatus.SHIPPED))
        assert tracker.list_shipments() == []

    def test_events_never_shrink(self, tracker, shipment):
        tn = shipment.tracking_number
        counts = []
        for i, status in enumerate([
            ShipmentStatus.PROCESSING, ShipmentStatus.SHIPPED,
            ShipmentStatus.IN_TRANSIT, ShipmentStatus.DELIVERED,
        ]):
            counts.append(len(tracker.append_event(tn, _event(status, timedelta(hours=i + 1))).events))
        assert counts == [2, 3, 4, 5]


class TestCarrierEvents:
    def test_normalized_through_adapter(self, tracker, shipment, clock):
        clock.now = T + timedelta(hours=4)
        tracking = tracker.ingest_carrier_event(
            shipment.tracking_number, "Shipment picked up by courier", location="Nairobi",
        )
        event = tracking.events[-1]
        assert event.status == ShipmentStatus.SHIPPED
        assert event.carrier_status == "Shipment picked up by courier"
        assert event.timestamp == clock.now
        assert tracking.current_location == "Nairobi"

    def test_unknown_tracking_number(self, tracker):
        with pytest.raises(ShipmentNotFoundError):
            tracker.ingest_carrier_event("NOPE", "Delivered")


class TestLookup:
    def test_by_order(self, tracker, shipment):
        assert tracker.get_tracking_by_order("ORD-1001").tracking_number == shipment.tracking_number

    def test_by_order_newest(self, tracker, shipment, clock):
        clock.now = T + timedelta(hours=1)
        second = tracker.create_shipment("ORD-1001", EXPRESS, RECIPIENT)
        assert tracker.get_tracking_by_order("ORD-1001").tracking_number == second.tracking_number

    def test_not_found(self, tracker):
        with pytest.raises(ShipmentNotFoundError):
            tracker.get_tracking("NOPE")
        with pytest.raises(ShipmentNotFoundError):
            tracker.get_tracking_by_order("ORD-404")

    def test_list_by_status(self, tracker, shipment):
        other = tracker.create_shipment("ORD-2002", EXPRESS, RECIPIENT)
        tracker.append_event(other.tracking_number, _event(ShipmentStatus.SHIPPED, timedelta(hours=1)))
        shipped = tracker.list_shipments(ShipmentStatus.SHIPPED)
        assert [t.order_id for t in shipped] == ["ORD-2002"]
        assert len(tracker.list_shipments()) == 2

    def test_anomalies_and_stats(self, tracker, shipment):
        tn = shipment.tracking_number
        tracker.append_event(tn, _event(ShipmentStatus.SHIPPED, timedelta(hours=1)))
        tracker.append_event(tn, _event(ShipmentStatus.PROCESSING, timedelta(minutes=30)))
        tracker.create_shipment("ORD-2002", EXPRESS, RECIPIENT)

        anomalies = tracker.list_anomalies()
        assert [(n, a.kind) for n, a in anomalies] == [(tn, AnomalyKind.OUT_OF_ORDER)]

        stats = tracker.stats()
        assert stats["total"] == 2
        assert stats["by_status"] == {"shipped": 1, "pending": 1}
        assert stats["flagged"] == 1


class TestConcurrency:
    def test_parallel_appends_keep_every_event(self, tracker, shipment):
        tn = shipment.tracking_number

        def append(i):
            status = ShipmentStatus.IN_TRANSIT if i % 2 else ShipmentStatus.SHIPPED
            return tracker.append_event(tn, _event(status, timedelta(minutes=i + 1), f"Hub {i}"))

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(append, range(40)))

        tracking = tracker.get_tracking(tn)
        assert len(tracking.events) == 41
        assert tracking.current_location == "Hub 39"
        assert tracking.status == ShipmentStatus.IN_TRANSIT

    def test_independent_shipments(self, tracker):
        numbers = [
            tracker.create_shipment(f"ORD-{i}", EXPRESS, RECIPIENT).tracking_number
            for i in range(4)
        ]

        def deliver(tn):
            for hour in range(1, 6):
                tracker.append_event(tn, _event(ShipmentStatus.IN_TRANSIT, timedelta(hours=hour)))
            return tracker.append_event(tn, _event(ShipmentStatus.DELIVERED, timedelta(hours=6)))

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(deliver, numbers))

        assert all(len(t.events) == 7 for t in results)
        assert all(t.status == ShipmentStatus.DELIVERED for t in results)

    def test_record_locks_released(self):
        repo = InMemoryTrackingRepository()
        tracker = ShipmentTracker(repo, CarrierRegistry(), clock=lambda: T)
        tn = tracker.create_shipment("ORD-1", EXPRESS, RECIPIENT).tracking_number
        for number in ("NOPE-1", "NOPE-2", "NOPE-3"):
            with pytest.raises(ShipmentNotFoundError):
                repo.update(number, lambda t: t)
        tracker.append_event(tn, _event(ShipmentStatus.SHIPPED, timedelta(hours=1)))
        assert len(repo._record_locks) == 0
