"""Shipment tracking: append-only event log and derived shipment state.

The tracker records what carriers and operators report; it never rejects
a transition. Current status and location always come from the
chronologically latest event, so late webhooks cannot roll a shipment
backwards. Suspicious appends (out-of-order timestamps, a second terminal
event) are kept and flagged as anomalies for operator review.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from shipping_engine.exceptions import DuplicateTrackingNumberError, ShipmentNotFoundError
from shipping_engine.services.carriers import (
    CarrierRegistry,
    ShipmentStatus,
)
from shipping_engine.services.clock import as_utc, utcnow
from shipping_engine.services.methods import ShippingMethod

logger = logging.getLogger(__name__)


class AnomalyKind(str, Enum):
    OUT_OF_ORDER = "out_of_order"
    TERMINAL_AFTER_TERMINAL = "terminal_after_terminal"


@dataclass(frozen=True)
class TrackingEvent:
    timestamp: datetime
    status: ShipmentStatus
    location: str = ""
    description: str = ""
    carrier_status: Optional[str] = None


@dataclass(frozen=True)
class TrackingAnomaly:
    kind: AnomalyKind
    event_index: int
    detected_at: datetime
    detail: str = ""


@dataclass(frozen=True)
class Recipient:
    name: str
    address: str


@dataclass
class ShipmentTracking:
    """Durable tracking record for one shipment."""
    id: str
    order_id: str
    tracking_number: str
    carrier: str
    method_id: str
    status: ShipmentStatus
    recipient_name: str
    recipient_address: str
    events: list[TrackingEvent] = field(default_factory=list)
    anomalies: list[TrackingAnomaly] = field(default_factory=list)
    current_location: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def latest_event(self) -> Optional[TrackingEvent]:
        """Event with the latest timestamp; on ties the one appended later."""
        if not self.events:
            return None
        _, latest = max(enumerate(self.events), key=lambda pair: (pair[1].timestamp, pair[0]))
        return latest

    def append(self, event: TrackingEvent, now: datetime) -> list[TrackingAnomaly]:
        """Append an event, flag anomalies, and recompute derived fields."""
        found: list[TrackingAnomaly] = []
        index = len(self.events)
        previous = self.latest_event()

        if previous is not None and event.timestamp < previous.timestamp:
            found.append(TrackingAnomaly(
                kind=AnomalyKind.OUT_OF_ORDER,
                event_index=index,
                detected_at=now,
                detail=(
                    f"{event.status.value} at {event.timestamp.isoformat()} arrived after "
                    f"{previous.status.value} at {previous.timestamp.isoformat()}"
                ),
            ))

        if event.status.is_terminal:
            earlier = [e for e in self.events if e.status.is_terminal]
            if earlier:
                found.append(TrackingAnomaly(
                    kind=AnomalyKind.TERMINAL_AFTER_TERMINAL,
                    event_index=index,
                    detected_at=now,
                    detail=(
                        f"{event.status.value} recorded after terminal "
                        f"{earlier[-1].status.value}"
                    ),
                ))

        self.events.append(event)
        self.anomalies.extend(found)
        self.recompute()
        self.updated_at = now
        return found

    def recompute(self) -> None:
        latest = self.latest_event()
        if latest is None:
            return
        self.status = latest.status
        located = [(e.timestamp, i, e.location) for i, e in enumerate(self.events) if e.location]
        self.current_location = max(located)[2] if located else None

        delivered = [e.timestamp for e in self.events if e.status == ShipmentStatus.DELIVERED]
        self.actual_delivery = max(delivered) if delivered else None

        if latest.status == ShipmentStatus.OUT_FOR_DELIVERY:
            day_end = datetime.combine(
                latest.timestamp.astimezone(timezone.utc).date(),
                time(23, 59, 59),
                tzinfo=timezone.utc,
            )
            self.estimated_delivery = day_end


class ShipmentTracker:
    """Owns shipment records: creation, event ingestion and lookup."""

    def __init__(
        self,
        repository,
        carriers: Optional[CarrierRegistry] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repository  # TrackingRepository
        self._carriers = carriers or CarrierRegistry()
        self._clock = clock

    def now(self) -> datetime:
        return as_utc(self._clock())

    def create_shipment(
        self,
        order_id: str,
        method: ShippingMethod,
        recipient: Recipient,
        quote=None,
    ) -> ShipmentTracking:
        """Open a tracking record seeded with one ``pending`` event.

        The tracking number comes from the carrier adapter; adapter errors
        propagate so the caller can retry.
        """
        if not order_id:
            raise ValueError("Order ID is required")
        if not recipient.name:
            raise ValueError("Recipient name is required")
        quote_method = getattr(quote, "method_id", method.id)
        if quote is not None and quote_method != method.id:
            raise ValueError(f"Quote is for method {quote_method}, not {method.id}")

        adapter = self._carriers.adapter_for(method.carrier)
        tracking_number = adapter.generate_tracking_number(method.carrier)
        if self._repo.get(tracking_number) is not None:
            raise DuplicateTrackingNumberError(tracking_number)

        now = as_utc(self._clock())
        if quote is not None and quote.delivery_window is not None:
            estimated = as_utc(quote.delivery_window.latest)
        else:
            estimated = now + timedelta(days=method.estimated_days_max)

        tracking = ShipmentTracking(
            id=f"shipment_{uuid.uuid4().hex}",
            order_id=order_id,
            tracking_number=tracking_number,
            carrier=method.carrier,
            method_id=method.id,
            status=ShipmentStatus.PENDING,
            recipient_name=recipient.name,
            recipient_address=recipient.address,
            estimated_delivery=estimated,
            created_at=now,
            updated_at=now,
        )
        tracking.append(
            TrackingEvent(
                timestamp=now,
                status=ShipmentStatus.PENDING,
                location="Warehouse",
                description="Order received and being prepared for shipment",
            ),
            now,
        )
        self._repo.add(tracking)
        logger.info(
            "Created shipment %s for order %s via %s", tracking_number, order_id, method.id
        )
        return tracking

    def append_event(self, tracking_number: str, event: TrackingEvent) -> ShipmentTracking:
        """Append an event and recompute status from the full history.

        Raises ShipmentNotFoundError for unknown tracking numbers; no record
        is created implicitly.
        """
        event = TrackingEvent(
            timestamp=as_utc(event.timestamp),
            status=ShipmentStatus(event.status),
            location=event.location,
            description=event.description,
            carrier_status=event.carrier_status,
        )
        now = as_utc(self._clock())
        found: list[TrackingAnomaly] = []

        def _apply(tracking: ShipmentTracking) -> ShipmentTracking:
            found[:] = tracking.append(event, now)
            return tracking

        tracking = self._repo.update(tracking_number, _apply)
        logger.info(
            "Shipment %s: %s at %s (now %s)",
            tracking_number, event.status.value, event.location or "-", tracking.status.value,
        )
        for anomaly in found:
            logger.warning(
                "Tracking anomaly on %s: %s - %s",
                tracking_number, anomaly.kind.value, anomaly.detail,
            )
        return tracking

    def ingest_carrier_event(
        self,
        tracking_number: str,
        carrier_status: str,
        location: str = "",
        description: str = "",
        timestamp: Optional[datetime] = None,
    ) -> ShipmentTracking:
        """Normalize a carrier-native status via the record's carrier adapter, then append."""
        tracking = self.get_tracking(tracking_number)
        adapter = self._carriers.adapter_for(tracking.carrier)
        status = adapter.normalize_status(carrier_status)
        return self.append_event(
            tracking_number,
            TrackingEvent(
                timestamp=timestamp or self.now(),
                status=status,
                location=location,
                description=description or carrier_status,
                carrier_status=carrier_status,
            ),
        )

    def get_tracking(self, tracking_number: str) -> ShipmentTracking:
        tracking = self._repo.get(tracking_number)
        if tracking is None:
            raise ShipmentNotFoundError(tracking_number)
        return tracking

    def get_tracking_by_order(self, order_id: str) -> ShipmentTracking:
        tracking = self._repo.get_by_order(order_id)
        if tracking is None:
            raise ShipmentNotFoundError(order_id)
        return tracking

    def list_shipments(self, status: Optional[ShipmentStatus] = None) -> list[ShipmentTracking]:
        return self._repo.list(status=status)

    def list_anomalies(self) -> list[tuple[str, TrackingAnomaly]]:
        """All flagged anomalies as (tracking_number, anomaly), oldest first."""
        result = [
            (t.tracking_number, anomaly)
            for t in self._repo.list()
            for anomaly in t.anomalies
        ]
        result.sort(key=lambda pair: pair[1].detected_at)
        return result

    def stats(self) -> dict:
        """Shipment counts by status plus the number of flagged records."""
        by_status: dict[str, int] = {}
        flagged = 0
        shipments = self._repo.list()
        for t in shipments:
            by_status[t.status.value] = by_status.get(t.status.value, 0) + 1
            if t.anomalies:
                flagged += 1
        return {"total": len(shipments), "by_status": by_status, "flagged": flagged}
