"""SQLAlchemy-backed repositories."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from shipping_engine.database import shares_one_connection
from shipping_engine.exceptions import DuplicateTrackingNumberError, ShipmentNotFoundError
from shipping_engine.models import (
    ShipmentRecord,
    ShippingMethodRecord,
    ShippingRateRecord,
    ShippingZoneRecord,
    TrackingEventRecord,
)
from shipping_engine.services.carriers import ShipmentStatus
from shipping_engine.services.clock import as_utc
from shipping_engine.services.methods import (
    MethodRestrictions,
    ShippingMethod,
    ShippingMethodType,
)
from shipping_engine.services.rates import RateTier, RateType, ShippingRate
from shipping_engine.services.repositories import KeyedLocks, TrackingMutation
from shipping_engine.services.tracking import (
    AnomalyKind,
    ShipmentTracking,
    TrackingAnomaly,
    TrackingEvent,
)
from shipping_engine.services.zones import ShippingZone

logger = logging.getLogger(__name__)

UPDATE_ATTEMPTS = 3


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    return as_utc(value) if value is not None else None


def _dec(value) -> Optional[Decimal]:
    return Decimal(str(value)) if value is not None else None


def _dec_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


class _SqlRepository:
    def __init__(self, session_factory: sessionmaker):
        self._sessions = session_factory

    def _next_position(self, session: Session, model) -> int:
        current = session.execute(select(func.max(model.position))).scalar()
        return (current or 0) + 1


# ── Zones ────────────────────────────────────────────────
def _zone_to_domain(row: ShippingZoneRecord) -> ShippingZone:
    return ShippingZone(
        id=row.id,
        name=row.name,
        description=row.description or "",
        countries=list(row.countries or []),
        regions=list(row.regions or []),
        postal_codes=list(row.postal_codes or []),
        is_active=row.is_active,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


class SqlZoneRepository(_SqlRepository):
    def list_zones(self) -> list[ShippingZone]:
        with self._sessions() as session:
            rows = session.scalars(select(ShippingZoneRecord).order_by(ShippingZoneRecord.position))
            return [_zone_to_domain(r) for r in rows]

    def get_zone(self, zone_id: str) -> Optional[ShippingZone]:
        with self._sessions() as session:
            row = session.get(ShippingZoneRecord, zone_id)
            return _zone_to_domain(row) if row else None

    def save_zone(self, zone: ShippingZone) -> ShippingZone:
        with self._sessions.begin() as session:
            row = session.get(ShippingZoneRecord, zone.id)
            if row is None:
                row = ShippingZoneRecord(
                    id=zone.id,
                    position=self._next_position(session, ShippingZoneRecord),
                    created_at=zone.created_at,
                )
                session.add(row)
            row.name = zone.name
            row.description = zone.description
            row.countries = list(zone.countries)
            row.regions = list(zone.regions)
            row.postal_codes = list(zone.postal_codes)
            row.is_active = zone.is_active
        return zone

    def delete_zone(self, zone_id: str) -> bool:
        with self._sessions.begin() as session:
            row = session.get(ShippingZoneRecord, zone_id)
            if row is None:
                return False
            session.delete(row)
            return True


# ── Methods ──────────────────────────────────────────────
def _method_to_domain(row: ShippingMethodRecord) -> ShippingMethod:
    r = row.restrictions or {}
    return ShippingMethod(
        id=row.id,
        name=row.name,
        type=ShippingMethodType(row.type),
        carrier=row.carrier,
        zone_id=row.zone_id,
        estimated_days_min=row.estimated_days_min,
        estimated_days_max=row.estimated_days_max,
        description=row.description or "",
        is_active=row.is_active,
        cutoff_time=row.cutoff_time,
        features=list(row.features or []),
        restrictions=MethodRestrictions(
            min_weight=_dec(r.get("min_weight")),
            max_weight=_dec(r.get("max_weight")),
            min_value=_dec(r.get("min_value")),
            max_value=_dec(r.get("max_value")),
            excluded_products=tuple(r.get("excluded_products", ())),
        ),
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


class SqlMethodRepository(_SqlRepository):
    def list_methods(self) -> list[ShippingMethod]:
        with self._sessions() as session:
            rows = session.scalars(
                select(ShippingMethodRecord).order_by(ShippingMethodRecord.position)
            )
            return [_method_to_domain(r) for r in rows]

    def get_method(self, method_id: str) -> Optional[ShippingMethod]:
        with self._sessions() as session:
            row = session.get(ShippingMethodRecord, method_id)
            return _method_to_domain(row) if row else None

    def methods_for_zone(self, zone_id: str) -> list[ShippingMethod]:
        with self._sessions() as session:
            rows = session.scalars(
                select(ShippingMethodRecord)
                .where(
                    ShippingMethodRecord.zone_id == zone_id,
                    ShippingMethodRecord.is_active.is_(True),
                )
                .order_by(ShippingMethodRecord.position)
            )
            return [_method_to_domain(r) for r in rows]

    def save_method(self, method: ShippingMethod) -> ShippingMethod:
        r = method.restrictions
        with self._sessions.begin() as session:
            row = session.get(ShippingMethodRecord, method.id)
            if row is None:
                row = ShippingMethodRecord(
                    id=method.id,
                    position=self._next_position(session, ShippingMethodRecord),
                    created_at=method.created_at,
                )
                session.add(row)
            row.name = method.name
            row.type = ShippingMethodType(method.type).value
            row.carrier = method.carrier
            row.zone_id = method.zone_id
            row.description = method.description
            row.estimated_days_min = method.estimated_days_min
            row.estimated_days_max = method.estimated_days_max
            row.is_active = method.is_active
            row.cutoff_time = method.cutoff_time
            row.features = list(method.features)
            row.restrictions = {
                "min_weight": _dec_str(r.min_weight),
                "max_weight": _dec_str(r.max_weight),
                "min_value": _dec_str(r.min_value),
                "max_value": _dec_str(r.max_value),
                "excluded_products": list(r.excluded_products),
            }
        return method

    def delete_method(self, method_id: str) -> bool:
        with self._sessions.begin() as session:
            row = session.get(ShippingMethodRecord, method_id)
            if row is None:
                return False
            session.delete(row)
            return True


# ── Rates ────────────────────────────────────────────────
def _tiers_to_json(tiers: list[RateTier]) -> list[dict]:
    return [
        {"min_bound": str(t.min_bound), "max_bound": _dec_str(t.max_bound), "rate": str(t.rate)}
        for t in tiers
    ]


def _tiers_from_json(rows) -> list[RateTier]:
    return [
        RateTier(
            min_bound=Decimal(t["min_bound"]),
            max_bound=_dec(t.get("max_bound")),
            rate=Decimal(t["rate"]),
        )
        for t in rows or []
    ]


def _rate_to_domain(row: ShippingRateRecord) -> ShippingRate:
    return ShippingRate(
        id=row.id,
        method_id=row.method_id,
        rate_type=RateType(row.rate_type),
        name=row.name or "",
        base_rate=_dec(row.base_rate) or Decimal("0"),
        weight_tiers=_tiers_from_json(row.weight_tiers),
        price_tiers=_tiers_from_json(row.price_tiers),
        per_item_rate=_dec(row.per_item_rate),
        free_shipping_threshold=_dec(row.free_shipping_threshold),
        handling_fee=_dec(row.handling_fee) or Decimal("0"),
        insurance_fee=_dec(row.insurance_fee) or Decimal("0"),
        fuel_surcharge_pct=_dec(row.fuel_surcharge_pct) or Decimal("0"),
        is_active=row.is_active,
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


class SqlRateRepository(_SqlRepository):
    def list_rates(self) -> list[ShippingRate]:
        with self._sessions() as session:
            rows = session.scalars(select(ShippingRateRecord).order_by(ShippingRateRecord.position))
            return [_rate_to_domain(r) for r in rows]

    def get_rate(self, rate_id: str) -> Optional[ShippingRate]:
        with self._sessions() as session:
            row = session.get(ShippingRateRecord, rate_id)
            return _rate_to_domain(row) if row else None

    def rates_for_method(self, method_id: str) -> list[ShippingRate]:
        with self._sessions() as session:
            rows = session.scalars(
                select(ShippingRateRecord)
                .where(
                    ShippingRateRecord.method_id == method_id,
                    ShippingRateRecord.is_active.is_(True),
                )
                .order_by(ShippingRateRecord.position)
            )
            return [_rate_to_domain(r) for r in rows]

    def save_rate(self, rate: ShippingRate) -> ShippingRate:
        with self._sessions.begin() as session:
            row = session.get(ShippingRateRecord, rate.id)
            if row is None:
                row = ShippingRateRecord(
                    id=rate.id,
                    position=self._next_position(session, ShippingRateRecord),
                    created_at=rate.created_at,
                )
                session.add(row)
            row.method_id = rate.method_id
            row.name = rate.name
            row.rate_type = RateType(rate.rate_type).value
            row.base_rate = rate.base_rate
            row.weight_tiers = _tiers_to_json(rate.weight_tiers)
            row.price_tiers = _tiers_to_json(rate.price_tiers)
            row.per_item_rate = rate.per_item_rate
            row.free_shipping_threshold = rate.free_shipping_threshold
            row.handling_fee = rate.handling_fee
            row.insurance_fee = rate.insurance_fee
            row.fuel_surcharge_pct = rate.fuel_surcharge_pct
            row.is_active = rate.is_active
        return rate

    def delete_rate(self, rate_id: str) -> bool:
        with self._sessions.begin() as session:
            row = session.get(ShippingRateRecord, rate_id)
            if row is None:
                return False
            session.delete(row)
            return True


# ── Tracking ─────────────────────────────────────────────
def _shipment_to_domain(row: ShipmentRecord) -> ShipmentTracking:
    return ShipmentTracking(
        id=row.id,
        order_id=row.order_id,
        tracking_number=row.tracking_number,
        carrier=row.carrier,
        method_id=row.method_id,
        status=ShipmentStatus(row.status),
        recipient_name=row.recipient_name,
        recipient_address=row.recipient_address or "",
        events=[
            TrackingEvent(
                timestamp=_utc(e.timestamp),
                status=ShipmentStatus(e.status),
                location=e.location or "",
                description=e.description or "",
                carrier_status=e.carrier_status,
            )
            for e in row.events
        ],
        anomalies=[
            TrackingAnomaly(
                kind=AnomalyKind(a["kind"]),
                event_index=a["event_index"],
                detected_at=as_utc(datetime.fromisoformat(a["detected_at"])),
                detail=a.get("detail", ""),
            )
            for a in row.anomalies or []
        ],
        current_location=row.current_location,
        estimated_delivery=_utc(row.estimated_delivery),
        actual_delivery=_utc(row.actual_delivery),
        created_at=_utc(row.created_at),
        updated_at=_utc(row.updated_at),
    )


def _write_shipment(row: ShipmentRecord, tracking: ShipmentTracking) -> None:
    """Copy derived fields and any not-yet-stored events onto the row."""
    row.status = tracking.status.value
    row.current_location = tracking.current_location
    row.estimated_delivery = tracking.estimated_delivery
    row.actual_delivery = tracking.actual_delivery
    row.updated_at = tracking.updated_at
    row.anomalies = [
        {
            "kind": a.kind.value,
            "event_index": a.event_index,
            "detected_at": a.detected_at.isoformat(),
            "detail": a.detail,
        }
        for a in tracking.anomalies
    ]
    stored = len(row.events)
    if len(tracking.events) < stored:
        raise ValueError(f"Tracking events for {tracking.tracking_number} cannot be removed")
    for sequence, event in enumerate(tracking.events[stored:], start=stored):
        row.events.append(TrackingEventRecord(
            sequence=sequence,
            timestamp=event.timestamp,
            status=ShipmentStatus(event.status).value,
            location=event.location,
            description=event.description,
            carrier_status=event.carrier_status,
        ))


class SqlTrackingRepository(_SqlRepository):
    """Tracking records; ``update`` is a serialized read-modify-write.

    Updates to one tracking number queue on an in-process lock as well as the
    row lock, since SQLite ignores ``FOR UPDATE``. When every session shares
    one connection (in-memory SQLite) all access goes through a single lock,
    because a transaction on that connection is visible to every thread.
    """

    def __init__(self, session_factory: sessionmaker):
        super().__init__(session_factory)
        self._record_locks = KeyedLocks()
        bind = session_factory.kw.get("bind")
        self._single_connection = bind is not None and shares_one_connection(bind)

    @contextmanager
    def _locked(self, tracking_number: Optional[str] = None):
        if self._single_connection:
            with self._record_locks.hold("*"):
                yield
        elif tracking_number is not None:
            with self._record_locks.hold(tracking_number):
                yield
        else:
            yield

    def add(self, tracking: ShipmentTracking) -> None:
        try:
            with self._locked(tracking.tracking_number), self._sessions.begin() as session:
                if session.get(ShipmentRecord, tracking.tracking_number) is not None:
                    raise DuplicateTrackingNumberError(tracking.tracking_number)
                row = ShipmentRecord(
                    tracking_number=tracking.tracking_number,
                    id=tracking.id,
                    order_id=tracking.order_id,
                    carrier=tracking.carrier,
                    method_id=tracking.method_id,
                    recipient_name=tracking.recipient_name,
                    recipient_address=tracking.recipient_address,
                    created_at=tracking.created_at,
                )
                session.add(row)
                _write_shipment(row, tracking)
        except IntegrityError as e:
            raise DuplicateTrackingNumberError(tracking.tracking_number) from e

    def get(self, tracking_number: str) -> Optional[ShipmentTracking]:
        with self._locked(), self._sessions() as session:
            row = session.get(
                ShipmentRecord, tracking_number, options=[selectinload(ShipmentRecord.events)]
            )
            return _shipment_to_domain(row) if row else None

    def get_by_order(self, order_id: str) -> Optional[ShipmentTracking]:
        with self._locked(), self._sessions() as session:
            row = session.scalars(
                select(ShipmentRecord)
                .options(selectinload(ShipmentRecord.events))
                .where(ShipmentRecord.order_id == order_id)
                .order_by(ShipmentRecord.created_at.desc())
                .limit(1)
            ).first()
            return _shipment_to_domain(row) if row else None

    def list(self, status: Optional[ShipmentStatus] = None) -> list[ShipmentTracking]:
        with self._locked(), self._sessions() as session:
            stmt = select(ShipmentRecord).options(selectinload(ShipmentRecord.events))
            if status:
                stmt = stmt.where(ShipmentRecord.status == ShipmentStatus(status).value)
            stmt = stmt.order_by(ShipmentRecord.created_at)
            return [_shipment_to_domain(r) for r in session.scalars(stmt)]

    def update(self, tracking_number: str, mutate: TrackingMutation) -> ShipmentTracking:
        attempt = 1
        while True:
            try:
                with self._locked(tracking_number):
                    return self._update_once(tracking_number, mutate)
            except (IntegrityError, OperationalError, StaleDataError) as e:
                if attempt >= UPDATE_ATTEMPTS:
                    raise
                logger.warning(
                    "Retrying update of %s after write conflict (attempt %d): %s",
                    tracking_number, attempt, e,
                )
                attempt += 1

    def _update_once(self, tracking_number: str, mutate: TrackingMutation) -> ShipmentTracking:
        with self._sessions.begin() as session:
            row = session.scalars(
                select(ShipmentRecord)
                .options(selectinload(ShipmentRecord.events))
                .where(ShipmentRecord.tracking_number == tracking_number)
                .with_for_update()
            ).first()
            if row is None:
                raise ShipmentNotFoundError(tracking_number)
            tracking = mutate(_shipment_to_domain(row))
            _write_shipment(row, tracking)
            return tracking
