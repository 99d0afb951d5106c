"""Storage contracts for configuration and tracking, plus in-memory implementations.

The engine only talks to these protocols. ``InMemory*`` classes back tests,
the CLI and single-process deployments; ``shipping_engine.services.sql_store``
provides SQLAlchemy-backed versions.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Callable, Iterator, Optional, Protocol

from shipping_engine.exceptions import DuplicateTrackingNumberError, ShipmentNotFoundError
from shipping_engine.services.carriers import ShipmentStatus
from shipping_engine.services.methods import ShippingMethod
from shipping_engine.services.rates import ShippingRate
from shipping_engine.services.tracking import ShipmentTracking
from shipping_engine.services.zones import ShippingZone

TrackingMutation = Callable[[ShipmentTracking], ShipmentTracking]


class ZoneRepository(Protocol):
    def list_zones(self) -> list[ShippingZone]: ...
    def get_zone(self, zone_id: str) -> Optional[ShippingZone]: ...
    def save_zone(self, zone: ShippingZone) -> ShippingZone: ...
    def delete_zone(self, zone_id: str) -> bool: ...


class MethodRepository(Protocol):
    def list_methods(self) -> list[ShippingMethod]: ...
    def get_method(self, method_id: str) -> Optional[ShippingMethod]: ...
    def methods_for_zone(self, zone_id: str) -> list[ShippingMethod]: ...
    def save_method(self, method: ShippingMethod) -> ShippingMethod: ...
    def delete_method(self, method_id: str) -> bool: ...


class RateRepository(Protocol):
    def list_rates(self) -> list[ShippingRate]: ...
    def get_rate(self, rate_id: str) -> Optional[ShippingRate]: ...
    def rates_for_method(self, method_id: str) -> list[ShippingRate]: ...
    def save_rate(self, rate: ShippingRate) -> ShippingRate: ...
    def delete_rate(self, rate_id: str) -> bool: ...


class TrackingRepository(Protocol):
    def add(self, tracking: ShipmentTracking) -> None: ...
    def get(self, tracking_number: str) -> Optional[ShipmentTracking]: ...
    def get_by_order(self, order_id: str) -> Optional[ShipmentTracking]: ...
    def list(self, status: Optional[ShipmentStatus] = None) -> list[ShipmentTracking]: ...

    def update(self, tracking_number: str, mutate: TrackingMutation) -> ShipmentTracking:
        """Atomically load, mutate and store one record; serialized per tracking number."""
        ...


class KeyedLocks:
    """One lock per key, dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # key -> [lock, users]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if not entry[1]:
                    del self._locks[key]


class _InMemoryStore:
    """Insertion-ordered dict of deep copies guarded by one lock."""

    def __init__(self):
        self._items: dict[str, object] = {}
        self._lock = threading.RLock()

    def _all(self) -> list:
        with self._lock:
            return [copy.deepcopy(v) for v in self._items.values()]

    def _get(self, key: str):
        with self._lock:
            item = self._items.get(key)
            return copy.deepcopy(item) if item is not None else None

    def _put(self, key: str, item):
        with self._lock:
            self._items[key] = copy.deepcopy(item)
        return item

    def _delete(self, key: str) -> bool:
        with self._lock:
            return self._items.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


class InMemoryZoneRepository(_InMemoryStore):
    def list_zones(self) -> list[ShippingZone]:
        return self._all()

    def get_zone(self, zone_id: str) -> Optional[ShippingZone]:
        return self._get(zone_id)

    def save_zone(self, zone: ShippingZone) -> ShippingZone:
        return self._put(zone.id, zone)

    def delete_zone(self, zone_id: str) -> bool:
        return self._delete(zone_id)


class InMemoryMethodRepository(_InMemoryStore):
    def list_methods(self) -> list[ShippingMethod]:
        return self._all()

    def get_method(self, method_id: str) -> Optional[ShippingMethod]:
        return self._get(method_id)

    def methods_for_zone(self, zone_id: str) -> list[ShippingMethod]:
        return [m for m in self._all() if m.zone_id == zone_id and m.is_active]

    def save_method(self, method: ShippingMethod) -> ShippingMethod:
        return self._put(method.id, method)

    def delete_method(self, method_id: str) -> bool:
        return self._delete(method_id)


class InMemoryRateRepository(_InMemoryStore):
    def list_rates(self) -> list[ShippingRate]:
        return self._all()

    def get_rate(self, rate_id: str) -> Optional[ShippingRate]:
        return self._get(rate_id)

    def rates_for_method(self, method_id: str) -> list[ShippingRate]:
        return [r for r in self._all() if r.method_id == method_id and r.is_active]

    def save_rate(self, rate: ShippingRate) -> ShippingRate:
        return self._put(rate.id, rate)

    def delete_rate(self, rate_id: str) -> bool:
        return self._delete(rate_id)


class InMemoryTrackingRepository(_InMemoryStore):
    """Tracking records keyed by tracking number with one lock per record."""

    def __init__(self):
        super().__init__()
        self._record_locks = KeyedLocks()

    def add(self, tracking: ShipmentTracking) -> None:
        with self._lock:
            if tracking.tracking_number in self._items:
                raise DuplicateTrackingNumberError(tracking.tracking_number)
            self._put(tracking.tracking_number, tracking)

    def get(self, tracking_number: str) -> Optional[ShipmentTracking]:
        return self._get(tracking_number)

    def get_by_order(self, order_id: str) -> Optional[ShipmentTracking]:
        matches = [t for t in self._all() if t.order_id == order_id]
        if not matches:
            return None
        return max(matches, key=lambda t: t.created_at)

    def list(self, status: Optional[ShipmentStatus] = None) -> list[ShipmentTracking]:
        result = self._all()
        if status:
            result = [t for t in result if t.status == status]
        return result

    def update(self, tracking_number: str, mutate: TrackingMutation) -> ShipmentTracking:
        with self._lock:
            if tracking_number not in self._items:
                raise ShipmentNotFoundError(tracking_number)
        with self._record_locks.hold(tracking_number):
            tracking = mutate(self._get(tracking_number))
            self._put(tracking_number, tracking)
            return copy.deepcopy(tracking)
