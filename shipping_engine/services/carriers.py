"""Carrier adapter contract and the stub used when no integration is wired in.

Real carrier integrations (label purchase, live rates) live outside this
package. The engine only needs two capabilities from a carrier: issuing
tracking numbers and translating carrier-native status text into
``ShipmentStatus``.
"""

from __future__ import annotations

import re
import secrets
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol


class ShipmentStatus(str, Enum):
    """Lifecycle states of a shipment."""
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    FAILED = "failed"
    RETURNED = "returned"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {ShipmentStatus.DELIVERED, ShipmentStatus.FAILED, ShipmentStatus.RETURNED}
)


class ShippingCarrier(str, Enum):
    """Carriers with built-in settings."""
    DHL = "dhl"
    FEDEX = "fedex"
    UPS = "ups"
    USPS = "usps"
    ARAMEX = "aramex"
    POSTA_KENYA = "posta_kenya"
    CUSTOM = "custom"


class CarrierAdapter(Protocol):
    """What the engine needs from a carrier integration."""

    def generate_tracking_number(self, carrier: str) -> str:
        ...

    def normalize_status(self, carrier_status: str) -> ShipmentStatus:
        ...


@dataclass
class CarrierSettings:
    """Per-carrier account and capability settings."""
    carrier: str
    is_active: bool = True
    is_test_mode: bool = True
    supported_services: list[str] = field(default_factory=list)
    default_service: Optional[str] = None
    real_time_rates: bool = False
    tracking: bool = True
    label_generation: bool = False
    pickup_scheduling: bool = False


# Ordered: first matching phrase wins, so more specific phrases come first
_STATUS_PHRASES: list[tuple[str, ShipmentStatus]] = [
    ("out for delivery", ShipmentStatus.OUT_FOR_DELIVERY),
    ("with delivery courier", ShipmentStatus.OUT_FOR_DELIVERY),
    ("delivery failed", ShipmentStatus.FAILED),
    ("undelivered", ShipmentStatus.FAILED),
    ("not delivered", ShipmentStatus.FAILED),
    ("failed", ShipmentStatus.FAILED),
    ("undeliverable", ShipmentStatus.FAILED),
    ("lost", ShipmentStatus.FAILED),
    ("returned", ShipmentStatus.RETURNED),
    ("return to sender", ShipmentStatus.RETURNED),
    ("delivered", ShipmentStatus.DELIVERED),
    ("picked up", ShipmentStatus.SHIPPED),
    ("shipped", ShipmentStatus.SHIPPED),
    ("dispatched", ShipmentStatus.SHIPPED),
    ("in transit", ShipmentStatus.IN_TRANSIT),
    ("arrived at", ShipmentStatus.IN_TRANSIT),
    ("departed", ShipmentStatus.IN_TRANSIT),
    ("customs", ShipmentStatus.IN_TRANSIT),
    ("label created", ShipmentStatus.PROCESSING),
    ("processing", ShipmentStatus.PROCESSING),
    ("shipment information received", ShipmentStatus.PENDING),
    ("pending", ShipmentStatus.PENDING),
]

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


class StubCarrierAdapter:
    """Offline adapter: local tracking numbers and phrase-based status mapping."""

    def __init__(self):
        self._issued: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    def generate_tracking_number(self, carrier: str) -> str:
        """Carrier prefix + timestamp fragment + random fragment, unique per carrier."""
        prefix = (_NON_ALNUM.sub("", carrier.lower())[:3] or "SHP").upper()
        with self._lock:
            issued = self._issued.setdefault(carrier, set())
            while True:
                stamp = str(int(time.time() * 1000))[-6:]
                number = f"{prefix}{stamp}{secrets.token_hex(5).upper()}"
                if number not in issued:
                    issued.add(number)
                    return number

    def normalize_status(self, carrier_status: str) -> ShipmentStatus:
        text = " ".join(_NON_ALNUM.sub(" ", carrier_status.lower()).split())
        try:
            return ShipmentStatus(text.replace(" ", "_"))
        except ValueError:
            pass
        for phrase, status in _STATUS_PHRASES:
            if phrase in text:
                return status
        return ShipmentStatus.IN_TRANSIT


class CarrierRegistry:
    """Carrier id -> adapter and settings, with a shared fallback adapter."""

    def __init__(self, fallback: Optional[CarrierAdapter] = None):
        self._fallback = fallback or StubCarrierAdapter()
        self._adapters: dict[str, CarrierAdapter] = {}
        self._settings: dict[str, CarrierSettings] = {
            c.value: CarrierSettings(carrier=c.value) for c in ShippingCarrier
        }

    def register(
        self,
        carrier: str,
        adapter: CarrierAdapter,
        settings: Optional[CarrierSettings] = None,
    ) -> None:
        self._adapters[carrier] = adapter
        if settings is not None:
            self._settings[carrier] = settings

    def adapter_for(self, carrier: str) -> CarrierAdapter:
        return self._adapters.get(carrier, self._fallback)

    def get_settings(self, carrier: str) -> Optional[CarrierSettings]:
        return self._settings.get(carrier)

    def save_settings(self, settings: CarrierSettings) -> None:
        self._settings[settings.carrier] = settings

    def all_settings(self) -> list[CarrierSettings]:
        return list(self._settings.values())
