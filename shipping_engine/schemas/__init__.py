"""Pydantic schemas for the shipping API and configuration documents."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from shipping_engine.services.carriers import ShipmentStatus
from shipping_engine.services.methods import ShippingMethodType
from shipping_engine.services.rates import RateType
from shipping_engine.services.tracking import AnomalyKind


# ── Configuration ────────────────────────────────────────
class ZoneIn(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    countries: list[str] = Field(default_factory=list)
    regions: list[str] = Field(default_factory=list)
    postal_codes: list[str] = Field(default_factory=list)
    is_active: bool = True


class RestrictionsIn(BaseModel):
    min_weight: Optional[Decimal] = None
    max_weight: Optional[Decimal] = None
    min_value: Optional[Decimal] = None
    max_value: Optional[Decimal] = None
    excluded_products: list[str] = Field(default_factory=list)


class MethodIn(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    type: ShippingMethodType
    carrier: str
    zone_id: str
    estimated_days_min: int = Field(..., ge=0)
    estimated_days_max: int = Field(..., ge=0)
    description: str = ""
    is_active: bool = True
    cutoff_time: Optional[str] = Field(None, pattern=r"^\d{1,2}:\d{2}$")
    features: list[str] = Field(default_factory=list)
    restrictions: RestrictionsIn = Field(default_factory=RestrictionsIn)

    @model_validator(mode="after")
    def _check_days(self):
        if self.estimated_days_min > self.estimated_days_max:
            raise ValueError("estimated_days_min must not exceed estimated_days_max")
        return self


class TierIn(BaseModel):
    min_bound: Decimal = Field(..., ge=0)
    max_bound: Optional[Decimal] = None
    rate: Decimal = Field(..., ge=0)


class RateIn(BaseModel):
    id: str = Field(..., min_length=1)
    method_id: str
    rate_type: RateType
    name: str = ""
    base_rate: Decimal = Decimal("0")
    weight_tiers: list[TierIn] = Field(default_factory=list)
    price_tiers: list[TierIn] = Field(default_factory=list)
    per_item_rate: Optional[Decimal] = None
    free_shipping_threshold: Optional[Decimal] = None
    handling_fee: Decimal = Decimal("0")
    insurance_fee: Decimal = Decimal("0")
    fuel_surcharge_pct: Decimal = Decimal("0")
    is_active: bool = True


class ConfigurationDocument(BaseModel):
    """Zones, methods and rates as one JSON document."""
    zones: list[ZoneIn] = Field(default_factory=list)
    methods: list[MethodIn] = Field(default_factory=list)
    rates: list[RateIn] = Field(default_factory=list)


class ConfigurationIssueOut(BaseModel):
    entity: str
    entity_id: str
    message: str
    method_id: Optional[str] = None

    model_config = {"from_attributes": True}


# ── Quotes ───────────────────────────────────────────────
class QuoteRequest(BaseModel):
    country_code: str = Field(..., min_length=1)
    region: Optional[str] = None
    postal_code: Optional[str] = None
    order_value: Decimal = Field(..., ge=0)
    weight: Decimal = Field(..., ge=0)
    item_count: int = Field(1, ge=0)
    product_ids: list[str] = Field(default_factory=list)


class DeliveryWindowOut(BaseModel):
    earliest: datetime
    latest: datetime

    model_config = {"from_attributes": True}


class QuoteOut(BaseModel):
    method_id: str
    method_name: str
    type: ShippingMethodType
    carrier: str
    zone_id: str
    cost: Decimal
    estimated_days_min: int
    estimated_days_max: int
    delivery_window: Optional[DeliveryWindowOut] = None
    features: list[str] = Field(default_factory=list)
    is_free_shipping: bool = False
    is_recommended: bool = False

    model_config = {"from_attributes": True}


class ZoneOut(BaseModel):
    id: str
    name: str
    description: str
    countries: list[str]
    regions: list[str]
    postal_codes: list[str]
    is_active: bool

    model_config = {"from_attributes": True}


# ── Shipments ────────────────────────────────────────────
class ShipmentCreate(BaseModel):
    order_id: str = Field(..., min_length=1)
    method_id: str = Field(..., min_length=1)
    recipient_name: str = Field(..., min_length=1)
    recipient_address: str = ""
    quote: Optional[QuoteOut] = None


class TrackingEventIn(BaseModel):
    status: ShipmentStatus
    location: str = ""
    description: str = ""
    timestamp: Optional[datetime] = None
    carrier_status: Optional[str] = None


class CarrierEventIn(BaseModel):
    carrier_status: str = Field(..., min_length=1)
    location: str = ""
    description: str = ""
    timestamp: Optional[datetime] = None


class TrackingEventOut(BaseModel):
    timestamp: datetime
    status: ShipmentStatus
    location: str
    description: str
    carrier_status: Optional[str] = None

    model_config = {"from_attributes": True}


class TrackingAnomalyOut(BaseModel):
    kind: AnomalyKind
    event_index: int
    detected_at: datetime
    detail: str

    model_config = {"from_attributes": True}


class ShipmentOut(BaseModel):
    id: str
    order_id: str
    tracking_number: str
    carrier: str
    method_id: str
    status: ShipmentStatus
    current_location: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    actual_delivery: Optional[datetime] = None
    recipient_name: str
    recipient_address: str
    events: list[TrackingEventOut]
    anomalies: list[TrackingAnomalyOut]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AnomalyReportOut(BaseModel):
    tracking_number: str
    anomaly: TrackingAnomalyOut
