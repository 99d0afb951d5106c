"""Shipping data models for the SQL storage backend."""

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, Numeric, String, Text, JSON,
)
from sqlalchemy.orm import relationship

from shipping_engine.database import Base
from shipping_engine.services.clock import utcnow


class ShippingZoneRecord(Base):
    """Destination grouping sharing method eligibility."""
    __tablename__ = "shipping_zones"

    id = Column(String(100), primary_key=True)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(200), nullable=False)
    description = Column(Text, default="")
    countries = Column(JSON, default=list)
    regions = Column(JSON, default=list)
    postal_codes = Column(JSON, default=list)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ShippingMethodRecord(Base):
    """Shipping service offered in one zone."""
    __tablename__ = "shipping_methods"

    id = Column(String(100), primary_key=True)
    position = Column(Integer, nullable=False, default=0)
    name = Column(String(200), nullable=False)
    type = Column(String(30), nullable=False)
    carrier = Column(String(50), nullable=False)
    # Not a foreign key: dangling zone references are reported by the auditor
    zone_id = Column(String(100), nullable=False, index=True)
    description = Column(Text, default="")
    estimated_days_min = Column(Integer, nullable=False)
    estimated_days_max = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True)
    cutoff_time = Column(String(5), nullable=True)
    features = Column(JSON, default=list)
    restrictions = Column(JSON, default=dict)  # {min_weight, max_weight, min_value, max_value, excluded_products}
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ShippingRateRecord(Base):
    """Pricing rule attached to a method."""
    __tablename__ = "shipping_rates"

    id = Column(String(100), primary_key=True)
    position = Column(Integer, nullable=False, default=0)
    method_id = Column(String(100), nullable=False, index=True)
    name = Column(String(200), default="")
    rate_type = Column(String(20), nullable=False)
    base_rate = Column(Numeric(12, 2), default=0)
    weight_tiers = Column(JSON, default=list)  # [{min_bound, max_bound, rate}] as strings
    price_tiers = Column(JSON, default=list)
    per_item_rate = Column(Numeric(12, 2), nullable=True)
    free_shipping_threshold = Column(Numeric(12, 2), nullable=True)
    handling_fee = Column(Numeric(12, 2), default=0)
    insurance_fee = Column(Numeric(12, 2), default=0)
    fuel_surcharge_pct = Column(Numeric(6, 2), default=0)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class ShipmentRecord(Base):
    """Tracking record; events hang off it in append order."""
    __tablename__ = "shipments"

    tracking_number = Column(String(100), primary_key=True)
    id = Column(String(100), unique=True, nullable=False)
    order_id = Column(String(100), nullable=False, index=True)
    carrier = Column(String(50), nullable=False)
    method_id = Column(String(100), nullable=False)
    status = Column(String(30), nullable=False, index=True)
    current_location = Column(String(300), nullable=True)
    estimated_delivery = Column(DateTime(timezone=True), nullable=True)
    actual_delivery = Column(DateTime(timezone=True), nullable=True)
    recipient_name = Column(String(300), nullable=False)
    recipient_address = Column(Text, default="")
    anomalies = Column(JSON, default=list)  # [{kind, event_index, detected_at, detail}]
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    events = relationship(
        "TrackingEventRecord",
        back_populates="shipment",
        order_by="TrackingEventRecord.sequence",
        cascade="all, delete-orphan",
    )


class TrackingEventRecord(Base):
    """One append-only tracking event."""
    __tablename__ = "tracking_events"

    tracking_number = Column(
        String(100), ForeignKey("shipments.tracking_number"), primary_key=True
    )
    sequence = Column(Integer, primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(30), nullable=False)
    location = Column(String(300), default="")
    description = Column(Text, default="")
    carrier_status = Column(String(300), nullable=True)

    shipment = relationship("ShipmentRecord", back_populates="events")
