"""Shipment tracking API."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from shipping_engine.api.deps import ShippingServices, get_services
from shipping_engine.exceptions import (
    CarrierUnavailableError,
    MethodNotFoundError,
    ShipmentNotFoundError,
)
from shipping_engine.schemas import (
    AnomalyReportOut,
    CarrierEventIn,
    ShipmentCreate,
    ShipmentOut,
    TrackingAnomalyOut,
    TrackingEventIn,
)
from shipping_engine.services.carriers import ShipmentStatus
from shipping_engine.services.tracking import Recipient, TrackingEvent

router = APIRouter(prefix="/shipments", tags=["shipments"])


def _out(tracking) -> ShipmentOut:
    return ShipmentOut.model_validate(tracking)


@router.post("/", response_model=ShipmentOut, status_code=201)
def create_shipment(body: ShipmentCreate, services: ShippingServices = Depends(get_services)):
    method = services.methods.get_method(body.method_id)
    try:
        if method is None:
            raise MethodNotFoundError(body.method_id)
        tracking = services.tracker.create_shipment(
            body.order_id,
            method,
            Recipient(name=body.recipient_name, address=body.recipient_address),
            quote=body.quote,
        )
    except MethodNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CarrierUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _out(tracking)


@router.get("/", response_model=list[ShipmentOut])
def list_shipments(
    status: Optional[ShipmentStatus] = None,
    services: ShippingServices = Depends(get_services),
):
    return [_out(t) for t in services.tracker.list_shipments(status)]


@router.get("/stats")
def shipment_stats(services: ShippingServices = Depends(get_services)):
    return services.tracker.stats()


@router.get("/anomalies", response_model=list[AnomalyReportOut])
def list_anomalies(services: ShippingServices = Depends(get_services)):
    return [
        AnomalyReportOut(
            tracking_number=number,
            anomaly=TrackingAnomalyOut.model_validate(anomaly),
        )
        for number, anomaly in services.tracker.list_anomalies()
    ]


@router.get("/by-order/{order_id}", response_model=ShipmentOut)
def get_by_order(order_id: str, services: ShippingServices = Depends(get_services)):
    try:
        return _out(services.tracker.get_tracking_by_order(order_id))
    except ShipmentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.get("/{tracking_number}", response_model=ShipmentOut)
def get_tracking(tracking_number: str, services: ShippingServices = Depends(get_services)):
    try:
        return _out(services.tracker.get_tracking(tracking_number))
    except ShipmentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{tracking_number}/events", response_model=ShipmentOut)
def append_event(
    tracking_number: str,
    body: TrackingEventIn,
    services: ShippingServices = Depends(get_services),
):
    """Manual or integration status update."""
    event = TrackingEvent(
        timestamp=body.timestamp or services.tracker.now(),
        status=body.status,
        location=body.location,
        description=body.description,
        carrier_status=body.carrier_status,
    )
    try:
        return _out(services.tracker.append_event(tracking_number, event))
    except ShipmentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{tracking_number}/carrier-events", response_model=ShipmentOut)
def carrier_event(
    tracking_number: str,
    body: CarrierEventIn,
    services: ShippingServices = Depends(get_services),
):
    """Carrier webhook delivery with a carrier-native status string."""
    try:
        tracking = services.tracker.ingest_carrier_event(
            tracking_number,
            body.carrier_status,
            location=body.location,
            description=body.description,
            timestamp=body.timestamp,
        )
    except ShipmentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CarrierUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return _out(tracking)
