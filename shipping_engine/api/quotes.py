"""Shipping quote and zone lookup API."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from shipping_engine.api.deps import ShippingServices, get_services
from shipping_engine.schemas import QuoteOut, QuoteRequest, ZoneOut
from shipping_engine.services.zones import Destination

router = APIRouter(tags=["quotes"])


@router.post("/quotes", response_model=list[QuoteOut])
def get_quotes(body: QuoteRequest, services: ShippingServices = Depends(get_services)):
    """Ranked shipping options; an empty list means nothing ships to the destination."""
    try:
        destination = Destination(body.country_code, body.region, body.postal_code)
        quotes = services.quotes.get_quotes(
            destination,
            order_value=body.order_value,
            weight=body.weight,
            item_count=body.item_count,
            product_ids=body.product_ids,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [QuoteOut.model_validate(q) for q in quotes]


@router.get("/zones/resolve", response_model=list[ZoneOut])
def resolve_zones(
    country_code: str,
    region: Optional[str] = None,
    postal_code: Optional[str] = None,
    services: ShippingServices = Depends(get_services),
):
    try:
        zones = services.quotes.resolver.resolve_zones(country_code, region, postal_code)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [ZoneOut.model_validate(z) for z in zones]
