"""Shipping-Engine FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from shipping_engine import __version__
from shipping_engine.api import config_routes, quotes, shipments
from shipping_engine.api.deps import get_services
from shipping_engine.config import get_settings

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Build repositories and load configuration before serving
    get_services()
    yield


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="Shipping quotation and shipment tracking: zones, methods, "
                "tiered rates, ranked quotes and append-only tracking timelines",
    lifespan=lifespan,
)

# Register routers
app.include_router(quotes.router, prefix="/api/v1")
app.include_router(shipments.router, prefix="/api/v1")
app.include_router(config_routes.router, prefix="/api/v1")


@app.get("/health")
async def health():
    return {"status": "ok", "service": settings.app_name, "version": __version__}
