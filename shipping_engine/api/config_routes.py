"""Shipping configuration API: load, export and audit zones/methods/rates."""

from fastapi import APIRouter, Depends

from shipping_engine.api.deps import ShippingServices, get_services
from shipping_engine.schemas import ConfigurationDocument, ConfigurationIssueOut
from shipping_engine.services.config_io import apply_document, export_document

router = APIRouter(prefix="/config", tags=["config"])


@router.get("/", response_model=ConfigurationDocument)
def get_configuration(services: ShippingServices = Depends(get_services)):
    return export_document(services.zones, services.methods, services.rates)


@router.put("/")
def replace_configuration(
    body: ConfigurationDocument,
    services: ShippingServices = Depends(get_services),
):
    counts = apply_document(body, services.zones, services.methods, services.rates)
    issues = services.auditor.audit()
    return {"loaded": counts, "issues": len(issues)}


@router.get("/issues", response_model=list[ConfigurationIssueOut])
def configuration_issues(services: ShippingServices = Depends(get_services)):
    return [ConfigurationIssueOut.model_validate(i) for i in services.auditor.audit()]
