"""Shipping-Engine CLI management tool.

Usage:
    python -m cli quote --country KE --weight 3 --value 4000 --items 2
    python -m cli zones resolve --country KE --region NBO --postal 00100
    python -m cli config validate shipping.json
    python -m cli config load shipping.json
    python -m cli config export -o shipping.json
    python -m cli shipments show DHL123456ABCDEF
    python -m cli shipments anomalies
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from pydantic import ValidationError

from shipping_engine.api.deps import build_services
from shipping_engine.config import get_settings
from shipping_engine.exceptions import ShipmentNotFoundError
from shipping_engine.services.audit import ConfigurationAuditor
from shipping_engine.services.config_io import apply_document, export_document, read_document
from shipping_engine.services.repositories import (
    InMemoryMethodRepository,
    InMemoryRateRepository,
    InMemoryZoneRepository,
)
from shipping_engine.services.zones import Destination


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="shipping-cli",
        description="Shipping-Engine CLI",
    )
    sub = parser.add_subparsers(dest="command", help="Top-level command")

    # ── Quotes ───────────────────────────────────────────
    quote = sub.add_parser("quote", help="Get shipping quotes")
    quote.add_argument("--country", required=True, help="Destination country code")
    quote.add_argument("--region", help="Destination region/state code")
    quote.add_argument("--postal", help="Destination postal code")
    quote.add_argument("--weight", type=str, required=True, help="Weight in kg")
    quote.add_argument("--value", type=str, required=True, help="Order value")
    quote.add_argument("--items", type=int, default=1, help="Item count")

    # ── Zones ────────────────────────────────────────────
    zones_parser = sub.add_parser("zones", help="Shipping zones")
    zones_sub = zones_parser.add_subparsers(dest="action")

    resolve = zones_sub.add_parser("resolve", help="Zones serving a destination")
    resolve.add_argument("--country", required=True, help="Destination country code")
    resolve.add_argument("--region", help="Destination region/state code")
    resolve.add_argument("--postal", help="Destination postal code")

    # ── Config ───────────────────────────────────────────
    config_parser = sub.add_parser("config", help="Zones/methods/rates configuration")
    config_sub = config_parser.add_subparsers(dest="action")

    validate = config_sub.add_parser("validate", help="Audit a configuration file")
    validate.add_argument("file", help="JSON configuration file")

    load = config_sub.add_parser("load", help="Replace stored configuration with a file")
    load.add_argument("file", help="JSON configuration file")

    export = config_sub.add_parser("export", help="Print stored configuration as JSON")
    export.add_argument("--output", "-o", help="Output file path")

    # ── Shipments ────────────────────────────────────────
    ship_parser = sub.add_parser("shipments", help="Shipment tracking")
    ship_sub = ship_parser.add_subparsers(dest="action")

    show = ship_sub.add_parser("show", help="Show a tracking record")
    show.add_argument("tracking_number", help="Tracking number")

    ship_sub.add_parser("anomalies", help="List flagged tracking anomalies")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return

    handlers = {
        "quote": handle_quote,
        "zones": handle_zones,
        "config": handle_config,
        "shipments": handle_shipments,
    }
    handler = handlers.get(args.command)
    if handler:
        handler(args)
    else:
        parser.print_help()


# ── Command Handlers ────────────────────────────────────

def handle_quote(args):
    services = build_services(get_settings())
    try:
        quotes = services.quotes.get_quotes(
            Destination(args.country, args.region, args.postal),
            order_value=Decimal(args.value),
            weight=Decimal(args.weight),
            item_count=args.items,
        )
    except (ValueError, InvalidOperation) as e:
        print(f"Invalid input: {e}")
        sys.exit(1)

    if not quotes:
        print("No shipping available for this destination.")
        return
    print(f"{'Method':<26} {'Carrier':<12} {'Cost':>10} {'Days':<8} {'Notes'}")
    print("-" * 70)
    for q in quotes:
        notes = []
        if q.is_recommended:
            notes.append("recommended")
        if q.is_free_shipping:
            notes.append("free")
        days = f"{q.estimated_days_min}-{q.estimated_days_max}"
        print(f"{q.method_name:<26} {q.carrier:<12} {q.cost:>10} {days:<8} {', '.join(notes)}")


def handle_zones(args):
    if args.action == "resolve":
        services = build_services(get_settings())
        zones = services.quotes.resolver.resolve_zones(args.country, args.region, args.postal)
        if not zones:
            print(f"No active zone serves {args.country}.")
            return
        for zone in zones:
            print(f"{zone.id:<24} {zone.name}")
    else:
        print("Usage: shipping-cli zones resolve --country KE")


def _read(path: str):
    if not Path(path).exists():
        print(f"File not found: {path}")
        sys.exit(1)
    try:
        return read_document(path)
    except (ValidationError, json.JSONDecodeError) as e:
        print(f"Invalid configuration file: {e}")
        sys.exit(1)


def _stored_services(command: str):
    """Services on persistent storage; the memory backend forgets everything on exit."""
    settings = get_settings()
    if settings.storage_backend != "sql":
        print(f"'{command}' requires storage_backend=sql (set SHIPPING_STORAGE_BACKEND=sql)")
        sys.exit(1)
    return build_services(settings)


def handle_config(args):
    if args.action == "validate":
        document = _read(args.file)
        zones, methods, rates = (
            InMemoryZoneRepository(), InMemoryMethodRepository(), InMemoryRateRepository()
        )
        apply_document(document, zones, methods, rates)
        issues = ConfigurationAuditor(zones, methods, rates).audit()
        if not issues:
            print("No configuration issues found.")
            return
        print(f"Found {len(issues)} issue(s):")
        for issue in issues:
            print(f"  {issue.entity} {issue.entity_id}: {issue.message}")
        sys.exit(1)

    elif args.action == "load":
        document = _read(args.file)
        services = _stored_services("config load")
        counts = apply_document(document, services.zones, services.methods, services.rates)
        print(f"Loaded {counts['zones']} zones, {counts['methods']} methods, {counts['rates']} rates")

    elif args.action == "export":
        services = build_services(get_settings())
        document = export_document(services.zones, services.methods, services.rates)
        content = document.model_dump_json(indent=2)
        if args.output:
            Path(args.output).write_text(content, encoding="utf-8")
            print(f"Configuration saved to {args.output}")
        else:
            print(content)

    else:
        print("Usage: shipping-cli config {validate|load|export}")


def handle_shipments(args):
    if args.action == "show":
        services = _stored_services("shipments show")
        try:
            tracking = services.tracker.get_tracking(args.tracking_number)
        except ShipmentNotFoundError as e:
            print(str(e))
            sys.exit(1)
        print(f"{tracking.tracking_number} ({tracking.carrier}) order {tracking.order_id}")
        print(f"  Status:    {tracking.status.value}")
        print(f"  Location:  {tracking.current_location or '-'}")
        if tracking.estimated_delivery:
            print(f"  ETA:       {tracking.estimated_delivery.isoformat()}")
        if tracking.actual_delivery:
            print(f"  Delivered: {tracking.actual_delivery.isoformat()}")
        for event in tracking.events:
            print(f"  {event.timestamp.isoformat()}  {event.status.value:<17} {event.location}  {event.description}")
        for anomaly in tracking.anomalies:
            print(f"  ! {anomaly.kind.value}: {anomaly.detail}")

    elif args.action == "anomalies":
        services = _stored_services("shipments anomalies")
        found = services.tracker.list_anomalies()
        if not found:
            print("No tracking anomalies.")
            return
        for number, anomaly in found:
            print(f"{number:<24} {anomaly.kind.value:<24} {anomaly.detail}")

    else:
        print("Usage: shipping-cli shipments {show|anomalies}")


if __name__ == "__main__":
    main()
