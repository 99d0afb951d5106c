"""Shipping quotation and shipment tracking engine."""

__version__ = "1.0.0"
