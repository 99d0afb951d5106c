"""Engine exception types."""

from typing import Optional


class ShippingError(Exception):
    """Base class for shipping engine errors."""


class ConfigurationError(ShippingError, ValueError):
    """Zone/method/rate data that cannot produce a price."""

    def __init__(
        self,
        message: str,
        method_id: Optional[str] = None,
        rate_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.method_id = method_id
        self.rate_id = rate_id


class ShipmentNotFoundError(ShippingError, LookupError):
    """No tracking record for the given tracking number or order."""

    def __init__(self, key: str):
        super().__init__(f"Shipment not found: {key}")
        self.key = key


class MethodNotFoundError(ShippingError, LookupError):
    def __init__(self, method_id: str):
        super().__init__(f"Shipping method not found: {method_id}")
        self.method_id = method_id


class DuplicateTrackingNumberError(ShippingError, ValueError):
    def __init__(self, tracking_number: str):
        super().__init__(f"Tracking number already exists: {tracking_number}")
        self.tracking_number = tracking_number


class CarrierUnavailableError(ShippingError):
    """A carrier adapter could not serve the request; callers may retry."""
