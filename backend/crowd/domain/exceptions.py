"""Domain-level exceptions for the notification engine."""

from __future__ import annotations


class CrowdError(Exception):
    """Base class for engine errors."""

    reason: str = "unknown"

    def __init__(self, reason: str | None = None) -> None:
        super().__init__(reason or self.reason)
        if reason:
            self.reason = reason


class InvalidCoordinate(CrowdError, ValueError):
    """Latitude/longitude missing, non-finite or out of range."""

    reason = "invalid_coordinate"


class InvalidGeocell(CrowdError, ValueError):
    reason = "invalid_geocell"


class StoreUnavailable(CrowdError):
    """Transient I/O failure against a backing store."""

    reason = "store_unavailable"


class DestinationInvalid(CrowdError):
    """The push gateway reports the destination token as permanently dead."""

    reason = "destination_invalid"


class DeliveryTransientFailure(CrowdError):
    reason = "delivery_transient"
