"""Error taxonomy for a monitoring cycle.

Each class maps to one failure mode an operator needs to tell apart in the
logs: the site being unreachable is not the same as the site being
redesigned.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for all monitor failures."""


class FetchError(MonitorError):
    """Listing page unreachable or returned a non-success status."""


class ExtractionError(MonitorError):
    """Listing page structure was not recognised."""


class AssetFetchError(MonitorError):
    """A product image could not be downloaded or written to disk."""


class PersistenceError(MonitorError):
    """The product store could not be read or written."""


class DeliveryError(MonitorError):
    """A notification was rejected by, or never reached, the sink."""


__all__ = [
    "MonitorError",
    "FetchError",
    "ExtractionError",
    "AssetFetchError",
    "PersistenceError",
    "DeliveryError",
]
