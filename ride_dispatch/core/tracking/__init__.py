# ride_dispatch/core/tracking/__init__.py
"""
Отслеживание позиции водителя.
"""

from ride_dispatch.core.tracking.sources import (
    GeolocationSource,
    HttpGeolocationSource,
    LocationUnavailableError,
    MockGeolocationSource,
    make_geolocation_source,
)
from ride_dispatch.core.tracking.tracker import RideTracker

__all__ = [
    "GeolocationSource",
    "HttpGeolocationSource",
    "LocationUnavailableError",
    "MockGeolocationSource",
    "make_geolocation_source",
    "RideTracker",
]
