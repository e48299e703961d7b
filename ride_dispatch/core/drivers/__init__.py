# ride_dispatch/core/drivers/__init__.py
"""
Водители: профиль, доступность, репутация.
"""

from ride_dispatch.core.drivers.models import (
    Driver,
    DriverCreateDTO,
    DriverLocationDTO,
    DriverStatusDTO,
    SubscriptionDTO,
)
from ride_dispatch.core.drivers.repository import DriverRepository
from ride_dispatch.core.drivers.service import DriverService

__all__ = [
    "Driver",
    "DriverCreateDTO",
    "DriverLocationDTO",
    "DriverStatusDTO",
    "SubscriptionDTO",
    "DriverRepository",
    "DriverService",
]
