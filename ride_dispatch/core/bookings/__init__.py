# ride_dispatch/core/bookings/__init__.py
"""
Заявки на поездку: жизненный цикл, этапы поездки, заработок.
"""

from ride_dispatch.core.bookings.earnings import EarningsService
from ride_dispatch.core.bookings.models import (
    BookingCreateDTO,
    BookingRequest,
    BookingResult,
    DriverLocation,
    EarningsMonth,
    EarningsSummary,
)
from ride_dispatch.core.bookings.repository import BookingRepository
from ride_dispatch.core.bookings.service import BookingService
from ride_dispatch.core.bookings.state_machine import BookingStateMachine, RideStateMachine

__all__ = [
    "EarningsService",
    "BookingCreateDTO",
    "BookingRequest",
    "BookingResult",
    "DriverLocation",
    "EarningsMonth",
    "EarningsSummary",
    "BookingRepository",
    "BookingService",
    "BookingStateMachine",
    "RideStateMachine",
]
