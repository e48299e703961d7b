# ride_dispatch/core/notifications/__init__.py
"""
Уведомления участников поездки.
"""

from ride_dispatch.core.notifications.models import (
    BookingCancelled,
    BookingCreated,
    DriverArrived,
    DriverCancelled,
    DriverEnRoute,
    FareAccepted,
    FareChange,
    FareCounter,
    FareDeclined,
    NewBooking,
    Notification,
    NotificationPayload,
    RideConfirmed,
    TripCompleted,
    TripStarted,
    payload_adapter,
)
from ride_dispatch.core.notifications.service import NotificationService

__all__ = [
    "BookingCancelled",
    "BookingCreated",
    "DriverArrived",
    "DriverCancelled",
    "DriverEnRoute",
    "FareAccepted",
    "FareChange",
    "FareCounter",
    "FareDeclined",
    "NewBooking",
    "Notification",
    "NotificationPayload",
    "RideConfirmed",
    "TripCompleted",
    "TripStarted",
    "payload_adapter",
    "NotificationService",
]
