# ride_dispatch/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class DriverStatus(str, Enum):
    """Статусы водителя."""
    AVAILABLE = "available"
    OFFLINE = "offline"
    BUSY = "busy"


class SubscriptionStatus(str, Enum):
    """Статусы подписки водителя."""
    ACTIVE = "active"
    PENDING = "pending"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class BookingStatus(str, Enum):
    """Статусы заявки на поездку."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class RideStatus(str, Enum):
    """Подстатусы принятой поездки."""
    CONFIRMED = "confirmed"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class NegotiationStatus(str, Enum):
    """Статусы торга."""
    PENDING = "pending"
    COUNTER_OFFERED = "counter_offered"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    EXPIRED = "expired"


class Party(str, Enum):
    """Участник торга."""
    CUSTOMER = "customer"
    DRIVER = "driver"
    SYSTEM = "system"


class MessageType(str, Enum):
    """Тип сообщения в журнале торга."""
    OFFER = "offer"
    COUNTER = "counter"
    ACCEPT = "accept"
    DECLINE = "decline"
    EXPIRE = "expire"


class MatchType(str, Enum):
    """Тип совпадения маршрута."""
    EXACT = "exact"
    NEARBY = "nearby"


class MatchCategory(str, Enum):
    """Категория рекомендации."""
    BEST_VALUE = "best_value"
    LOWEST_PRICE = "lowest_price"
    BEST_RATED = "best_rated"


class ActionOutcome(str, Enum):
    """Результат операции над заявкой или торгом."""
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    ALREADY_TAKEN = "already_taken"
    EXPIRED = "expired"
    INVALID_STATE = "invalid_state"
    NOT_ASSIGNED_DRIVER = "not_assigned_driver"
    ALREADY_RATED = "already_rated"
    NO_DRIVER_ASSIGNED = "no_driver_assigned"
    INVALID_INPUT = "invalid_input"
    ALREADY_RESOLVED = "already_resolved"
    NOT_YOUR_TURN = "not_your_turn"
    UNAVAILABLE = "unavailable"


# Терминальные статусы
TERMINAL_BOOKING_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.EXPIRED,
})

TERMINAL_NEGOTIATION_STATUSES = frozenset({
    NegotiationStatus.ACCEPTED,
    NegotiationStatus.DECLINED,
    NegotiationStatus.EXPIRED,
})
