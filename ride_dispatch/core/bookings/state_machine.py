# ride_dispatch/core/bookings/state_machine.py
"""
Таблицы переходов заявки и подстатуса поездки.
"""

from __future__ import annotations

from typing import Optional

from ride_dispatch.common.constants import BookingStatus, RideStatus


class BookingStateMachine:
    """Переходы статуса заявки."""

    ALLOWED_TRANSITIONS: dict[BookingStatus, list[BookingStatus]] = {
        BookingStatus.PENDING: [BookingStatus.ACCEPTED, BookingStatus.CANCELLED, BookingStatus.EXPIRED],
        # Возврат в pending: водитель отказался от принятой заявки
        BookingStatus.ACCEPTED: [BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.PENDING],
        BookingStatus.COMPLETED: [],
        BookingStatus.CANCELLED: [],
        BookingStatus.EXPIRED: [],
    }

    @staticmethod
    def can_transition(current: BookingStatus, new: BookingStatus) -> bool:
        return new in BookingStateMachine.ALLOWED_TRANSITIONS.get(current, [])


class RideStateMachine:
    """
    Подстатус принятой поездки. Переходы строго последовательные:
    confirmed -> en_route -> arrived -> in_progress -> completed.
    """

    ALLOWED_TRANSITIONS: dict[Optional[RideStatus], list[RideStatus]] = {
        None: [RideStatus.CONFIRMED],
        RideStatus.CONFIRMED: [RideStatus.EN_ROUTE],
        RideStatus.EN_ROUTE: [RideStatus.ARRIVED],
        RideStatus.ARRIVED: [RideStatus.IN_PROGRESS],
        RideStatus.IN_PROGRESS: [RideStatus.COMPLETED],
        RideStatus.COMPLETED: [],
    }

    # Поле заявки, в котором фиксируется время перехода
    TIMESTAMP_FIELDS: dict[RideStatus, str] = {
        RideStatus.CONFIRMED: "confirmed_at",
        RideStatus.EN_ROUTE: "en_route_at",
        RideStatus.ARRIVED: "arrived_at",
        RideStatus.IN_PROGRESS: "started_at",
        RideStatus.COMPLETED: "trip_completed_at",
    }

    @staticmethod
    def can_transition(current: Optional[RideStatus], new: RideStatus) -> bool:
        return new in RideStateMachine.ALLOWED_TRANSITIONS.get(current, [])
