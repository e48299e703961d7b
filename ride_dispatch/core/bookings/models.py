# ride_dispatch/core/bookings/models.py
"""
Модели данных заявок на поездку.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from ride_dispatch.common.constants import BookingStatus, RideStatus, TERMINAL_BOOKING_STATUSES
from ride_dispatch.common.geo import Coordinates
from ride_dispatch.common.results import ActionResult
from ride_dispatch.common.utils import utc_now


class DriverLocation(BaseModel):
    """Последняя известная позиция водителя по заявке."""

    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    last_updated: datetime = Field(default_factory=utc_now)

    def to_coordinates(self) -> Coordinates:
        return Coordinates(lat=self.lat, lng=self.lng)


class BookingRequest(BaseModel):
    """
    Заявка на поездку.

    Инварианты:
        accepted_by задан тогда и только тогда, когда статус accepted или completed;
        оценка ставится один раз и только после завершения.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID заявки")

    # Клиент
    customer_name: str = Field(..., description="Имя клиента")
    customer_phone: str = Field(..., description="Телефон клиента")
    customer_id: Optional[str] = Field(None, description="ID клиента (None для гостя)")

    # Маршрут
    pickup_location: str = Field(..., description="Место подачи")
    destination: str = Field(..., description="Пункт назначения")
    pickup_date: Optional[str] = Field(None, description="Дата подачи")
    pickup_time: Optional[str] = Field(None, description="Время подачи")
    estimated_price: Optional[int] = Field(None, gt=0, description="Ожидаемая цена")
    notes: Optional[str] = Field(None, description="Комментарий клиента")
    vehicle_type: Optional[str] = Field(None, description="Тип автомобиля")
    preferred_driver_id: Optional[str] = Field(None, description="Выбранный клиентом водитель")

    # Статус
    status: BookingStatus = Field(BookingStatus.PENDING, description="Статус заявки")
    ride_status: Optional[RideStatus] = Field(None, description="Подстатус принятой поездки")
    accepted_by: Optional[str] = Field(None, description="ID назначенного водителя")

    # Временные метки
    created_at: datetime = Field(default_factory=utc_now, description="Время создания")
    expires_at: datetime = Field(..., description="Срок актуальности заявки")
    accepted_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    en_route_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    trip_completed_at: Optional[datetime] = None

    # Итог
    fare: Optional[int] = Field(None, gt=0, description="Итоговая стоимость")
    rating: Optional[int] = Field(None, ge=1, le=5, description="Оценка клиента")
    review: Optional[str] = Field(None, description="Отзыв клиента")
    rated_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None

    driver_location: Optional[DriverLocation] = None
    version: int = Field(0, ge=0, description="Версия для оптимистичной блокировки")

    class Config:
        from_attributes = True

    @property
    def is_terminal(self) -> bool:
        """Находится ли заявка в конечном статусе."""
        return self.status in TERMINAL_BOOKING_STATUSES

    @property
    def is_rated(self) -> bool:
        """Оценена ли поездка."""
        return self.rating is not None

    def is_expired(self, now: datetime) -> bool:
        """Истёк ли срок заявки (момент expires_at уже считается истёкшим)."""
        return now >= self.expires_at

    def clear_assignment(self) -> None:
        """Снимает назначение водителя и сбрасывает подстатус поездки."""
        self.accepted_by = None
        self.accepted_at = None
        self.ride_status = None
        self.confirmed_at = None
        self.en_route_at = None
        self.arrived_at = None
        self.started_at = None
        self.trip_completed_at = None
        self.driver_location = None


class BookingCreateDTO(BaseModel):
    """DTO создания заявки."""

    customer_name: str = Field(..., min_length=1)
    customer_phone: str = Field(..., min_length=1)
    customer_id: Optional[str] = None
    pickup_location: str = Field(..., min_length=1)
    destination: str = Field(..., min_length=1)
    pickup_date: Optional[str] = None
    pickup_time: Optional[str] = None
    estimated_price: Optional[int] = Field(None, gt=0)
    notes: Optional[str] = None
    vehicle_type: Optional[str] = None
    preferred_driver_id: Optional[str] = None


class BookingResult(ActionResult):
    """Результат операции над заявкой."""

    booking: Optional[BookingRequest] = None


class EarningsMonth(BaseModel):
    """Заработок за месяц."""

    month: str = Field(..., description="Месяц, например 'Jan 2026'")
    earnings: int = 0


class EarningsSummary(BaseModel):
    """Сводка заработка водителя."""

    driver_id: str
    today: int = 0
    this_month: int = 0
    history: list[EarningsMonth] = Field(default_factory=list)
    active_trips: int = 0
    currency: str = "KES"
