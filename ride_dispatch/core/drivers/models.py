# ride_dispatch/core/drivers/models.py
"""
Модели данных водителей.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from ride_dispatch.common.constants import DriverStatus, SubscriptionStatus
from ride_dispatch.common.utils import normalize_location, utc_now


class Driver(BaseModel):
    """Модель водителя."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="ID водителя")
    name: str = Field(..., description="Имя")
    phone: Optional[str] = Field(None, description="Телефон")
    whatsapp: Optional[str] = Field(None, description="WhatsApp")
    email: Optional[str] = Field(None, description="Email")

    status: DriverStatus = Field(DriverStatus.OFFLINE, description="Статус доступности")
    subscription_status: SubscriptionStatus = Field(SubscriptionStatus.PENDING, description="Статус подписки")
    current_location: Optional[str] = Field(None, description="Текущий район (свободный текст)")
    active: bool = Field(True, description="Участвует ли в подборе")

    # Репутация
    average_rating: float = Field(0.0, ge=0.0, le=5.0, description="Средняя оценка")
    total_rides: int = Field(0, ge=0, description="Завершённых поездок")
    total_ratings: int = Field(0, ge=0, description="Полученных оценок")

    created_at: datetime = Field(default_factory=utc_now, description="Дата регистрации")
    updated_at: datetime = Field(default_factory=utc_now, description="Дата обновления")
    version: int = Field(0, ge=0, description="Версия для оптимистичной блокировки")

    class Config:
        from_attributes = True

    @property
    def is_visible_to_public(self) -> bool:
        """Показывается ли водитель клиентам (только с активной подпиской)."""
        return self.subscription_status == SubscriptionStatus.ACTIVE

    @property
    def is_available(self) -> bool:
        """Принимает ли водитель заявки."""
        return self.status == DriverStatus.AVAILABLE

    def is_at(self, location: str) -> bool:
        """Находится ли водитель в указанном районе."""
        if not self.current_location:
            return False
        return normalize_location(self.current_location) == normalize_location(location)


class DriverCreateDTO(BaseModel):
    """DTO регистрации водителя."""

    name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    whatsapp: Optional[str] = None
    email: Optional[str] = None
    current_location: Optional[str] = None


class DriverStatusDTO(BaseModel):
    """DTO смены статуса доступности."""

    status: DriverStatus


class DriverLocationDTO(BaseModel):
    """DTO смены текущего района."""

    current_location: str = Field(..., min_length=1)


class SubscriptionDTO(BaseModel):
    """DTO смены статуса подписки (администратор)."""

    subscription_status: SubscriptionStatus
