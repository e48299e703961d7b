# ride_dispatch/core/pricing/models.py
"""
Модели тарифов водителя: цены по маршрутам, зоны и модификаторы.
"""

from __future__ import annotations

from datetime import datetime, time
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from ride_dispatch.common.utils import utc_now


def parse_clock(value: str) -> time:
    """Разбирает время вида "HH:MM" (или "HH")."""
    parts = value.strip().split(":")
    hour = int(parts[0])
    minute = int(parts[1]) if len(parts) > 1 and parts[1] else 0
    return time(hour=hour, minute=minute)


def check_clock(value: str) -> str:
    """Проверяет формат времени и возвращает исходную строку."""
    try:
        parse_clock(value)
    except (ValueError, IndexError) as e:
        raise ValueError(f"Неверный формат времени '{value}', ожидается HH:MM") from e
    return value


class RoutePrice(BaseModel):
    """Цена водителя для одного маршрута."""

    price: int = Field(..., gt=0, description="Цена в KES")
    distance: Optional[float] = Field(None, ge=0.0, description="Расстояние, км")
    duration: Optional[int] = Field(None, ge=0, description="Время в пути, мин")


class SpecialZone(BaseModel):
    """Надбавка за особую зону: процент или фиксированная сумма."""

    surcharge_percent: Optional[float] = Field(None, ge=0.0, description="Надбавка, %")
    flat_surcharge: Optional[float] = Field(None, ge=0.0, description="Надбавка, KES")

    @model_validator(mode="after")
    def _check_single_surcharge(self) -> "SpecialZone":
        if self.surcharge_percent and self.flat_surcharge:
            raise ValueError("Зона задаёт либо процент, либо фиксированную надбавку, но не оба")
        return self


class NightShift(BaseModel):
    """Ночной тариф."""

    enabled: bool = False
    start_time: str = Field("22:00", description="Начало окна HH:MM")
    end_time: str = Field("05:00", description="Конец окна HH:MM")
    multiplier: float = Field(1.0, gt=0.0)

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_clock(cls, v: str) -> str:
        return check_clock(v)


class Holiday(BaseModel):
    """Праздничный тариф (действует всегда, пока включён)."""

    enabled: bool = False
    multiplier: float = Field(1.0, gt=0.0)


class PeakSlot(BaseModel):
    """Интервал часа пик [start, end)."""

    start: str
    end: str
    multiplier: float = Field(1.0, gt=0.0)
    enabled: bool = True

    @field_validator("start", "end")
    @classmethod
    def validate_clock(cls, v: str) -> str:
        return check_clock(v)


class PeakHours(BaseModel):
    """Часы пик."""

    enabled: bool = False
    time_slots: list[PeakSlot] = Field(default_factory=list)


class PricingModifiers(BaseModel):
    """Динамические модификаторы цены."""

    night_shift: Optional[NightShift] = None
    holiday: Optional[Holiday] = None
    peak_hours: Optional[PeakHours] = None


class PricingProfile(BaseModel):
    """Тарифный документ водителя."""

    driver_id: str = Field(..., description="ID водителя (владелец документа)")
    route_pricing: dict[str, RoutePrice] = Field(default_factory=dict, description="Цены по ключу маршрута")
    special_zones: dict[str, SpecialZone] = Field(default_factory=dict, description="Надбавки по зонам")
    modifiers: PricingModifiers = Field(default_factory=PricingModifiers)
    updated_at: datetime = Field(default_factory=utc_now)
    version: int = Field(0, ge=0, description="Версия для оптимистичной блокировки")

    class Config:
        from_attributes = True


class FareBreakdown(BaseModel):
    """Результат расчёта стоимости с детализацией."""

    route_key: Optional[str] = Field(None, description="Найденный ключ маршрута")
    reversed: bool = Field(False, description="Цена найдена по обратному ключу")
    base_fare: int = 0
    zone_surcharge: float = 0.0
    night_multiplier: float = 1.0
    holiday_multiplier: float = 1.0
    peak_multiplier: float = 1.0
    total_fare: int = 0
    currency: str = "KES"

    @property
    def found(self) -> bool:
        """Найден ли маршрут."""
        return self.route_key is not None


class RoutePriceDTO(BaseModel):
    """DTO установки цены маршрута."""

    from_location: str = Field(..., min_length=1)
    to_location: str = Field(..., min_length=1)
    price: int = Field(..., gt=0)
    distance: Optional[float] = Field(None, ge=0.0)
    duration: Optional[int] = Field(None, ge=0)
