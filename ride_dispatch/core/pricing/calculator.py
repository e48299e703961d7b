# ride_dispatch/core/pricing/calculator.py
"""
Ключи маршрутов и калькулятор стоимости поездки.

Порядок применения модификаторов:
    1. надбавки особых зон (процент от текущей суммы или фиксированная);
    2. ночной множитель, если локальное время внутри окна;
    3. праздничный множитель, если включён;
    4. множители всех активных слотов часа пик, содержащих текущее время.
"""

from __future__ import annotations

from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

from ride_dispatch.common.exceptions import InvalidRouteKeyError
from ride_dispatch.common.utils import normalize_location, round_currency
from ride_dispatch.core.pricing.models import (
    FareBreakdown,
    NightShift,
    PeakSlot,
    PricingProfile,
    parse_clock,
)


# Символы, недопустимые в ключе словаря route_pricing (jsonb path)
FORBIDDEN_KEY_CHARS = frozenset(".$/")


# =============================================================================
# КЛЮЧИ МАРШРУТОВ
# =============================================================================

def make_route_key(from_location: str, to_location: str) -> str:
    """
    Строит канонический ключ маршрута.

    Example:
        >>> make_route_key(" Machakos ", "MASII")
        'machakos-masii'
    """
    return f"{normalize_location(from_location)}-{normalize_location(to_location)}"


def validate_route_key(key: str) -> str:
    """
    Проверяет ключ перед записью в хранилище.

    Raises:
        InvalidRouteKeyError: Пустой ключ, служебные или управляющие символы
    """
    if not key or key.startswith("-") or key.endswith("-"):
        raise InvalidRouteKeyError(f"Пустая точка маршрута в ключе '{key}'")

    for char in key:
        if char in FORBIDDEN_KEY_CHARS or ord(char) < 32 or ord(char) == 127:
            raise InvalidRouteKeyError(f"Недопустимый символ {char!r} в ключе маршрута '{key}'")

    return key


# =============================================================================
# ВРЕМЕННЫЕ ОКНА
# =============================================================================

def in_night_window(night: NightShift, moment: time) -> bool:
    """
    Попадает ли время в ночное окно.
    Окно может переходить через полночь (start > end).
    """
    start = parse_clock(night.start_time)
    end = parse_clock(night.end_time)

    if start <= end:
        return start <= moment <= end
    return start <= moment or moment <= end


def in_peak_slot(slot: PeakSlot, moment: time) -> bool:
    """Попадает ли время в полуинтервал [start, end) слота."""
    return parse_clock(slot.start) <= moment < parse_clock(slot.end)


# =============================================================================
# КАЛЬКУЛЯТОР
# =============================================================================

class FareCalculator:
    """Калькулятор стоимости поездки по тарифам водителя."""

    def __init__(self, tz_name: str | None = None, currency: str | None = None) -> None:
        """
        Args:
            tz_name: Часовой пояс для ночного тарифа и часов пик
            currency: Код валюты
        """
        if tz_name is None or currency is None:
            from ride_dispatch.config import settings
            tz_name = tz_name or settings.domain.TIMEZONE
            currency = currency or settings.domain.CURRENCY

        self.tz = ZoneInfo(tz_name)
        self.currency = currency

    def _local_time(self, now: datetime | None) -> time:
        """Переводит момент в локальное время (naive считается UTC)."""
        if now is None:
            now = datetime.now(timezone.utc)
        elif now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now.astimezone(self.tz).time().replace(second=0, microsecond=0)

    def calculate_breakdown(
        self,
        profile: PricingProfile | None,
        from_location: str,
        to_location: str,
        now: datetime | None = None,
    ) -> FareBreakdown:
        """
        Рассчитывает стоимость с детализацией.

        Сначала ищется прямой ключ, затем обратный. Если маршрута нет,
        возвращается разбивка с total_fare = 0.
        """
        breakdown = FareBreakdown(currency=self.currency)
        if profile is None:
            return breakdown

        key = make_route_key(from_location, to_location)
        reverse_key = make_route_key(to_location, from_location)

        route = profile.route_pricing.get(key)
        if route is None:
            route = profile.route_pricing.get(reverse_key)
            if route is not None:
                key = reverse_key
                breakdown.reversed = True

        if route is None or not route.price:
            return breakdown

        breakdown.route_key = key
        breakdown.base_fare = route.price
        fare = float(route.price)

        # 1. Особые зоны
        for zone in profile.special_zones.values():
            before = fare
            if zone.surcharge_percent:
                fare += fare * zone.surcharge_percent / 100
            elif zone.flat_surcharge:
                fare += zone.flat_surcharge
            breakdown.zone_surcharge += fare - before

        modifiers = profile.modifiers
        moment = self._local_time(now)

        # 2. Ночной тариф
        night = modifiers.night_shift
        if night is not None and night.enabled and in_night_window(night, moment):
            fare *= night.multiplier
            breakdown.night_multiplier = night.multiplier

        # 3. Праздник (без проверки даты)
        holiday = modifiers.holiday
        if holiday is not None and holiday.enabled:
            fare *= holiday.multiplier
            breakdown.holiday_multiplier = holiday.multiplier

        # 4. Часы пик, пересекающиеся слоты перемножаются
        peak = modifiers.peak_hours
        if peak is not None and peak.enabled:
            for slot in peak.time_slots:
                if slot.enabled and in_peak_slot(slot, moment):
                    fare *= slot.multiplier
                    breakdown.peak_multiplier *= slot.multiplier

        breakdown.total_fare = round_currency(fare)
        return breakdown

    def calculate(
        self,
        profile: PricingProfile | None,
        from_location: str,
        to_location: str,
        now: datetime | None = None,
    ) -> int:
        """
        Возвращает итоговую стоимость маршрута.

        Returns:
            Цена в целых KES или 0, если маршрут не настроен
        """
        return self.calculate_breakdown(profile, from_location, to_location, now).total_fare
