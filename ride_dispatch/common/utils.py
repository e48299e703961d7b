# ride_dispatch/common/utils.py
"""
Вспомогательные функции: время, округление и нормализация названий мест.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Callable


Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Текущее время в UTC (aware)."""
    return datetime.now(timezone.utc)


def round_half_up(value: float, ndigits: int = 0) -> float:
    """
    Округляет половины вверх (4.25 -> 4.3, 2.5 -> 3).

    Встроенный round() использует банковское округление,
    поэтому считаем через Decimal.
    """
    quantum = Decimal(1).scaleb(-ndigits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def round_currency(value: float) -> int:
    """Округляет сумму до целой единицы валюты."""
    return int(round_half_up(value, 0))


def normalize_location(value: str) -> str:
    """
    Нормализует название места для сравнения.

    Example:
        >>> normalize_location("  Athi   River ")
        'athi river'
    """
    return " ".join(value.split()).lower()
