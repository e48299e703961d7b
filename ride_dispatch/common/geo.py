# ride_dispatch/common/geo.py
"""
Геометрические утилиты.
"""

from __future__ import annotations

import math

from pydantic import BaseModel, Field


EARTH_RADIUS_KM = 6371.0


class Coordinates(BaseModel):
    """Точка на карте."""

    lat: float = Field(..., ge=-90.0, le=90.0, description="Широта")
    lng: float = Field(..., ge=-180.0, le=180.0, description="Долгота")


def calculate_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Вычисляет расстояние между двумя точками (в км) по формуле Haversine.
    """
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)

    a = (math.sin(dlat / 2) ** 2 +
         math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) *
         math.sin(dlon / 2) ** 2)

    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def distance_meters(a: Coordinates, b: Coordinates) -> float:
    """Расстояние по прямой между двумя точками в метрах."""
    return calculate_distance(a.lat, a.lng, b.lat, b.lng) * 1000.0
