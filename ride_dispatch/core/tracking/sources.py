# ride_dispatch/core/tracking/sources.py
"""
Источники геопозиции водителя.

Реальный источник опрашивает HTTP-эндпоинт устройства водителя,
мок-источник возвращает фиксированную точку (переключается флагом
USE_MOCK_LOCATION).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

import httpx

from ride_dispatch.common.geo import Coordinates


class LocationUnavailableError(Exception):
    """Позицию получить не удалось."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)


class GeolocationSource(ABC):
    """Контракт источника позиции."""

    @abstractmethod
    async def current_location(self) -> Coordinates:
        """
        Текущая позиция.

        Raises:
            LocationUnavailableError: Позиция недоступна
        """

    async def close(self) -> None:
        """Освобождает ресурсы источника."""


class MockGeolocationSource(GeolocationSource):
    """Фиксированная позиция для разработки и тестов."""

    def __init__(self, lat: float, lng: float) -> None:
        self._coordinates = Coordinates(lat=lat, lng=lng)

    async def current_location(self) -> Coordinates:
        return self._coordinates


class HttpGeolocationSource(GeolocationSource):
    """
    Позиция с HTTP-эндпоинта устройства.

    Ожидается JSON вида {"lat": ..., "lng": ...}
    (допускаются также latitude/longitude).
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Закрывает HTTP клиент."""
        await self._client.aclose()

    async def current_location(self) -> Coordinates:
        try:
            response = await self._client.get(self._url)
            response.raise_for_status()
            data: dict[str, Any] = response.json()
        except httpx.TimeoutException as e:
            raise LocationUnavailableError("timeout", "Location request timed out.") from e
        except httpx.HTTPStatusError as e:
            raise LocationUnavailableError(
                f"http_{e.response.status_code}", "Position unavailable."
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise LocationUnavailableError("unavailable", f"Position unavailable: {e}") from e

        lat = data.get("lat", data.get("latitude"))
        lng = data.get("lng", data.get("longitude"))
        if lat is None or lng is None:
            raise LocationUnavailableError("malformed", "Location response has no coordinates.")

        try:
            return Coordinates(lat=float(lat), lng=float(lng))
        except (TypeError, ValueError) as e:
            raise LocationUnavailableError("malformed", f"Invalid coordinates: {e}") from e


def make_geolocation_source(settings: Any = None) -> GeolocationSource:
    """Создаёт источник позиции по настройкам трекинга."""
    if settings is None:
        from ride_dispatch.config import settings as app_settings
        settings = app_settings

    tracking = settings.tracking
    if tracking.USE_MOCK_LOCATION:
        return MockGeolocationSource(tracking.MOCK_LATITUDE, tracking.MOCK_LONGITUDE)
    return HttpGeolocationSource(tracking.LOCATION_SOURCE_URL, timeout=tracking.LOCATION_SOURCE_TIMEOUT)
