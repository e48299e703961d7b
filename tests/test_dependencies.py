# tests/test_dependencies.py
"""
Тесты для сборки сервисов.
"""

from __future__ import annotations

from typing import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ride_dispatch.core.bookings import BookingService, EarningsService
from ride_dispatch.core.negotiations import NegotiationService
from ride_dispatch.core.pricing import PricingService
from ride_dispatch.dependencies import (
    build_services,
    close_dependencies,
    get_services,
    init_dependencies,
    set_services,
)


class TestDependencies:
    """Тесты для фабрики сервисов."""

    @pytest.fixture(autouse=True)
    def reset(self) -> Generator[None, None, None]:
        """Сбрасывает собранные сервисы перед каждым тестом."""
        set_services(None)
        yield
        set_services(None)

    def test_build_services_shares_connections(self) -> None:
        """Проверяет, что сервисы используют одни подключения."""
        db, redis, event_bus = MagicMock(), MagicMock(), MagicMock()

        services = build_services(db, redis, event_bus)

        assert isinstance(services.pricing, PricingService)
        assert isinstance(services.bookings, BookingService)
        assert isinstance(services.earnings, EarningsService)
        assert isinstance(services.negotiations, NegotiationService)
        assert services.db is db
        assert services.event_bus is event_bus

    def test_get_services_not_initialized(self) -> None:
        """Проверяет ошибку до инициализации."""
        with pytest.raises(RuntimeError, match="Зависимости не инициализированы"):
            get_services()

    @pytest.mark.asyncio
    async def test_init_and_close(self) -> None:
        """Проверяет инициализацию инфраструктуры и её закрытие."""
        with patch("ride_dispatch.dependencies.init_db", new_callable=AsyncMock) as mock_init_db, \
             patch("ride_dispatch.dependencies.init_redis", new_callable=AsyncMock), \
             patch("ride_dispatch.dependencies.init_event_bus", new_callable=AsyncMock), \
             patch("ride_dispatch.dependencies.get_db", return_value=MagicMock()), \
             patch("ride_dispatch.dependencies.get_redis", return_value=MagicMock()), \
             patch("ride_dispatch.dependencies.get_event_bus", return_value=MagicMock()), \
             patch("ride_dispatch.dependencies.close_db", new_callable=AsyncMock) as mock_close_db, \
             patch("ride_dispatch.dependencies.close_redis", new_callable=AsyncMock), \
             patch("ride_dispatch.dependencies.close_event_bus", new_callable=AsyncMock), \
             patch("ride_dispatch.dependencies.log_info", new_callable=AsyncMock):
            services = await init_dependencies()

            assert get_services() is services
            mock_init_db.assert_awaited_once()

            await close_dependencies()

        mock_close_db.assert_awaited_once()
        with pytest.raises(RuntimeError):
            get_services()

    @pytest.mark.asyncio
    async def test_init_without_infra(self) -> None:
        """Проверяет сборку поверх уже открытых подключений."""
        with patch("ride_dispatch.dependencies.init_db", new_callable=AsyncMock) as mock_init_db, \
             patch("ride_dispatch.dependencies.get_db", return_value=MagicMock()), \
             patch("ride_dispatch.dependencies.get_redis", return_value=MagicMock()), \
             patch("ride_dispatch.dependencies.get_event_bus", return_value=MagicMock()), \
             patch("ride_dispatch.dependencies.log_info", new_callable=AsyncMock):
            await init_dependencies(init_infra=False)

        mock_init_db.assert_not_awaited()
