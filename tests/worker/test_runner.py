# tests/worker/test_runner.py
"""
Тесты для запускалки воркеров.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from ride_dispatch.worker.runner import run_workers


@pytest.fixture
def mock_settings():
    with patch("ride_dispatch.config.settings") as mock:
        mock.booking.EXPIRY_REAPER_ENABLED = True
        mock.booking.EXPIRY_REAPER_INTERVAL = 60
        yield mock


@pytest.fixture
def mock_dependencies():
    services = MagicMock()
    with patch("ride_dispatch.worker.runner.init_dependencies", new_callable=AsyncMock) as mock_init, \
         patch("ride_dispatch.worker.runner.close_dependencies", new_callable=AsyncMock) as mock_close, \
         patch("ride_dispatch.worker.runner.log_info", new_callable=AsyncMock):
        mock_init.return_value = services
        yield {"init": mock_init, "close": mock_close, "services": services}


@pytest.fixture
def mock_worker():
    with patch("ride_dispatch.worker.runner.ExpiryWorker") as MockExpiry:
        instance = MockExpiry.return_value
        instance.start = AsyncMock()
        instance.stop = AsyncMock()
        yield MockExpiry


@pytest.mark.asyncio
async def test_run_workers_lifecycle(mock_settings, mock_dependencies, mock_worker) -> None:
    """Проверяет запуск, остановку воркеров и закрытие зависимостей."""
    with patch("ride_dispatch.worker.runner.asyncio.sleep", side_effect=asyncio.CancelledError):
        await run_workers()

    mock_dependencies["init"].assert_awaited_once_with(init_infra=True)
    services = mock_dependencies["services"]
    mock_worker.assert_called_once_with(services.bookings, services.negotiations)
    mock_worker.return_value.start.assert_awaited_once()
    mock_worker.return_value.stop.assert_awaited_once()
    mock_dependencies["close"].assert_awaited_once_with(close_infra=True)


@pytest.mark.asyncio
async def test_run_workers_keeps_shared_infra(mock_settings, mock_dependencies, mock_worker) -> None:
    """Проверяет, что при init_infra=False инфраструктура не закрывается."""
    with patch("ride_dispatch.worker.runner.asyncio.sleep", side_effect=asyncio.CancelledError):
        await run_workers(init_infra=False)

    mock_dependencies["init"].assert_awaited_once_with(init_infra=False)
    mock_dependencies["close"].assert_awaited_once_with(close_infra=False)


@pytest.mark.asyncio
async def test_run_workers_disabled(mock_settings, mock_dependencies, mock_worker) -> None:
    """Проверяет, что отключённая очистка не запускает воркеры."""
    mock_settings.booking.EXPIRY_REAPER_ENABLED = False

    await run_workers()

    mock_dependencies["init"].assert_not_awaited()
    mock_worker.assert_not_called()


@pytest.mark.asyncio
async def test_run_workers_init_error(mock_settings, mock_dependencies, mock_worker) -> None:
    """Проверяет, что ошибка инициализации пробрасывается."""
    mock_dependencies["init"].side_effect = ConnectionError("db down")

    with pytest.raises(ConnectionError, match="db down"):
        await run_workers()

    mock_dependencies["close"].assert_not_awaited()
