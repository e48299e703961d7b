# tests/worker/test_base.py
"""
Тесты для BaseWorker.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from ride_dispatch.worker.base import BaseWorker


class ConcreteWorker(BaseWorker):
    """Конкретная реализация BaseWorker для тестов."""

    def __init__(self, interval: float = 0.001, stop_after: int | None = None, fail: bool = False) -> None:
        super().__init__(interval)
        self.ticks = 0
        self._stop_after = stop_after
        self._fail = fail

    @property
    def name(self) -> str:
        return "test_worker"

    async def tick(self) -> None:
        self.ticks += 1
        if self._fail:
            raise RuntimeError("tick failed")
        if self._stop_after is not None and self.ticks >= self._stop_after:
            self.request_stop()


@pytest.fixture
def mock_log_info():
    with patch("ride_dispatch.worker.base.log_info", new_callable=AsyncMock) as mock:
        yield mock


class TestBaseWorkerProperties:
    """Тесты свойств воркера."""

    def test_initial_state(self) -> None:
        """Проверяет состояние нового воркера."""
        worker = ConcreteWorker(interval=5)

        assert worker.name == "test_worker"
        assert worker.interval == 5
        assert worker.is_running is False


class TestBaseWorkerLifecycle:
    """Тесты запуска и остановки воркера."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, mock_log_info: AsyncMock) -> None:
        """Проверяет запуск цикла и его остановку."""
        worker = ConcreteWorker()

        await worker.start()
        assert worker.is_running is True
        await asyncio.sleep(0.02)
        await worker.stop()

        assert worker.is_running is False
        assert worker.ticks >= 1
        assert mock_log_info.await_count == 2

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, mock_log_info: AsyncMock) -> None:
        """Проверяет, что повторный запуск не создаёт второй цикл."""
        worker = ConcreteWorker(interval=10)

        await worker.start()
        task = worker._task
        await worker.start()

        assert worker._task is task
        assert mock_log_info.await_count == 1
        await worker.stop()

    @pytest.mark.asyncio
    async def test_stop_not_started(self, mock_log_info: AsyncMock) -> None:
        """Проверяет остановку незапущенного воркера."""
        worker = ConcreteWorker()

        await worker.stop()

        assert worker.is_running is False

    @pytest.mark.asyncio
    async def test_request_stop_from_tick(self, mock_log_info: AsyncMock) -> None:
        """Проверяет завершение цикла по запросу из tick()."""
        worker = ConcreteWorker(stop_after=3)

        await worker.start()
        await asyncio.wait_for(worker.wait(), timeout=2)

        assert worker.ticks == 3
        assert worker.is_running is False


class TestBaseWorkerErrors:
    """Тесты обработки ошибок."""

    @pytest.mark.asyncio
    async def test_run_once_logs_error(self) -> None:
        """Проверяет, что ошибка тика логируется и не пробрасывается."""
        worker = ConcreteWorker(fail=True)

        with patch("ride_dispatch.worker.base.log_error", new_callable=AsyncMock) as mock_log:
            await worker.run_once()

        mock_log.assert_awaited_once()
        assert mock_log.await_args.kwargs["exc_info"] is True

    @pytest.mark.asyncio
    async def test_loop_survives_errors(self, mock_log_info: AsyncMock) -> None:
        """Проверяет, что цикл продолжается после ошибки тика."""
        worker = ConcreteWorker(fail=True)

        with patch("ride_dispatch.worker.base.log_error", new_callable=AsyncMock):
            await worker.start()
            await asyncio.sleep(0.02)
            await worker.stop()

        assert worker.ticks > 1
