# ride_dispatch/worker/base.py
"""
Базовый класс для периодических воркеров.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_error, log_info


class BaseWorker(ABC):
    """
    Базовый класс для всех воркеров.
    Вызывает tick() с заданным интервалом в отдельной задаче.
    """

    def __init__(self, interval: float) -> None:
        """
        Args:
            interval: Пауза между тиками (секунды)
        """
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """Имя воркера."""

    @abstractmethod
    async def tick(self) -> None:
        """Одна итерация работы воркера."""

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Запускает воркер."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._loop(), name=f"worker:{self.name}")
        await log_info(f"Воркер {self.name} запущен (интервал {self.interval}с)", type_msg=TypeMsg.INFO)

    def request_stop(self) -> None:
        """Останавливает цикл после текущего тика. Можно вызывать из tick()."""
        self._running = False

    async def stop(self) -> None:
        """Останавливает воркер и дожидается завершения задачи."""
        self._running = False

        task, self._task = self._task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

        await log_info(f"Воркер {self.name} остановлен", type_msg=TypeMsg.INFO)

    async def wait(self) -> None:
        """Ждёт завершения цикла воркера."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)

    async def run_once(self) -> None:
        """Выполняет один тик с перехватом ошибок."""
        try:
            await self.tick()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await log_error(f"Ошибка в воркере {self.name}: {e}", exc_info=True)

    async def _loop(self) -> None:
        while self._running:
            await self.run_once()
            if not self._running:
                break
            await asyncio.sleep(self.interval)
