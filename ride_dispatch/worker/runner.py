# ride_dispatch/worker/runner.py
"""
Запускалка фоновых воркеров.
"""

from __future__ import annotations

import asyncio

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_error, log_info
from ride_dispatch.dependencies import close_dependencies, init_dependencies
from ride_dispatch.worker.base import BaseWorker
from ride_dispatch.worker.expiry import ExpiryWorker


async def run_workers(init_infra: bool = True) -> None:
    """
    Запускает ExpiryWorker, если очистка включена в конфиге.

    Args:
        init_infra: Если True, инициализирует инфраструктуру (БД, Redis, RabbitMQ).
                    При запуске через main.py передаётся False,
                    так как инфраструктура уже инициализирована.
    """
    from ride_dispatch.config import settings

    if not settings.booking.EXPIRY_REAPER_ENABLED:
        await log_info("Очистка просроченных заявок отключена (EXPIRY_REAPER_ENABLED=false)", type_msg=TypeMsg.INFO)
        return

    services = await init_dependencies(init_infra=init_infra)

    workers: list[BaseWorker] = [
        ExpiryWorker(services.bookings, services.negotiations),
    ]

    try:
        for worker in workers:
            await worker.start()

        await log_info(f"Запущено {len(workers)} воркеров", type_msg=TypeMsg.INFO)

        # Ждём завершения (Ctrl+C)
        while True:
            await asyncio.sleep(1)

    except asyncio.CancelledError:
        await log_info("Получен сигнал остановки", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}")
    finally:
        for worker in workers:
            await worker.stop()

        await close_dependencies(close_infra=init_infra)
        await log_info("Воркеры остановлены", type_msg=TypeMsg.INFO)


def main() -> None:
    """Точка входа."""
    try:
        asyncio.run(run_workers())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
