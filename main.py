#!/usr/bin/env python3
# main.py
"""
Главная точка входа Ride Dispatch.
Запускает HTTP API, фоновые воркеры или всё вместе.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from ride_dispatch.config import settings
from ride_dispatch.common.logger import setup_logging, log_info, log_error
from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.infra.database import init_db, close_db, get_db
from ride_dispatch.infra.redis_client import init_redis, close_redis, get_redis
from ride_dispatch.infra.event_bus import init_event_bus, close_event_bus, get_event_bus


VALID_MODES = ("api", "worker", "all")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        """Обработчик сигналов SIGINT и SIGTERM."""
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def init_infrastructure() -> None:
    """Инициализирует все подключения к инфраструктуре."""
    await log_info("Инициализация инфраструктуры...", type_msg=TypeMsg.INFO)

    await init_db()
    await init_redis()
    await init_event_bus()

    await log_info("Инфраструктура инициализирована", type_msg=TypeMsg.INFO)


async def close_infrastructure() -> None:
    """Закрывает все подключения."""
    await log_info("Закрытие подключений...", type_msg=TypeMsg.INFO)

    await close_event_bus()
    await close_redis()
    await close_db()

    await log_info("Подключения закрыты", type_msg=TypeMsg.INFO)


async def run_api() -> None:
    """Запускает HTTP API поверх уже открытых подключений."""
    import uvicorn

    from ride_dispatch.api.app import create_app
    from ride_dispatch.dependencies import build_services

    await log_info(
        f"Запуск HTTP API на {settings.api.API_HOST}:{settings.api.API_PORT}...",
        type_msg=TypeMsg.INFO,
    )

    app = create_app(services=build_services(get_db(), get_redis(), get_event_bus()))
    config = uvicorn.Config(
        app,
        host=settings.api.API_HOST,
        port=settings.api.API_PORT,
        log_level="debug" if settings.system.DEBUG else "info",
    )

    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info("HTTP API: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def run_worker() -> None:
    """Запускает фоновые воркеры (инфраструктура уже инициализирована)."""
    from ride_dispatch.worker.runner import run_workers

    await run_workers(init_infra=False)


async def main(mode: str | None = None) -> None:
    """
    Главная функция запуска.

    Args:
        mode: Режим запуска (api, worker, all).
              Если None, берётся из COMPONENT_MODE.
    """
    global _running_tasks

    setup_logging()
    setup_signal_handlers()

    if mode is None:
        mode = "all" if settings.system.RUN_DEV_MODE else settings.system.COMPONENT_MODE

    await log_info(
        f"Ride Dispatch v{settings.system.VERSION}: запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    try:
        await init_infrastructure()

        if mode == "api":
            await run_api()
        elif mode == "worker":
            await run_worker()
        elif mode == "all":
            _running_tasks = [
                asyncio.create_task(run_api()),
                asyncio.create_task(run_worker()),
            ]
            await asyncio.gather(*_running_tasks, return_exceptions=True)
        else:
            await log_error(f"Неизвестный режим: {mode}")
    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    except Exception as e:
        await log_error(f"Критическая ошибка: {e}")
        raise
    finally:
        if _running_tasks:
            for task in _running_tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*_running_tasks, return_exceptions=True)
            _running_tasks.clear()

        try:
            await close_infrastructure()
        except Exception as e:
            await log_error(f"Ошибка при закрытии подключений: {e}")

        await log_info("Приложение остановлено", type_msg=TypeMsg.INFO)


def print_usage() -> None:
    """Выводит справку по использованию."""
    print("""
Ride Dispatch: тарифы, подбор водителей, заявки и торг о цене

Использование:
    python main.py [mode]

Режимы:
    api      - HTTP API (FastAPI)
    worker   - фоновая очистка просроченных заявок и торгов
    all      - API и воркеры в одном процессе
""")


if __name__ == "__main__":
    mode = None

    if len(sys.argv) > 1:
        arg = sys.argv[1].lower()
        if arg in ("--help", "-h"):
            print_usage()
            sys.exit(0)
        elif arg in VALID_MODES:
            mode = arg
        else:
            print(f"Ошибка: неизвестный режим '{arg}'")
            print_usage()
            sys.exit(1)

    try:
        asyncio.run(main(mode))
    except KeyboardInterrupt:
        pass
