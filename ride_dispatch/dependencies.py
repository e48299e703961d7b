# ride_dispatch/dependencies.py
"""
Зависимости приложения.
Инициализация инфраструктуры и сборка сервисов.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_info
from ride_dispatch.core.bookings import BookingRepository, BookingService, EarningsService
from ride_dispatch.core.drivers import DriverRepository, DriverService
from ride_dispatch.core.matching import MatchingService
from ride_dispatch.core.negotiations import NegotiationService
from ride_dispatch.core.notifications import NotificationService
from ride_dispatch.core.pricing import PricingRepository, PricingService
from ride_dispatch.infra.database import DatabaseManager, close_db, get_db, init_db
from ride_dispatch.infra.event_bus import EventBus, close_event_bus, get_event_bus, init_event_bus
from ride_dispatch.infra.redis_client import RedisClient, close_redis, get_redis, init_redis


@dataclass
class Services:
    """Набор сервисов, разделяющих одни подключения."""

    db: DatabaseManager
    redis: RedisClient
    event_bus: EventBus
    notifications: NotificationService
    pricing: PricingService
    drivers: DriverService
    matching: MatchingService
    bookings: BookingService
    earnings: EarningsService
    negotiations: NegotiationService


def build_services(db: DatabaseManager, redis: RedisClient, event_bus: EventBus) -> Services:
    """Собирает сервисы поверх готовых подключений."""
    driver_repo = DriverRepository(db)
    pricing_repo = PricingRepository(db)
    booking_repo = BookingRepository(db)
    notifications = NotificationService(event_bus)

    return Services(
        db=db,
        redis=redis,
        event_bus=event_bus,
        notifications=notifications,
        pricing=PricingService(db, redis, event_bus, repo=pricing_repo, driver_repo=driver_repo),
        drivers=DriverService(db, event_bus, repo=driver_repo),
        matching=MatchingService(db, driver_repo=driver_repo, pricing_repo=pricing_repo),
        bookings=BookingService(db, event_bus, notifications, repo=booking_repo, driver_repo=driver_repo),
        earnings=EarningsService(booking_repo),
        negotiations=NegotiationService(db, event_bus, notifications, booking_repo=booking_repo),
    )


# Глобальный экземпляр
_services: Optional[Services] = None


async def init_dependencies(init_infra: bool = True) -> Services:
    """
    Инициализирует зависимости.

    Args:
        init_infra: Подключаться к PostgreSQL, Redis и RabbitMQ.
                    False, если подключения уже открыты в main.py.
    """
    global _services

    if init_infra:
        await init_db()
        await init_redis()
        await init_event_bus()

    _services = build_services(get_db(), get_redis(), get_event_bus())
    await log_info("Сервисы инициализированы", type_msg=TypeMsg.DEBUG)
    return _services


async def close_dependencies(close_infra: bool = True) -> None:
    """Закрывает ресурсы."""
    global _services
    _services = None

    if close_infra:
        await close_event_bus()
        await close_redis()
        await close_db()


def get_services() -> Services:
    """Возвращает собранные сервисы."""
    if _services is None:
        raise RuntimeError("Зависимости не инициализированы. Вызовите init_dependencies() сначала.")
    return _services


def set_services(services: Optional[Services]) -> None:
    """Подменяет набор сервисов (тесты, встраивание)."""
    global _services
    _services = services
