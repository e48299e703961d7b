# ride_dispatch/core/pricing/service.py
"""
Сервис тарифов водителей.
Управление ценами по маршрутам, модификаторами и расчёт стоимости.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.exceptions import DriverNotFoundError
from ride_dispatch.common.logger import log_error, log_info
from ride_dispatch.common.utils import Clock, utc_now
from ride_dispatch.core.drivers.repository import DriverRepository
from ride_dispatch.core.pricing.calculator import FareCalculator, make_route_key, validate_route_key
from ride_dispatch.core.pricing.models import (
    FareBreakdown,
    PricingModifiers,
    PricingProfile,
    RoutePrice,
    RoutePriceDTO,
    SpecialZone,
)
from ride_dispatch.core.pricing.repository import PricingRepository
from ride_dispatch.infra.database import DatabaseManager
from ride_dispatch.infra.event_bus import DomainEvent, EventBus, EventTypes
from ride_dispatch.infra.redis_client import RedisClient


class PricingService:
    """
    Сервис тарифов.

    Документ тарифов принадлежит одному водителю: driver_id является
    ключом документа, поэтому водитель меняет только свои цены.
    """

    def __init__(
        self,
        db: DatabaseManager,
        redis: RedisClient,
        event_bus: EventBus,
        repo: PricingRepository | None = None,
        driver_repo: DriverRepository | None = None,
        calculator: FareCalculator | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Args:
            db: Менеджер базы данных
            redis: Клиент Redis (кэш профилей)
            event_bus: Шина событий
            repo: Репозиторий (по умолчанию PostgreSQL)
            driver_repo: Репозиторий водителей (проверка существования)
            calculator: Калькулятор стоимости
            clock: Источник текущего времени
        """
        from ride_dispatch.config import settings

        self._db = db
        self._redis = redis
        self._event_bus = event_bus
        self._repo = repo or PricingRepository(db)
        self._driver_repo = driver_repo or DriverRepository(db)
        self._calculator = calculator or FareCalculator()
        self._clock = clock
        self._cache_ttl = settings.redis_ttl.PRICING_TTL

    @property
    def calculator(self) -> FareCalculator:
        """Калькулятор стоимости."""
        return self._calculator

    def _cache_key(self, driver_id: str) -> str:
        """Генерирует ключ кэша для тарифов."""
        return f"pricing:{driver_id}"

    # =========================================================================
    # КЭШ
    # =========================================================================

    async def _cache_get(self, driver_id: str) -> Optional[PricingProfile]:
        try:
            return await self._redis.get_model(self._cache_key(driver_id), PricingProfile)
        except Exception as e:
            await log_error(f"Ошибка чтения тарифов из кэша: {e}")
            return None

    async def _cache_set(self, profile: PricingProfile) -> None:
        try:
            await self._redis.set_model(self._cache_key(profile.driver_id), profile, ttl=self._cache_ttl)
        except Exception as e:
            await log_error(f"Ошибка записи тарифов в кэш: {e}")

    async def _cache_invalidate(self, driver_id: str) -> None:
        try:
            await self._redis.delete(self._cache_key(driver_id))
        except Exception as e:
            await log_error(f"Ошибка инвалидации кэша тарифов: {e}")

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_profile(self, driver_id: str) -> PricingProfile:
        """
        Получает тарифы водителя.
        Если документа нет, возвращает пустой профиль.
        """
        cached = await self._cache_get(driver_id)
        if cached is not None:
            return cached

        profile = await self._repo.get(driver_id)
        if profile is None:
            return PricingProfile(driver_id=driver_id)

        await self._cache_set(profile)
        return profile

    async def get_profiles(self, driver_ids: list[str]) -> dict[str, PricingProfile]:
        """Тарифы нескольких водителей (снимок для подбора)."""
        return await self._repo.get_many(driver_ids)

    async def compute_fare(
        self,
        driver_id: str,
        from_location: str,
        to_location: str,
        now: datetime | None = None,
    ) -> FareBreakdown:
        """
        Рассчитывает стоимость маршрута по тарифам водителя.

        Returns:
            Детализация; total_fare = 0, если маршрут не настроен
        """
        profile = await self.get_profile(driver_id)
        return self._calculator.calculate_breakdown(
            profile, from_location, to_location, now or self._clock()
        )

    # =========================================================================
    # ИЗМЕНЕНИЕ ТАРИФОВ
    # =========================================================================

    async def _mutate(self, driver_id: str, mutate, create: bool = True) -> Optional[PricingProfile]:
        """
        Читает документ под блокировкой, применяет изменение и сохраняет.
        Отсутствующий документ создаётся, если create и водитель существует.

        Returns:
            Сохранённый профиль или None (документа нет и create=False)

        Raises:
            DriverNotFoundError: Водитель не зарегистрирован
        """
        async def operation(conn) -> Optional[PricingProfile]:
            profile = await self._repo.fetch_for_update(conn, driver_id)
            if profile is None:
                if not create:
                    return None
                if not await self._driver_repo.exists(conn, driver_id):
                    raise DriverNotFoundError(driver_id)
                profile = PricingProfile(driver_id=driver_id, updated_at=self._clock())
                mutate(profile)
                return await self._repo.insert(conn, profile)

            mutate(profile)
            profile.updated_at = self._clock()
            return await self._repo.save(conn, profile)

        profile = await self._db.run_transaction(operation)
        if profile is None:
            return None

        await self._cache_invalidate(driver_id)
        await self._publish(driver_id)
        return profile

    async def set_route_price(self, driver_id: str, dto: RoutePriceDTO) -> PricingProfile:
        """
        Создаёт или изменяет цену маршрута.

        Raises:
            InvalidRouteKeyError: Недопустимые символы в названиях мест
            DriverNotFoundError: Водитель не зарегистрирован
        """
        key = validate_route_key(make_route_key(dto.from_location, dto.to_location))
        route = RoutePrice(price=dto.price, distance=dto.distance, duration=dto.duration)

        def mutate(profile: PricingProfile) -> None:
            profile.route_pricing[key] = route

        profile = await self._mutate(driver_id, mutate)
        await log_info(
            f"Водитель {driver_id} установил цену {dto.price} для маршрута {key}",
            type_msg=TypeMsg.INFO,
        )
        return profile

    async def remove_route_price(self, driver_id: str, from_location: str, to_location: str) -> bool:
        """
        Удаляет цену маршрута. Документ тарифов при этом не создаётся.

        Returns:
            True, если маршрут был настроен
        """
        key = make_route_key(from_location, to_location)
        removed: list[bool] = []

        def mutate(profile: PricingProfile) -> None:
            removed.append(profile.route_pricing.pop(key, None) is not None)

        profile = await self._mutate(driver_id, mutate, create=False)
        return profile is not None and removed[-1]

    async def update_modifiers(self, driver_id: str, modifiers: PricingModifiers) -> PricingProfile:
        """Заменяет модификаторы (ночь, праздник, часы пик)."""
        def mutate(profile: PricingProfile) -> None:
            profile.modifiers = modifiers

        return await self._mutate(driver_id, mutate)

    async def update_special_zones(self, driver_id: str, zones: dict[str, SpecialZone]) -> PricingProfile:
        """
        Заменяет надбавки особых зон.

        Raises:
            InvalidRouteKeyError: Недопустимые символы в названии зоны
            DriverNotFoundError: Водитель не зарегистрирован
        """
        for name in zones:
            validate_route_key(name)

        def mutate(profile: PricingProfile) -> None:
            profile.special_zones = dict(zones)

        return await self._mutate(driver_id, mutate)

    async def _publish(self, driver_id: str) -> None:
        try:
            await self._event_bus.publish(DomainEvent(
                event_type=EventTypes.DRIVER_PRICING_UPDATED,
                payload={"driver_id": driver_id},
            ))
        except Exception as e:
            await log_error(f"Ошибка публикации события тарифов: {e}")
