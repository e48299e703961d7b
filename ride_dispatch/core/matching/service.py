# ride_dispatch/core/matching/service.py
"""
Сервис подбора водителей на маршрут.

Цена берётся по точному ключу (from, to). Если её нет, пункт назначения
сводится к хабу и проверяется ключ (from, хаб): такое совпадение
помечается как nearby. Водители без цены исключаются.
"""

from __future__ import annotations

from typing import Optional

from ride_dispatch.common.constants import MatchType, TypeMsg
from ride_dispatch.common.logger import log_error, log_info
from ride_dispatch.core.drivers.models import Driver
from ride_dispatch.core.drivers.repository import DriverRepository
from ride_dispatch.core.locations.hubs import nearby_hub
from ride_dispatch.core.matching.models import DriverMatch, MatchResult, Recommendations
from ride_dispatch.core.matching.scoring import ScoringWeights, rank_matches, recommend
from ride_dispatch.core.pricing.calculator import make_route_key
from ride_dispatch.core.pricing.models import PricingProfile
from ride_dispatch.core.pricing.repository import PricingRepository
from ride_dispatch.infra.database import DatabaseManager


class MatchingService:
    """
    Сервис матчинга.
    Работает по снимку данных и ничего не пишет.
    """

    def __init__(
        self,
        db: DatabaseManager,
        driver_repo: DriverRepository | None = None,
        pricing_repo: PricingRepository | None = None,
        weights: ScoringWeights | None = None,
        default_rating: float | None = None,
    ) -> None:
        """
        Args:
            db: Менеджер базы данных
            driver_repo: Репозиторий водителей
            pricing_repo: Репозиторий тарифов
            weights: Параметры формулы оценки (по умолчанию из конфига)
            default_rating: Рейтинг водителя без оценок (по умолчанию из конфига)
        """
        self._drivers = driver_repo or DriverRepository(db)
        self._pricing = pricing_repo or PricingRepository(db)
        self._weights = weights or ScoringWeights.from_settings()

        if default_rating is None:
            from ride_dispatch.config import settings
            default_rating = settings.matching.DEFAULT_DRIVER_RATING
        self._default_rating = default_rating

    def _rating_of(self, driver: Driver) -> float:
        """Рейтинг для оценки: средняя оценка или значение по умолчанию."""
        if driver.total_ratings > 0:
            return driver.average_rating
        return self._default_rating

    def _resolve(
        self,
        driver: Driver,
        profile: Optional[PricingProfile],
        exact_key: str,
        hub_key: Optional[str],
        hub_name: Optional[str],
    ) -> Optional[DriverMatch]:
        """Находит цену водителя на маршрут: точную или через хаб."""
        if profile is None:
            return None

        route = profile.route_pricing.get(exact_key)
        match_type = MatchType.EXACT
        via_location = None

        if (route is None or not route.price) and hub_key:
            hub_route = profile.route_pricing.get(hub_key)
            if hub_route is not None and hub_route.price:
                route = hub_route
                match_type = MatchType.NEARBY
                via_location = hub_name

        if route is None or not route.price:
            return None

        return DriverMatch(
            driver_id=driver.id,
            driver_name=driver.name,
            phone=driver.phone,
            whatsapp=driver.whatsapp,
            rating=self._rating_of(driver),
            total_rides=driver.total_rides,
            price=route.price,
            match_type=match_type,
            via_location=via_location,
            is_visible_to_public=driver.is_visible_to_public,
        )

    async def find_drivers(
        self,
        from_location: str,
        to_location: str,
        public_only: bool = False,
    ) -> list[DriverMatch]:
        """
        Ищет водителей с ценой на маршрут.

        Args:
            from_location: Откуда
            to_location: Куда
            public_only: Оставить только водителей с активной подпиской

        Returns:
            Кандидаты по убыванию match_score
        """
        try:
            drivers = await self._drivers.list_active()
            if public_only:
                drivers = [d for d in drivers if d.is_visible_to_public]

            profiles = await self._pricing.get_many([d.id for d in drivers])

            exact_key = make_route_key(from_location, to_location)
            hub = nearby_hub(to_location)
            hub_key = make_route_key(from_location, hub.value) if hub else None
            hub_name = hub.value if hub else None

            matches = []
            for driver in drivers:
                match = self._resolve(driver, profiles.get(driver.id), exact_key, hub_key, hub_name)
                if match is not None:
                    matches.append(match)

            ranked = rank_matches(matches, self._weights)

            await log_info(
                f"Подбор {from_location} -> {to_location}: найдено {len(ranked)} водителей",
                type_msg=TypeMsg.DEBUG,
            )
            return ranked
        except Exception as e:
            await log_error(f"Ошибка подбора водителей: {e}")
            return []

    async def get_recommendations(self, from_location: str, to_location: str) -> Recommendations:
        """Лучшее соотношение, самая низкая цена и лучший рейтинг."""
        return recommend(await self.find_drivers(from_location, to_location))

    async def match(self, from_location: str, to_location: str, public_only: bool = False) -> MatchResult:
        """Все кандидаты и рекомендации одним вызовом."""
        matches = await self.find_drivers(from_location, to_location, public_only=public_only)
        return MatchResult(
            from_location=from_location,
            to_location=to_location,
            matches=matches,
            recommendations=recommend(matches),
        )
