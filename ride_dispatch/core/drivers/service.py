# ride_dispatch/core/drivers/service.py
"""
Сервис водителей: регистрация, самообслуживание (статус, район)
и подтверждение подписки администратором.
"""

from __future__ import annotations

from typing import Callable, Optional

from ride_dispatch.common.constants import DriverStatus, SubscriptionStatus, TypeMsg
from ride_dispatch.common.logger import log_error, log_info
from ride_dispatch.common.utils import Clock, utc_now
from ride_dispatch.core.drivers.models import Driver, DriverCreateDTO
from ride_dispatch.core.drivers.repository import DriverRepository
from ride_dispatch.infra.database import DatabaseManager
from ride_dispatch.infra.event_bus import DomainEvent, EventBus, EventTypes


class DriverService:
    """Сервис водителей."""

    def __init__(
        self,
        db: DatabaseManager,
        event_bus: EventBus,
        repo: DriverRepository | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Args:
            db: Менеджер базы данных
            event_bus: Шина событий
            repo: Репозиторий водителей
            clock: Источник текущего времени
        """
        self._db = db
        self._event_bus = event_bus
        self._repo = repo or DriverRepository(db)
        self._clock = clock

    async def get_driver(self, driver_id: str) -> Optional[Driver]:
        """Получает водителя по ID."""
        return await self._repo.get_by_id(driver_id)

    async def register_driver(self, dto: DriverCreateDTO) -> Optional[Driver]:
        """
        Регистрирует водителя. Подписка ожидает подтверждения оплаты.

        Returns:
            Созданный водитель или None
        """
        now = self._clock()
        driver = Driver(
            name=dto.name.strip(),
            phone=dto.phone,
            whatsapp=dto.whatsapp,
            email=dto.email,
            current_location=dto.current_location,
            created_at=now,
            updated_at=now,
        )
        created = await self._repo.create(driver)
        if created is not None:
            await log_info(f"Водитель зарегистрирован: {created.id} ({created.name})", type_msg=TypeMsg.INFO)
        return created

    async def _update(self, driver_id: str, mutate: Callable[[Driver], None]) -> Optional[Driver]:
        """Изменяет водителя в транзакции с проверкой версии."""
        async def operation(conn) -> Optional[Driver]:
            driver = await self._repo.fetch_for_update(conn, driver_id)
            if driver is None:
                return None
            mutate(driver)
            driver.updated_at = self._clock()
            return await self._repo.save(conn, driver)

        return await self._db.run_transaction(operation)

    async def set_status(self, driver_id: str, status: DriverStatus) -> Optional[Driver]:
        """Переключает доступность водителя (available / offline / busy)."""
        def mutate(driver: Driver) -> None:
            driver.status = status

        driver = await self._update(driver_id, mutate)
        if driver is not None:
            await self._publish(EventTypes.DRIVER_STATUS_CHANGED, driver)
        return driver

    async def set_location(self, driver_id: str, location: str) -> Optional[Driver]:
        """Меняет текущий район водителя."""
        def mutate(driver: Driver) -> None:
            driver.current_location = location.strip()

        driver = await self._update(driver_id, mutate)
        if driver is not None:
            await self._publish(EventTypes.DRIVER_LOCATION_UPDATED, driver)
        return driver

    async def set_subscription_status(
        self,
        driver_id: str,
        subscription_status: SubscriptionStatus,
    ) -> Optional[Driver]:
        """
        Меняет статус подписки (подтверждение оплаты администратором).
        От статуса подписки зависит видимость водителя для клиентов.
        """
        def mutate(driver: Driver) -> None:
            driver.subscription_status = subscription_status

        driver = await self._update(driver_id, mutate)
        if driver is not None:
            await log_info(
                f"Подписка водителя {driver_id}: {subscription_status.value}",
                type_msg=TypeMsg.INFO,
            )
            await self._publish(EventTypes.DRIVER_STATUS_CHANGED, driver)
        return driver

    async def _publish(self, event_type: str, driver: Driver) -> None:
        try:
            await self._event_bus.publish(DomainEvent(
                event_type=event_type,
                payload={
                    "driver_id": driver.id,
                    "status": driver.status.value,
                    "subscription_status": driver.subscription_status.value,
                    "current_location": driver.current_location,
                },
            ))
        except Exception as e:
            await log_error(f"Ошибка публикации события водителя: {e}")
