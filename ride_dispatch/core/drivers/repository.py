# ride_dispatch/core/drivers/repository.py
"""
Репозиторий водителей.
"""

from __future__ import annotations

from typing import Optional

from asyncpg import Connection, Record

from ride_dispatch.common.constants import DriverStatus, SubscriptionStatus
from ride_dispatch.common.exceptions import ConcurrencyConflictError
from ride_dispatch.common.logger import log_error
from ride_dispatch.common.utils import normalize_location
from ride_dispatch.core.drivers.models import Driver
from ride_dispatch.infra.database import DatabaseManager, rows_affected


_COLUMNS = """
    id, name, phone, whatsapp, email, status, subscription_status,
    current_location, active, average_rating, total_rides, total_ratings,
    created_at, updated_at, version
"""

# Нормализация района на стороне БД (как normalize_location)
_NORMALIZED_LOCATION = "lower(regexp_replace(btrim(current_location), '\\s+', ' ', 'g'))"


class DriverRepository:
    """Репозиторий водителей."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    @staticmethod
    def _row_to_driver(row: Record) -> Driver:
        """Преобразует строку БД в модель."""
        return Driver(
            id=row["id"],
            name=row["name"],
            phone=row["phone"],
            whatsapp=row["whatsapp"],
            email=row["email"],
            status=DriverStatus(row["status"]),
            subscription_status=SubscriptionStatus(row["subscription_status"]),
            current_location=row["current_location"],
            active=row["active"],
            average_rating=float(row["average_rating"]),
            total_rides=row["total_rides"],
            total_ratings=row["total_ratings"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            version=row["version"],
        )

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_by_id(self, driver_id: str) -> Optional[Driver]:
        """
        Получает водителя по ID.

        Returns:
            Водитель или None
        """
        try:
            row = await self._db.fetchrow(f"SELECT {_COLUMNS} FROM drivers WHERE id = $1", driver_id)
            return self._row_to_driver(row) if row else None
        except Exception as e:
            await log_error(f"Ошибка получения водителя {driver_id}: {e}")
            return None

    async def list_active(self) -> list[Driver]:
        """Все водители с флагом active."""
        try:
            rows = await self._db.fetch(
                f"SELECT {_COLUMNS} FROM drivers WHERE active = true ORDER BY created_at"
            )
            return [self._row_to_driver(row) for row in rows]
        except Exception as e:
            await log_error(f"Ошибка получения активных водителей: {e}")
            return []

    async def find_available_at(self, location: str) -> list[Driver]:
        """
        Свободные водители с активной подпиской в указанном районе.

        Args:
            location: Район (сравнение без учёта регистра и пробелов)
        """
        try:
            rows = await self._db.fetch(
                f"""
                SELECT {_COLUMNS} FROM drivers
                WHERE status = $1
                  AND subscription_status = $2
                  AND {_NORMALIZED_LOCATION} = $3
                """,
                DriverStatus.AVAILABLE.value,
                SubscriptionStatus.ACTIVE.value,
                normalize_location(location),
            )
            return [self._row_to_driver(row) for row in rows]
        except Exception as e:
            await log_error(f"Ошибка поиска водителей в районе {location}: {e}")
            return []

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def create(self, driver: Driver) -> Optional[Driver]:
        """
        Регистрирует водителя.

        Returns:
            Созданный водитель или None при ошибке
        """
        try:
            await self._db.execute(
                """
                INSERT INTO drivers (
                    id, name, phone, whatsapp, email, status, subscription_status,
                    current_location, active, average_rating, total_rides, total_ratings,
                    created_at, updated_at, version
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, 0)
                """,
                driver.id, driver.name, driver.phone, driver.whatsapp, driver.email,
                driver.status.value, driver.subscription_status.value, driver.current_location,
                driver.active, driver.average_rating, driver.total_rides, driver.total_ratings,
                driver.created_at, driver.updated_at,
            )
            return driver
        except Exception as e:
            await log_error(f"Ошибка создания водителя: {e}")
            return None

    async def exists(self, conn: Connection, driver_id: str) -> bool:
        """Проверяет, что водитель зарегистрирован (в рамках транзакции)."""
        return bool(await conn.fetchval("SELECT EXISTS(SELECT 1 FROM drivers WHERE id = $1)", driver_id))

    async def fetch_for_update(self, conn: Connection, driver_id: str) -> Optional[Driver]:
        """Читает водителя с блокировкой строки."""
        row = await conn.fetchrow(f"SELECT {_COLUMNS} FROM drivers WHERE id = $1 FOR UPDATE", driver_id)
        return self._row_to_driver(row) if row else None

    async def save(self, conn: Connection, driver: Driver) -> Driver:
        """
        Сохраняет водителя с проверкой версии.

        Raises:
            ConcurrencyConflictError: Версия изменилась с момента чтения
        """
        status = await conn.execute(
            """
            UPDATE drivers
            SET name = $3, phone = $4, whatsapp = $5, email = $6,
                status = $7, subscription_status = $8, current_location = $9, active = $10,
                average_rating = $11, total_rides = $12, total_ratings = $13,
                updated_at = $14, version = version + 1
            WHERE id = $1 AND version = $2
            """,
            driver.id, driver.version, driver.name, driver.phone, driver.whatsapp, driver.email,
            driver.status.value, driver.subscription_status.value, driver.current_location,
            driver.active, driver.average_rating, driver.total_rides, driver.total_ratings,
            driver.updated_at,
        )
        if rows_affected(status) == 0:
            raise ConcurrencyConflictError("drivers", driver.id, driver.version)
        driver.version += 1
        return driver
