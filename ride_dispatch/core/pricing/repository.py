# ride_dispatch/core/pricing/repository.py
"""
Репозиторий тарифных документов водителей (таблица driver_pricing).
"""

from __future__ import annotations

from typing import Any, Optional

from asyncpg import Connection, Record

from ride_dispatch.common.exceptions import ConcurrencyConflictError
from ride_dispatch.common.logger import log_error
from ride_dispatch.core.pricing.models import PricingProfile
from ride_dispatch.infra.database import DatabaseManager, rows_affected


_COLUMNS = "driver_id, route_pricing, special_zones, modifiers, updated_at, version"


class PricingRepository:
    """
    Репозиторий тарифов.

    Методы с параметром conn выполняются внутри транзакции и пробрасывают
    исключения, чтобы транзакцию можно было откатить и повторить.
    """

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    @staticmethod
    def _row_to_profile(row: Record) -> PricingProfile:
        """Преобразует строку БД в модель."""
        return PricingProfile.model_validate({
            "driver_id": row["driver_id"],
            "route_pricing": row["route_pricing"] or {},
            "special_zones": row["special_zones"] or {},
            "modifiers": row["modifiers"] or {},
            "updated_at": row["updated_at"],
            "version": row["version"],
        })

    @staticmethod
    def _documents(profile: PricingProfile) -> tuple[Any, Any, Any]:
        """jsonb-представление вложенных документов."""
        dumped = profile.model_dump(mode="json", exclude_none=True)
        return dumped["route_pricing"], dumped["special_zones"], dumped["modifiers"]

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get(self, driver_id: str) -> Optional[PricingProfile]:
        """
        Получает тарифы водителя.

        Returns:
            Профиль или None (нет документа или ошибка БД)
        """
        try:
            row = await self._db.fetchrow(
                f"SELECT {_COLUMNS} FROM driver_pricing WHERE driver_id = $1",
                driver_id,
            )
            return self._row_to_profile(row) if row else None
        except Exception as e:
            await log_error(f"Ошибка получения тарифов водителя {driver_id}: {e}")
            return None

    async def get_many(self, driver_ids: list[str]) -> dict[str, PricingProfile]:
        """
        Получает тарифы нескольких водителей одним запросом.

        Returns:
            Словарь {driver_id: профиль}
        """
        if not driver_ids:
            return {}
        try:
            rows = await self._db.fetch(
                f"SELECT {_COLUMNS} FROM driver_pricing WHERE driver_id = ANY($1::text[])",
                driver_ids,
            )
            return {row["driver_id"]: self._row_to_profile(row) for row in rows}
        except Exception as e:
            await log_error(f"Ошибка получения тарифов водителей: {e}")
            return {}

    # =========================================================================
    # ТРАНЗАКЦИОННЫЕ ОПЕРАЦИИ
    # =========================================================================

    async def fetch_for_update(self, conn: Connection, driver_id: str) -> Optional[PricingProfile]:
        """Читает документ с блокировкой строки."""
        row = await conn.fetchrow(
            f"SELECT {_COLUMNS} FROM driver_pricing WHERE driver_id = $1 FOR UPDATE",
            driver_id,
        )
        return self._row_to_profile(row) if row else None

    async def insert(self, conn: Connection, profile: PricingProfile) -> PricingProfile:
        """
        Создаёт документ.

        Raises:
            ConcurrencyConflictError: Документ уже создан другой транзакцией
        """
        route_pricing, special_zones, modifiers = self._documents(profile)
        status = await conn.execute(
            """
            INSERT INTO driver_pricing (driver_id, route_pricing, special_zones, modifiers, updated_at, version)
            VALUES ($1, $2, $3, $4, $5, 0)
            ON CONFLICT (driver_id) DO NOTHING
            """,
            profile.driver_id, route_pricing, special_zones, modifiers, profile.updated_at,
        )
        if rows_affected(status) == 0:
            raise ConcurrencyConflictError("driver_pricing", profile.driver_id, 0)
        profile.version = 0
        return profile

    async def save(self, conn: Connection, profile: PricingProfile) -> PricingProfile:
        """
        Сохраняет документ с проверкой версии.

        Raises:
            ConcurrencyConflictError: Версия изменилась с момента чтения
        """
        route_pricing, special_zones, modifiers = self._documents(profile)
        status = await conn.execute(
            """
            UPDATE driver_pricing
            SET route_pricing = $3, special_zones = $4, modifiers = $5,
                updated_at = $6, version = version + 1
            WHERE driver_id = $1 AND version = $2
            """,
            profile.driver_id, profile.version, route_pricing, special_zones, modifiers,
            profile.updated_at,
        )
        if rows_affected(status) == 0:
            raise ConcurrencyConflictError("driver_pricing", profile.driver_id, profile.version)
        profile.version += 1
        return profile
