# ride_dispatch/core/bookings/repository.py
"""
Репозиторий заявок на поездку (таблица booking_requests).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from asyncpg import Connection, Record

from ride_dispatch.common.constants import BookingStatus
from ride_dispatch.common.exceptions import ConcurrencyConflictError
from ride_dispatch.common.logger import log_error
from ride_dispatch.common.utils import normalize_location
from ride_dispatch.core.bookings.models import BookingRequest, DriverLocation
from ride_dispatch.infra.database import DatabaseManager, rows_affected


# Поля, которые меняются после создания заявки
_MUTABLE_FIELDS: tuple[str, ...] = (
    "status", "ride_status", "accepted_by", "expires_at",
    "accepted_at", "completed_at", "cancelled_at",
    "confirmed_at", "en_route_at", "arrived_at", "started_at", "trip_completed_at",
    "fare", "rating", "review", "rated_at", "cancellation_reason", "driver_location",
)

_INSERT_FIELDS: tuple[str, ...] = (
    "id", "customer_name", "customer_phone", "customer_id",
    "pickup_location", "destination", "pickup_date", "pickup_time",
    "estimated_price", "notes", "vehicle_type", "preferred_driver_id",
    "created_at",
) + _MUTABLE_FIELDS

_COLUMNS = ", ".join(_INSERT_FIELDS + ("version",))

_INSERT_SQL = (
    f"INSERT INTO booking_requests ({', '.join(_INSERT_FIELDS)}, version) "
    f"VALUES ({', '.join(f'${i}' for i in range(1, len(_INSERT_FIELDS) + 1))}, 0)"
)

_UPDATE_SQL = (
    "UPDATE booking_requests SET "
    + ", ".join(f"{name} = ${i}" for i, name in enumerate(_MUTABLE_FIELDS, start=3))
    + ", version = version + 1 WHERE id = $1 AND version = $2"
)

_NORMALIZED_PICKUP = "lower(regexp_replace(btrim(pickup_location), '\\s+', ' ', 'g'))"


def _to_db(value: Any) -> Any:
    """Приводит значение поля модели к виду для asyncpg."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, DriverLocation):
        return value.model_dump(mode="json")
    return value


class BookingRepository:
    """
    Репозиторий заявок.

    Методы с параметром conn выполняются внутри транзакции и пробрасывают
    исключения; остальные логируют ошибку и возвращают пустой результат.
    """

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    @staticmethod
    def _row_to_booking(row: Record) -> BookingRequest:
        """Преобразует строку БД в модель."""
        return BookingRequest.model_validate(dict(row))

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def load(self, booking_id: str) -> Optional[BookingRequest]:
        """
        Читает заявку по ID. Ошибки БД пробрасываются.

        Returns:
            Заявка или None, если строки нет
        """
        row = await self._db.fetchrow(
            f"SELECT {_COLUMNS} FROM booking_requests WHERE id = $1", booking_id
        )
        return self._row_to_booking(row) if row else None

    async def get_by_id(self, booking_id: str) -> Optional[BookingRequest]:
        """
        Получает заявку по ID.

        Returns:
            Заявка или None (нет строки или ошибка БД)
        """
        try:
            return await self.load(booking_id)
        except Exception as e:
            await log_error(f"Ошибка получения заявки {booking_id}: {e}")
            return None

    async def list_available(self, location: str, now: datetime, limit: int = 100) -> list[BookingRequest]:
        """
        Ожидающие заявки с подачей в районе, срок которых не истёк.
        """
        try:
            rows = await self._db.fetch(
                f"""
                SELECT {_COLUMNS} FROM booking_requests
                WHERE status = $1 AND {_NORMALIZED_PICKUP} = $2 AND expires_at > $3
                ORDER BY created_at DESC
                LIMIT $4
                """,
                BookingStatus.PENDING.value, normalize_location(location), now, limit,
            )
            return [self._row_to_booking(row) for row in rows]
        except Exception as e:
            await log_error(f"Ошибка получения доступных заявок в {location}: {e}")
            return []

    async def list_by_driver(
        self,
        driver_id: str,
        statuses: tuple[BookingStatus, ...] | None = None,
        limit: int = 50,
    ) -> list[BookingRequest]:
        """История заявок водителя, новые первыми."""
        statuses = statuses or (BookingStatus.ACCEPTED, BookingStatus.COMPLETED)
        try:
            rows = await self._db.fetch(
                f"""
                SELECT {_COLUMNS} FROM booking_requests
                WHERE accepted_by = $1 AND status = ANY($2::text[])
                ORDER BY created_at DESC
                LIMIT $3
                """,
                driver_id, [s.value for s in statuses], limit,
            )
            return [self._row_to_booking(row) for row in rows]
        except Exception as e:
            await log_error(f"Ошибка получения истории водителя {driver_id}: {e}")
            return []

    async def list_by_customer(
        self,
        customer_id: str | None = None,
        customer_phone: str | None = None,
        limit: int = 50,
    ) -> list[BookingRequest]:
        """Заявки клиента по ID или телефону, новые первыми."""
        if customer_id is None and customer_phone is None:
            return []
        try:
            rows = await self._db.fetch(
                f"""
                SELECT {_COLUMNS} FROM booking_requests
                WHERE ($1::text IS NOT NULL AND customer_id = $1)
                   OR ($2::text IS NOT NULL AND customer_phone = $2)
                ORDER BY created_at DESC
                LIMIT $3
                """,
                customer_id, customer_phone, limit,
            )
            return [self._row_to_booking(row) for row in rows]
        except Exception as e:
            await log_error(f"Ошибка получения заявок клиента: {e}")
            return []

    async def list_expired_ids(self, now: datetime, limit: int = 500) -> list[str]:
        """ID ожидающих заявок с истёкшим сроком."""
        try:
            rows = await self._db.fetch(
                """
                SELECT id FROM booking_requests
                WHERE status = $1 AND expires_at <= $2
                ORDER BY expires_at
                LIMIT $3
                """,
                BookingStatus.PENDING.value, now, limit,
            )
            return [row["id"] for row in rows]
        except Exception as e:
            await log_error(f"Ошибка поиска истёкших заявок: {e}")
            return []

    async def count_pending_at(self, location: str, now: datetime) -> int:
        """Количество актуальных ожидающих заявок в районе."""
        try:
            value = await self._db.fetchval(
                f"""
                SELECT count(*) FROM booking_requests
                WHERE status = $1 AND {_NORMALIZED_PICKUP} = $2 AND expires_at > $3
                """,
                BookingStatus.PENDING.value, normalize_location(location), now,
            )
            return int(value or 0)
        except Exception as e:
            await log_error(f"Ошибка подсчёта заявок в {location}: {e}")
            return 0

    async def count_active_for_driver(self, driver_id: str) -> int:
        """Количество принятых, но не завершённых поездок водителя."""
        try:
            value = await self._db.fetchval(
                "SELECT count(*) FROM booking_requests WHERE accepted_by = $1 AND status = $2",
                driver_id, BookingStatus.ACCEPTED.value,
            )
            return int(value or 0)
        except Exception as e:
            await log_error(f"Ошибка подсчёта активных поездок водителя {driver_id}: {e}")
            return 0

    async def sum_fares(self, driver_id: str, start: datetime, end: datetime | None = None) -> int:
        """
        Сумма стоимости завершённых поездок водителя за период [start, end).
        """
        try:
            value = await self._db.fetchval(
                """
                SELECT COALESCE(SUM(fare), 0) FROM booking_requests
                WHERE accepted_by = $1 AND status = $2
                  AND completed_at >= $3
                  AND ($4::timestamptz IS NULL OR completed_at < $4)
                """,
                driver_id, BookingStatus.COMPLETED.value, start, end,
            )
            return int(value or 0)
        except Exception as e:
            await log_error(f"Ошибка расчёта заработка водителя {driver_id}: {e}")
            return 0

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def create(self, booking: BookingRequest) -> Optional[BookingRequest]:
        """
        Сохраняет новую заявку.

        Returns:
            Заявка или None при ошибке
        """
        try:
            await self._db.execute(
                _INSERT_SQL, *(_to_db(getattr(booking, name)) for name in _INSERT_FIELDS)
            )
            return booking
        except Exception as e:
            await log_error(f"Ошибка создания заявки: {e}")
            return None

    async def update_driver_location(self, booking_id: str, location: DriverLocation) -> bool:
        """
        Записывает позицию водителя. Последняя запись побеждает,
        версия документа не меняется.

        Returns:
            True, если заявка принята и позиция записана

        Raises:
            Исключения asyncpg при недоступности БД
        """
        status = await self._db.execute(
            "UPDATE booking_requests SET driver_location = $2 WHERE id = $1 AND status = $3",
            booking_id, location.model_dump(mode="json"), BookingStatus.ACCEPTED.value,
        )
        return rows_affected(status) > 0

    async def fetch_for_update(self, conn: Connection, booking_id: str) -> Optional[BookingRequest]:
        """Читает заявку с блокировкой строки."""
        row = await conn.fetchrow(
            f"SELECT {_COLUMNS} FROM booking_requests WHERE id = $1 FOR UPDATE", booking_id
        )
        return self._row_to_booking(row) if row else None

    async def save(self, conn: Connection, booking: BookingRequest) -> BookingRequest:
        """
        Сохраняет изменения заявки с проверкой версии.

        Raises:
            ConcurrencyConflictError: Заявку изменила другая транзакция
        """
        status = await conn.execute(
            _UPDATE_SQL,
            booking.id,
            booking.version,
            *(_to_db(getattr(booking, name)) for name in _MUTABLE_FIELDS),
        )
        if rows_affected(status) == 0:
            raise ConcurrencyConflictError("booking_requests", booking.id, booking.version)
        booking.version += 1
        return booking
