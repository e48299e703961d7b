# ride_dispatch/core/negotiations/repository.py
"""
Репозиторий торга (таблица negotiations, журнал сообщений в jsonb).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from asyncpg import Connection, Record

from ride_dispatch.common.constants import NegotiationStatus
from ride_dispatch.common.exceptions import ConcurrencyConflictError
from ride_dispatch.common.logger import log_error
from ride_dispatch.core.negotiations.models import Negotiation
from ride_dispatch.infra.database import DatabaseManager, rows_affected


_COLUMNS = """
    id, booking_request_id, driver_id, customer_id, customer_name, customer_phone,
    initial_price, proposed_price, current_offer, status, messages,
    created_at, expires_at, resolved_at, version
"""

class NegotiationRepository:
    """Репозиторий торга."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    @staticmethod
    def _row_to_negotiation(row: Record) -> Negotiation:
        return Negotiation.model_validate(dict(row))

    @staticmethod
    def _messages(negotiation: Negotiation) -> list[dict]:
        return [m.model_dump(mode="json") for m in negotiation.messages]

    async def get_by_id(self, negotiation_id: str) -> Optional[Negotiation]:
        """Торг по ID."""
        try:
            row = await self._db.fetchrow(
                f"SELECT {_COLUMNS} FROM negotiations WHERE id = $1", negotiation_id
            )
            return self._row_to_negotiation(row) if row else None
        except Exception as e:
            await log_error(f"Ошибка получения торга {negotiation_id}: {e}")
            return None

    async def list_pending_for_driver(self, driver_id: str) -> list[Negotiation]:
        """Торги водителя в статусе pending, новые первыми."""
        try:
            rows = await self._db.fetch(
                f"""
                SELECT {_COLUMNS} FROM negotiations
                WHERE driver_id = $1 AND status = $2
                ORDER BY created_at DESC
                """,
                driver_id, NegotiationStatus.PENDING.value,
            )
            return [self._row_to_negotiation(row) for row in rows]
        except Exception as e:
            await log_error(f"Ошибка получения торгов водителя {driver_id}: {e}")
            return []

    async def list_expired_ids(self, now: datetime, limit: int = 500) -> list[str]:
        """ID ожидающих торгов с истёкшим сроком."""
        try:
            rows = await self._db.fetch(
                """
                SELECT id FROM negotiations
                WHERE status = $1 AND expires_at < $2
                ORDER BY expires_at
                LIMIT $3
                """,
                NegotiationStatus.PENDING.value, now, limit,
            )
            return [row["id"] for row in rows]
        except Exception as e:
            await log_error(f"Ошибка поиска истёкших торгов: {e}")
            return []

    async def create(self, negotiation: Negotiation) -> Optional[Negotiation]:
        """Сохраняет новый торг."""
        try:
            await self._db.execute(
                """
                INSERT INTO negotiations (
                    id, booking_request_id, driver_id, customer_id, customer_name, customer_phone,
                    initial_price, proposed_price, current_offer, status, messages,
                    created_at, expires_at, resolved_at, version
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, 0)
                """,
                negotiation.id,
                negotiation.booking_request_id,
                negotiation.driver_id,
                negotiation.customer_id,
                negotiation.customer_name,
                negotiation.customer_phone,
                negotiation.initial_price,
                negotiation.proposed_price,
                negotiation.current_offer,
                negotiation.status.value,
                self._messages(negotiation),
                negotiation.created_at,
                negotiation.expires_at,
                negotiation.resolved_at,
            )
            return negotiation
        except Exception as e:
            await log_error(f"Ошибка создания торга: {e}")
            return None

    async def fetch_for_update(self, conn: Connection, negotiation_id: str) -> Optional[Negotiation]:
        """Читает торг с блокировкой строки."""
        row = await conn.fetchrow(
            f"SELECT {_COLUMNS} FROM negotiations WHERE id = $1 FOR UPDATE", negotiation_id
        )
        return self._row_to_negotiation(row) if row else None

    async def save(self, conn: Connection, negotiation: Negotiation) -> Negotiation:
        """
        Сохраняет статус, предложение и журнал с проверкой версии.

        Raises:
            ConcurrencyConflictError: Торг изменила другая транзакция
        """
        status = await conn.execute(
            """
            UPDATE negotiations
            SET current_offer = $3, status = $4, messages = $5, resolved_at = $6,
                version = version + 1
            WHERE id = $1 AND version = $2
            """,
            negotiation.id,
            negotiation.version,
            negotiation.current_offer,
            negotiation.status.value,
            self._messages(negotiation),
            negotiation.resolved_at,
        )
        if rows_affected(status) == 0:
            raise ConcurrencyConflictError("negotiations", negotiation.id, negotiation.version)
        negotiation.version += 1
        return negotiation
