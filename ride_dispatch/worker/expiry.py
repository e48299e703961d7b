# ride_dispatch/worker/expiry.py
"""
Фоновая очистка просроченных заявок и торгов.

Читатели всё равно отфильтровывают просроченные записи сами:
воркер лишь приводит статусы в БД в соответствие со сроками.
"""

from __future__ import annotations

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.logger import log_info
from ride_dispatch.core.bookings.service import BookingService
from ride_dispatch.core.negotiations.service import NegotiationService
from ride_dispatch.worker.base import BaseWorker


class ExpiryWorker(BaseWorker):
    """Помечает истёкшие заявки и торги."""

    def __init__(
        self,
        bookings: BookingService,
        negotiations: NegotiationService,
        interval: float | None = None,
    ) -> None:
        if interval is None:
            from ride_dispatch.config import settings
            interval = settings.booking.EXPIRY_REAPER_INTERVAL

        super().__init__(interval)
        self._bookings = bookings
        self._negotiations = negotiations

    @property
    def name(self) -> str:
        return "expiry"

    async def tick(self) -> None:
        bookings = await self._bookings.expire_stale_bookings()
        negotiations = await self._negotiations.expire_stale()
        if bookings or negotiations:
            await log_info(
                f"Очистка: заявок {bookings}, торгов {negotiations}",
                type_msg=TypeMsg.DEBUG,
            )
