# ride_dispatch/core/bookings/earnings.py
"""
Заработок водителя по завершённым поездкам.

Границы дня и месяца считаются в часовом поясе сервиса,
суммы берутся запросами по диапазону completed_at.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from ride_dispatch.common.utils import Clock, utc_now
from ride_dispatch.core.bookings.models import EarningsMonth, EarningsSummary
from ride_dispatch.core.bookings.repository import BookingRepository


def month_start(value: datetime) -> datetime:
    """Начало месяца для локального времени."""
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def shift_months(start: datetime, months: int) -> datetime:
    """Начало месяца, смещённого на months (может быть отрицательным)."""
    index = start.year * 12 + (start.month - 1) + months
    return start.replace(year=index // 12, month=index % 12 + 1)


class EarningsService:
    """Сводка заработка водителя."""

    def __init__(
        self,
        repo: BookingRepository,
        clock: Clock = utc_now,
        tz_name: str | None = None,
        currency: str | None = None,
        history_months: int = 6,
    ) -> None:
        from ride_dispatch.config import settings

        self._repo = repo
        self._clock = clock
        self._tz = ZoneInfo(tz_name or settings.domain.TIMEZONE)
        self._currency = currency or settings.domain.CURRENCY
        self._history_months = history_months

    def _local_now(self) -> datetime:
        return self._clock().astimezone(self._tz)

    async def get_today_earnings(self, driver_id: str) -> int:
        """Заработок с начала текущих суток."""
        start = self._local_now().replace(hour=0, minute=0, second=0, microsecond=0)
        return await self._repo.sum_fares(driver_id, start, start + timedelta(days=1))

    async def get_month_earnings(self, driver_id: str) -> int:
        """Заработок с начала текущего месяца."""
        start = month_start(self._local_now())
        return await self._repo.sum_fares(driver_id, start, shift_months(start, 1))

    async def get_earnings_history(self, driver_id: str, months: int | None = None) -> list[EarningsMonth]:
        """
        Заработок по месяцам, от самого старого к текущему.

        Args:
            driver_id: ID водителя
            months: Количество месяцев, включая текущий
        """
        months = months or self._history_months
        current = month_start(self._local_now())

        history = []
        for offset in range(months - 1, -1, -1):
            start = shift_months(current, -offset)
            total = await self._repo.sum_fares(driver_id, start, shift_months(start, 1))
            history.append(EarningsMonth(month=start.strftime("%b %Y"), earnings=total))
        return history

    async def get_new_requests_count(self, location: str) -> int:
        """Количество актуальных заявок в районе."""
        return await self._repo.count_pending_at(location, self._clock())

    async def get_active_trips_count(self, driver_id: str) -> int:
        """Количество принятых незавершённых поездок водителя."""
        return await self._repo.count_active_for_driver(driver_id)

    async def get_summary(self, driver_id: str) -> EarningsSummary:
        """Сводка для панели водителя."""
        return EarningsSummary(
            driver_id=driver_id,
            today=await self.get_today_earnings(driver_id),
            this_month=await self.get_month_earnings(driver_id),
            history=await self.get_earnings_history(driver_id),
            active_trips=await self.get_active_trips_count(driver_id),
            currency=self._currency,
        )
