# ride_dispatch/core/tracking/tracker.py
"""
Отслеживание позиции водителя во время поездки.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

from ride_dispatch.common.constants import ActionOutcome, BookingStatus, RideStatus, TypeMsg
from ride_dispatch.common.geo import Coordinates
from ride_dispatch.common.logger import log_info, log_warning
from ride_dispatch.common.utils import Clock, utc_now
from ride_dispatch.core.bookings.models import DriverLocation
from ride_dispatch.core.bookings.service import BookingService
from ride_dispatch.core.tracking.sources import GeolocationSource, LocationUnavailableError
from ride_dispatch.worker.base import BaseWorker


ErrorCallback = Callable[[LocationUnavailableError], Awaitable[None]]


class RideTracker(BaseWorker):
    """
    Периодически отправляет позицию водителя по заявке.

    Останавливается сам, когда поездка завершена или заявка больше
    не принята. Об ошибках источника сообщает только при смене вида
    ошибки, чтобы не повторять одно и то же каждые 30 секунд.
    """

    def __init__(
        self,
        bookings: BookingService,
        booking_id: str,
        source: GeolocationSource,
        destination: Coordinates | None = None,
        interval: float | None = None,
        on_error: ErrorCallback | None = None,
        clock: Clock = utc_now,
    ) -> None:
        if interval is None:
            from ride_dispatch.config import settings
            interval = settings.tracking.LOCATION_UPDATE_INTERVAL

        super().__init__(interval)
        self._bookings = bookings
        self._booking_id = booking_id
        self._source = source
        self._destination = destination
        self._on_error = on_error
        self._clock = clock
        self._last_error_code: Optional[str] = None

    @property
    def name(self) -> str:
        return f"ride_tracker:{self._booking_id}"

    @property
    def last_error_code(self) -> Optional[str]:
        return self._last_error_code

    async def tick(self) -> None:
        try:
            coordinates = await self._source.current_location()
        except LocationUnavailableError as e:
            await self._report(e)
            return

        self._last_error_code = None
        location = DriverLocation(lat=coordinates.lat, lng=coordinates.lng, last_updated=self._clock())
        result = await self._bookings.update_driver_location(self._booking_id, location, self._destination)

        if result.outcome == ActionOutcome.UNAVAILABLE:
            await log_warning(f"Позиция по заявке {self._booking_id} не записана, повтор на следующем шаге")
            return

        booking = result.booking
        if (
            result.outcome == ActionOutcome.NOT_FOUND
            or booking is None
            or booking.status != BookingStatus.ACCEPTED
            or booking.ride_status == RideStatus.COMPLETED
        ):
            await log_info(f"Отслеживание заявки {self._booking_id} завершено", type_msg=TypeMsg.INFO)
            self.request_stop()

    async def _report(self, error: LocationUnavailableError) -> None:
        if error.code == self._last_error_code:
            return
        self._last_error_code = error.code
        await log_warning(f"Позиция водителя недоступна ({error.code}): {error}")
        if self._on_error is not None:
            await self._on_error(error)
