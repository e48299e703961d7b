# ride_dispatch/core/bookings/service.py
"""
Сервис заявок: жизненный цикл от создания до оценки.

Каждое изменение заявки выполняется одной транзакцией над одной строкой
с проверкой версии. При конфликте DatabaseManager повторяет операцию
целиком, поэтому из нескольких водителей, одновременно принимающих
заявку, успех получает ровно один.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Awaitable, Callable, Optional

from asyncpg import Connection

from ride_dispatch.common.constants import ActionOutcome, BookingStatus, RideStatus, TypeMsg
from ride_dispatch.common.exceptions import TransactionRetryExhaustedError
from ride_dispatch.common.geo import Coordinates, distance_meters
from ride_dispatch.common.localization import get_text
from ride_dispatch.common.logger import log_error, log_info, log_warning
from ride_dispatch.common.utils import Clock, round_half_up, utc_now
from ride_dispatch.core.bookings.models import (
    BookingCreateDTO,
    BookingRequest,
    BookingResult,
    DriverLocation,
)
from ride_dispatch.core.bookings.repository import BookingRepository
from ride_dispatch.core.bookings.state_machine import BookingStateMachine, RideStateMachine
from ride_dispatch.core.drivers.repository import DriverRepository
from ride_dispatch.core.notifications import (
    BookingCancelled,
    BookingCreated,
    DriverArrived,
    DriverCancelled,
    DriverEnRoute,
    NewBooking,
    NotificationPayload,
    NotificationService,
    RideConfirmed,
    TripCompleted,
    TripStarted,
)
from ride_dispatch.infra.database import DatabaseManager
from ride_dispatch.infra.event_bus import DomainEvent, EventBus, EventTypes


BookingOperation = Callable[[Connection], Awaitable[BookingResult]]


class BookingService:
    """Сервис заявок на поездку."""

    def __init__(
        self,
        db: DatabaseManager,
        event_bus: EventBus,
        notifications: NotificationService,
        repo: BookingRepository | None = None,
        driver_repo: DriverRepository | None = None,
        clock: Clock = utc_now,
        ttl_minutes: int | None = None,
        language: str | None = None,
    ) -> None:
        """
        Args:
            db: Менеджер базы данных
            event_bus: Шина событий
            notifications: Сервис уведомлений
            repo: Репозиторий заявок
            driver_repo: Репозиторий водителей (счётчики поездок и рейтинг)
            clock: Источник текущего времени
            ttl_minutes: Срок актуальности заявки (по умолчанию из конфига)
            language: Язык сообщений результата
        """
        from ride_dispatch.config import settings

        self._db = db
        self._event_bus = event_bus
        self._notifications = notifications
        self._repo = repo or BookingRepository(db)
        self._driver_repo = driver_repo or DriverRepository(db)
        self._clock = clock
        self._ttl = timedelta(minutes=ttl_minutes or settings.booking.BOOKING_TTL_MINUTES)
        self._language = language or settings.domain.DEFAULT_LANGUAGE
        self._available_limit = settings.booking.AVAILABLE_BOOKINGS_LIMIT
        self._history_limit = settings.booking.HISTORY_LIMIT
        self._auto_complete_radius = settings.tracking.AUTO_COMPLETE_RADIUS_METERS

    @property
    def repository(self) -> BookingRepository:
        return self._repo

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    def _result(
        self,
        outcome: ActionOutcome,
        key: str,
        booking: Optional[BookingRequest] = None,
        **params,
    ) -> BookingResult:
        return BookingResult(
            outcome=outcome,
            message=get_text(key, self._language, **params),
            booking=booking,
        )

    async def _transact(self, operation: BookingOperation, action: str) -> BookingResult:
        """
        Выполняет операцию в транзакции.
        Исчерпание повторов и ошибки инфраструктуры возвращаются
        как UNAVAILABLE, а не исключением.
        """
        try:
            return await self._db.run_transaction(operation)
        except TransactionRetryExhaustedError as e:
            await log_warning(f"Заявки: {action} не выполнено, конкуренция за запись: {e}")
        except Exception as e:
            await log_error(f"Заявки: ошибка операции {action}: {e}", exc_info=True)
        return self._result(ActionOutcome.UNAVAILABLE, "SERVICE_UNAVAILABLE")

    @staticmethod
    def _customer_recipient(booking: BookingRequest) -> Optional[str]:
        """Получатель уведомлений клиента: ID или телефон гостя."""
        return booking.customer_id or booking.customer_phone

    async def _driver_name(self, driver_id: Optional[str]) -> str:
        driver = await self._driver_repo.get_by_id(driver_id) if driver_id else None
        if driver is None:
            return get_text("DRIVER_FALLBACK_NAME", self._language)
        return driver.name

    async def _notify_customer(self, booking: BookingRequest, payload: NotificationPayload) -> None:
        await self._notifications.notify(self._customer_recipient(booking), booking.id, payload)

    async def _publish(self, event_type: str, booking: BookingRequest, **extra) -> None:
        try:
            payload = {
                "booking_id": booking.id,
                "status": booking.status.value,
                "ride_status": booking.ride_status.value if booking.ride_status else None,
                "accepted_by": booking.accepted_by,
                "pickup_location": booking.pickup_location,
                "destination": booking.destination,
            }
            payload.update(extra)
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as e:
            await log_error(f"Ошибка публикации события {event_type}: {e}")

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def create_booking(self, dto: BookingCreateDTO) -> BookingResult:
        """
        Создаёт заявку и оповещает водителей.

        Заявка с выбранным водителем остаётся pending: выбранный водитель
        получает прямой запрос, но принять её может любой.
        """
        now = self._clock()
        booking = BookingRequest(
            customer_name=dto.customer_name.strip(),
            customer_phone=dto.customer_phone.strip(),
            customer_id=dto.customer_id,
            pickup_location=dto.pickup_location.strip(),
            destination=dto.destination.strip(),
            pickup_date=dto.pickup_date,
            pickup_time=dto.pickup_time,
            estimated_price=dto.estimated_price,
            notes=dto.notes,
            vehicle_type=dto.vehicle_type,
            preferred_driver_id=dto.preferred_driver_id,
            created_at=now,
            expires_at=now + self._ttl,
        )

        created = await self._repo.create(booking)
        if created is None:
            return self._result(ActionOutcome.UNAVAILABLE, "SERVICE_UNAVAILABLE")

        await log_info(
            f"Заявка создана: {created.id} ({created.pickup_location} -> {created.destination})",
            type_msg=TypeMsg.INFO,
        )

        await self._notify_customer(created, BookingCreated(
            pickup_location=created.pickup_location,
            destination=created.destination,
        ))
        await self._notify_drivers(created)
        await self._publish(EventTypes.BOOKING_CREATED, created)

        return self._result(ActionOutcome.SUCCESS, "BOOKING_CREATED", created)

    async def _notify_drivers(self, booking: BookingRequest) -> None:
        """Прямой запрос выбранному водителю или рассылка водителям в районе подачи."""
        payload = NewBooking(
            pickup_location=booking.pickup_location,
            destination=booking.destination,
            customer_name=booking.customer_name,
            estimated_price=booking.estimated_price,
            direct=booking.preferred_driver_id is not None,
        )

        if booking.preferred_driver_id:
            await self._notifications.notify(booking.preferred_driver_id, booking.id, payload)
            return

        drivers = await self._driver_repo.find_available_at(booking.pickup_location)
        for driver in drivers:
            if driver.is_visible_to_public:
                await self._notifications.notify(driver.id, booking.id, payload)

    # =========================================================================
    # ПРИНЯТИЕ
    # =========================================================================

    async def accept_booking(self, booking_id: str, driver_id: str) -> BookingResult:
        """
        Водитель принимает заявку.

        Проверки выполняются внутри транзакции: истёкшая заявка даёт
        EXPIRED независимо от статуса, не pending даёт ALREADY_TAKEN.
        Проигравшие гонку получают ALREADY_TAKEN на повторной попытке.
        """
        async def operation(conn: Connection) -> BookingResult:
            booking = await self._repo.fetch_for_update(conn, booking_id)
            if booking is None:
                return self._result(ActionOutcome.NOT_FOUND, "BOOKING_NOT_FOUND")

            now = self._clock()
            if booking.is_expired(now):
                return self._result(ActionOutcome.EXPIRED, "BOOKING_EXPIRED", booking)
            if not BookingStateMachine.can_transition(booking.status, BookingStatus.ACCEPTED):
                return self._result(ActionOutcome.ALREADY_TAKEN, "BOOKING_ALREADY_TAKEN", booking)

            booking.status = BookingStatus.ACCEPTED
            booking.accepted_by = driver_id
            booking.accepted_at = now
            booking.ride_status = RideStatus.CONFIRMED
            booking.confirmed_at = now
            saved = await self._repo.save(conn, booking)
            return self._result(ActionOutcome.SUCCESS, "BOOKING_ACCEPTED", saved)

        result = await self._transact(operation, "accept")

        if result.success and result.booking is not None:
            booking = result.booking
            await log_info(f"Заявка {booking.id} принята водителем {driver_id}", type_msg=TypeMsg.INFO)
            await self._notify_customer(booking, RideConfirmed(
                driver_id=driver_id,
                driver=await self._driver_name(driver_id),
            ))
            await self._publish(EventTypes.BOOKING_ACCEPTED, booking)

        return result

    # =========================================================================
    # ЗАВЕРШЕНИЕ И ОЦЕНКА
    # =========================================================================

    async def complete_ride(self, booking_id: str, driver_id: str, fare: int) -> BookingResult:
        """
        Завершает поездку. Счётчик поездок водителя увеличивается
        в той же транзакции.
        """
        if isinstance(fare, bool) or not isinstance(fare, int) or fare <= 0:
            return self._result(ActionOutcome.INVALID_INPUT, "FARE_INVALID")

        async def operation(conn: Connection) -> BookingResult:
            booking = await self._repo.fetch_for_update(conn, booking_id)
            if booking is None:
                return self._result(ActionOutcome.NOT_FOUND, "BOOKING_NOT_FOUND")
            if booking.status != BookingStatus.ACCEPTED:
                return self._result(ActionOutcome.INVALID_STATE, "RIDE_NOT_ACCEPTED", booking)
            if booking.accepted_by != driver_id:
                return self._result(ActionOutcome.NOT_ASSIGNED_DRIVER, "RIDE_UNAUTHORIZED", booking)

            driver = await self._driver_repo.fetch_for_update(conn, driver_id)
            if driver is None:
                return self._result(ActionOutcome.NOT_FOUND, "BOOKING_NOT_FOUND", booking)

            now = self._clock()
            booking.status = BookingStatus.COMPLETED
            booking.completed_at = now
            booking.fare = fare
            if booking.ride_status != RideStatus.COMPLETED:
                booking.ride_status = RideStatus.COMPLETED
                booking.trip_completed_at = booking.trip_completed_at or now

            driver.total_rides += 1
            driver.updated_at = now

            saved = await self._repo.save(conn, booking)
            await self._driver_repo.save(conn, driver)
            return self._result(ActionOutcome.SUCCESS, "RIDE_COMPLETED", saved)

        result = await self._transact(operation, "complete")

        if result.success and result.booking is not None:
            booking = result.booking
            await log_info(f"Поездка {booking.id} завершена, стоимость {fare}", type_msg=TypeMsg.INFO)
            await self._notify_customer(booking, TripCompleted(fare=fare))
            await self._publish(EventTypes.BOOKING_COMPLETED, booking, fare=fare)

        return result

    async def rate_ride(self, booking_id: str, rating: int, review: str | None = None) -> BookingResult:
        """
        Оценка поездки клиентом.

        Оценка ставится один раз. Средний рейтинг водителя пересчитывается
        инкрементально и округляется до десятых половиной вверх.
        """
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            return self._result(ActionOutcome.INVALID_INPUT, "RATING_INVALID")

        async def operation(conn: Connection) -> BookingResult:
            booking = await self._repo.fetch_for_update(conn, booking_id)
            if booking is None:
                return self._result(ActionOutcome.NOT_FOUND, "BOOKING_NOT_FOUND")
            if booking.status != BookingStatus.COMPLETED:
                return self._result(ActionOutcome.INVALID_STATE, "RATING_NOT_COMPLETED", booking)
            if booking.is_rated:
                return self._result(ActionOutcome.ALREADY_RATED, "RATING_ALREADY_RATED", booking)
            if not booking.accepted_by:
                return self._result(ActionOutcome.NO_DRIVER_ASSIGNED, "RATING_NO_DRIVER", booking)

            driver = await self._driver_repo.fetch_for_update(conn, booking.accepted_by)
            if driver is None:
                return self._result(ActionOutcome.NO_DRIVER_ASSIGNED, "RATING_NO_DRIVER", booking)

            now = self._clock()
            booking.rating = rating
            booking.review = review
            booking.rated_at = now

            total = driver.total_ratings
            driver.average_rating = round_half_up((driver.average_rating * total + rating) / (total + 1), 1)
            driver.total_ratings = total + 1
            driver.updated_at = now

            saved = await self._repo.save(conn, booking)
            await self._driver_repo.save(conn, driver)
            return self._result(ActionOutcome.SUCCESS, "RATING_SUBMITTED", saved)

        result = await self._transact(operation, "rate")

        if result.success and result.booking is not None:
            await self._publish(EventTypes.BOOKING_RATED, result.booking, rating=rating)

        return result

    # =========================================================================
    # ОТМЕНА И ВОЗВРАТ В ОЧЕРЕДЬ
    # =========================================================================

    async def cancel_booking(self, booking_id: str, reason: str) -> BookingResult:
        """
        Отмена заявки клиентом из любого незавершённого статуса.
        Назначенный водитель получает уведомление.
        """
        previous_driver: Optional[str] = None

        async def operation(conn: Connection) -> BookingResult:
            nonlocal previous_driver
            booking = await self._repo.fetch_for_update(conn, booking_id)
            if booking is None:
                return self._result(ActionOutcome.NOT_FOUND, "BOOKING_NOT_FOUND")
            if not BookingStateMachine.can_transition(booking.status, BookingStatus.CANCELLED):
                return self._result(ActionOutcome.INVALID_STATE, "BOOKING_NOT_CANCELLABLE", booking)

            previous_driver = booking.accepted_by
            booking.clear_assignment()
            booking.status = BookingStatus.CANCELLED
            booking.cancelled_at = self._clock()
            booking.cancellation_reason = reason
            saved = await self._repo.save(conn, booking)
            return self._result(ActionOutcome.SUCCESS, "BOOKING_CANCELLED", saved)

        result = await self._transact(operation, "cancel")

        if result.success and result.booking is not None:
            booking = result.booking
            await log_info(f"Заявка {booking.id} отменена: {reason}", type_msg=TypeMsg.INFO)
            if previous_driver:
                await self._notifications.notify(previous_driver, booking.id, BookingCancelled(
                    pickup_location=booking.pickup_location,
                    reason=reason,
                ))
            await self._publish(EventTypes.BOOKING_CANCELLED, booking, reason=reason)

        return result

    async def requeue_booking(self, booking_id: str, driver_id: str, reason: str) -> BookingResult:
        """
        Водитель отказывается от принятой заявки, она снова становится
        доступной. Срок актуальности продлевается, чтобы её успели принять.
        """
        async def operation(conn: Connection) -> BookingResult:
            booking = await self._repo.fetch_for_update(conn, booking_id)
            if booking is None:
                return self._result(ActionOutcome.NOT_FOUND, "BOOKING_NOT_FOUND")
            if not BookingStateMachine.can_transition(booking.status, BookingStatus.PENDING):
                return self._result(ActionOutcome.INVALID_STATE, "BOOKING_NOT_REQUEUEABLE", booking)
            if booking.accepted_by != driver_id:
                return self._result(ActionOutcome.NOT_ASSIGNED_DRIVER, "RIDE_UNAUTHORIZED", booking)

            booking.clear_assignment()
            booking.status = BookingStatus.PENDING
            booking.expires_at = self._clock() + self._ttl
            saved = await self._repo.save(conn, booking)
            return self._result(ActionOutcome.SUCCESS, "BOOKING_REQUEUED", saved)

        result = await self._transact(operation, "requeue")

        if result.success and result.booking is not None:
            booking = result.booking
            await log_info(f"Водитель {driver_id} вернул заявку {booking.id}: {reason}", type_msg=TypeMsg.INFO)
            await self._notify_customer(booking, DriverCancelled(driver_id=driver_id, reason=reason))
            await self._publish(EventTypes.BOOKING_REQUEUED, booking, driver_id=driver_id, reason=reason)

        return result

    # =========================================================================
    # СТАТУС ПОЕЗДКИ И ПОЗИЦИЯ ВОДИТЕЛЯ
    # =========================================================================

    async def update_ride_status(self, booking_id: str, driver_id: str, status: RideStatus) -> BookingResult:
        """
        Переводит поездку на следующий этап. Этапы строго последовательные,
        менять их может только назначенный водитель.
        """
        async def operation(conn: Connection) -> BookingResult:
            booking = await self._repo.fetch_for_update(conn, booking_id)
            if booking is None:
                return self._result(ActionOutcome.NOT_FOUND, "BOOKING_NOT_FOUND")
            if booking.status != BookingStatus.ACCEPTED:
                return self._result(ActionOutcome.INVALID_STATE, "RIDE_NOT_ACCEPTED", booking)
            if booking.accepted_by != driver_id:
                return self._result(ActionOutcome.NOT_ASSIGNED_DRIVER, "RIDE_UNAUTHORIZED", booking)
            if not RideStateMachine.can_transition(booking.ride_status, status):
                return self._result(ActionOutcome.INVALID_STATE, "RIDE_STATUS_INVALID", booking)

            booking.ride_status = status
            setattr(booking, RideStateMachine.TIMESTAMP_FIELDS[status], self._clock())
            saved = await self._repo.save(conn, booking)
            return self._result(ActionOutcome.SUCCESS, "RIDE_STATUS_UPDATED", saved)

        result = await self._transact(operation, "ride_status")

        if result.success and result.booking is not None:
            booking = result.booking
            payload = await self._ride_status_payload(booking, status)
            await self._notify_customer(booking, payload)
            await self._publish(EventTypes.RIDE_STATUS_CHANGED, booking)

        return result

    async def _ride_status_payload(self, booking: BookingRequest, status: RideStatus) -> NotificationPayload:
        """Уведомление клиенту определяется только целевым этапом."""
        if status == RideStatus.IN_PROGRESS:
            return TripStarted(destination=booking.destination)
        if status == RideStatus.COMPLETED:
            return TripCompleted(fare=booking.fare)

        driver = await self._driver_name(booking.accepted_by)
        if status == RideStatus.EN_ROUTE:
            return DriverEnRoute(driver=driver)
        if status == RideStatus.ARRIVED:
            return DriverArrived(driver=driver, pickup_location=booking.pickup_location)
        return RideConfirmed(driver_id=booking.accepted_by or "", driver=driver)

    async def update_driver_location(
        self,
        booking_id: str,
        location: DriverLocation,
        destination: Coordinates | None = None,
    ) -> BookingResult:
        """
        Записывает позицию водителя по принятой заявке.

        Если передан пункт назначения и водитель ближе порога, поездка
        в статусе in_progress автоматически переходит в completed.
        """
        try:
            written = await self._repo.update_driver_location(booking_id, location)
            booking = await self._repo.load(booking_id)
        except Exception as e:
            await log_error(f"Заявки: ошибка записи позиции водителя {booking_id}: {e}", exc_info=True)
            return self._result(ActionOutcome.UNAVAILABLE, "SERVICE_UNAVAILABLE")

        if booking is None:
            return self._result(ActionOutcome.NOT_FOUND, "BOOKING_NOT_FOUND")
        if not written:
            return self._result(ActionOutcome.INVALID_STATE, "RIDE_NOT_ACCEPTED", booking)

        if (
            destination is not None
            and booking.ride_status == RideStatus.IN_PROGRESS
            and booking.accepted_by
            and distance_meters(location.to_coordinates(), destination) < self._auto_complete_radius
        ):
            await log_info(f"Водитель прибыл в пункт назначения, заявка {booking_id}", type_msg=TypeMsg.INFO)
            result = await self.update_ride_status(booking_id, booking.accepted_by, RideStatus.COMPLETED)
            if result.success:
                return result

        return self._result(ActionOutcome.SUCCESS, "LOCATION_UPDATED", booking)

    # =========================================================================
    # ЗАПРОСЫ
    # =========================================================================

    async def get_booking(self, booking_id: str) -> Optional[BookingRequest]:
        """Заявка по ID."""
        return await self._repo.get_by_id(booking_id)

    async def get_available_bookings(self, location: str) -> list[BookingRequest]:
        """
        Доступные заявки в районе. Истёкшие отфильтровываются
        даже если фоновая очистка их ещё не пометила.
        """
        now = self._clock()
        bookings = await self._repo.list_available(location, now, self._available_limit)
        return [b for b in bookings if b.status == BookingStatus.PENDING and not b.is_expired(now)]

    async def get_driver_history(self, driver_id: str, limit: int | None = None) -> list[BookingRequest]:
        """История поездок водителя."""
        return await self._repo.list_by_driver(driver_id, limit=limit or self._history_limit)

    async def get_customer_bookings(
        self,
        customer_id: str | None = None,
        customer_phone: str | None = None,
        limit: int | None = None,
    ) -> list[BookingRequest]:
        """Заявки клиента по ID или телефону."""
        return await self._repo.list_by_customer(
            customer_id=customer_id,
            customer_phone=customer_phone,
            limit=limit or self._history_limit,
        )

    # =========================================================================
    # ОЧИСТКА
    # =========================================================================

    async def expire_stale_bookings(self) -> int:
        """
        Помечает истёкшие ожидающие заявки как expired.
        Каждая заявка обрабатывается отдельной транзакцией.

        Returns:
            Количество помеченных заявок
        """
        now = self._clock()
        expired = 0

        for booking_id in await self._repo.list_expired_ids(now):
            async def operation(conn: Connection, booking_id: str = booking_id) -> Optional[BookingRequest]:
                booking = await self._repo.fetch_for_update(conn, booking_id)
                if booking is None or booking.status != BookingStatus.PENDING:
                    return None
                if not booking.is_expired(self._clock()):
                    return None
                booking.status = BookingStatus.EXPIRED
                return await self._repo.save(conn, booking)

            try:
                booking = await self._db.run_transaction(operation)
            except Exception as e:
                await log_error(f"Ошибка пометки заявки {booking_id} как истёкшей: {e}")
                continue

            if booking is not None:
                expired += 1
                await self._publish(EventTypes.BOOKING_EXPIRED, booking)

        if expired:
            await log_info(f"Истёкших заявок помечено: {expired}", type_msg=TypeMsg.INFO)
        return expired
