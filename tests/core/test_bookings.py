# tests/core/test_bookings.py
"""
Тесты для жизненного цикла заявок.
"""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest

from ride_dispatch.common.constants import ActionOutcome, BookingStatus, RideStatus, SubscriptionStatus
from ride_dispatch.common.geo import Coordinates
from ride_dispatch.core.bookings import (
    BookingCreateDTO,
    BookingRepository,
    BookingRequest,
    BookingService,
    BookingStateMachine,
    DriverLocation,
    RideStateMachine,
)
from ride_dispatch.core.notifications import NotificationService
from ride_dispatch.dependencies import Services
from ride_dispatch.infra.event_bus import EventTypes
from tests.fakes import NOW, FakeBackend, FakeClock, make_booking, make_driver


def booking_dto(**overrides) -> BookingCreateDTO:
    data = {
        "customer_name": "Wanjiru",
        "customer_phone": "+254711000000",
        "customer_id": "customer-1",
        "pickup_location": "Machakos",
        "destination": "Masii",
        "estimated_price": 3000,
    }
    data.update(overrides)
    return BookingCreateDTO(**data)


def seed_accepted(backend: FakeBackend, driver_id: str, **overrides) -> BookingRequest:
    """Заявка, уже принятая водителем."""
    data = {
        "status": BookingStatus.ACCEPTED,
        "accepted_by": driver_id,
        "accepted_at": NOW,
        "ride_status": RideStatus.CONFIRMED,
        "confirmed_at": NOW,
    }
    data.update(overrides)
    return backend.bookings.add(make_booking(**data))


class TestStateMachines:
    """Тесты для таблиц переходов."""

    def test_terminal_statuses_have_no_exits(self) -> None:
        """Проверяет, что из конечных статусов переходов нет."""
        for status in (BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.EXPIRED):
            for target in BookingStatus:
                assert not BookingStateMachine.can_transition(status, target)

    def test_requeue_transition(self) -> None:
        """Проверяет возврат принятой заявки в pending."""
        assert BookingStateMachine.can_transition(BookingStatus.ACCEPTED, BookingStatus.PENDING)
        assert not BookingStateMachine.can_transition(BookingStatus.PENDING, BookingStatus.COMPLETED)

    def test_ride_status_is_sequential(self) -> None:
        """Проверяет строгую последовательность этапов поездки."""
        assert RideStateMachine.can_transition(None, RideStatus.CONFIRMED)
        assert RideStateMachine.can_transition(RideStatus.CONFIRMED, RideStatus.EN_ROUTE)
        assert not RideStateMachine.can_transition(RideStatus.CONFIRMED, RideStatus.ARRIVED)
        assert not RideStateMachine.can_transition(RideStatus.EN_ROUTE, RideStatus.CONFIRMED)
        assert not RideStateMachine.can_transition(RideStatus.COMPLETED, RideStatus.COMPLETED)


class TestBookingModel:
    """Тесты для модели заявки."""

    def test_expiry_boundary_is_expired(self) -> None:
        """Проверяет, что момент expires_at уже считается истёкшим."""
        booking = make_booking()

        assert not booking.is_expired(NOW + timedelta(minutes=29, seconds=59))
        assert booking.is_expired(NOW + timedelta(minutes=30))

    def test_clear_assignment(self) -> None:
        """Проверяет снятие назначения водителя."""
        booking = make_booking(
            status=BookingStatus.ACCEPTED,
            accepted_by="driver-1",
            ride_status=RideStatus.EN_ROUTE,
            en_route_at=NOW,
            driver_location=DriverLocation(lat=-1.5, lng=37.2),
        )

        booking.clear_assignment()

        assert booking.accepted_by is None
        assert booking.ride_status is None
        assert booking.en_route_at is None
        assert booking.driver_location is None


class TestCreateBooking:
    """Тесты для создания заявки."""

    @pytest.mark.asyncio
    async def test_create_notifies_customer_and_local_drivers(
        self, services: Services, backend: FakeBackend
    ) -> None:
        """Проверяет создание и рассылку водителям в районе подачи."""
        local = backend.drivers.add(make_driver("Local"))
        backend.drivers.add(make_driver("Elsewhere", current_location="Kitui"))
        unpaid = backend.drivers.add(make_driver("Unpaid", subscription_status=SubscriptionStatus.PENDING))

        result = await services.bookings.create_booking(booking_dto(pickup_location=" Machakos "))

        assert result.outcome == ActionOutcome.SUCCESS
        booking = result.booking
        assert booking.status == BookingStatus.PENDING
        assert booking.pickup_location == "Machakos"
        assert booking.expires_at == NOW + timedelta(minutes=30)

        assert backend.event_bus.notification_kinds("customer-1") == ["booking_created"]
        assert backend.event_bus.notification_kinds(local.id) == ["new_booking"]
        assert backend.event_bus.notifications(unpaid.id) == []
        assert len(backend.event_bus.notifications()) == 2
        assert len(backend.event_bus.of_type(EventTypes.BOOKING_CREATED)) == 1

    @pytest.mark.asyncio
    async def test_preferred_driver_gets_direct_request(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет прямой запрос выбранному водителю, заявка остаётся pending."""
        local = backend.drivers.add(make_driver("Local"))
        preferred = backend.drivers.add(make_driver("Preferred", current_location="Kitui"))

        result = await services.bookings.create_booking(booking_dto(preferred_driver_id=preferred.id))

        assert result.booking.status == BookingStatus.PENDING
        assert result.booking.accepted_by is None
        sent = backend.event_bus.notifications(preferred.id)
        assert len(sent) == 1
        assert sent[0]["message"].startswith("Direct booking request!")
        assert backend.event_bus.notifications(local.id) == []

    @pytest.mark.asyncio
    async def test_guest_notified_by_phone(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет уведомление гостя по номеру телефона."""
        await services.bookings.create_booking(booking_dto(customer_id=None))

        assert backend.event_bus.notification_kinds("+254711000000") == ["booking_created"]

    @pytest.mark.asyncio
    async def test_storage_failure(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет UNAVAILABLE при ошибке записи."""
        backend.bookings.fail_create = True

        result = await services.bookings.create_booking(booking_dto())

        assert result.outcome == ActionOutcome.UNAVAILABLE
        assert result.success is False
        assert backend.event_bus.events == []


class TestAcceptBooking:
    """Тесты для принятия заявки."""

    @pytest.mark.asyncio
    async def test_accept(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет принятие заявки и уведомление клиента."""
        driver = backend.drivers.add(make_driver("Mutua"))
        booking = backend.bookings.add(make_booking())

        result = await services.bookings.accept_booking(booking.id, driver.id)

        assert result.outcome == ActionOutcome.SUCCESS
        assert result.message == "Ride accepted!"
        stored = backend.bookings.rows[booking.id]
        assert stored.status == BookingStatus.ACCEPTED
        assert stored.accepted_by == driver.id
        assert stored.ride_status == RideStatus.CONFIRMED
        assert stored.accepted_at == NOW

        sent = backend.event_bus.notifications("customer-1")
        assert sent[0]["payload"]["kind"] == "ride_confirmed"
        assert sent[0]["message"].startswith("Mutua confirmed your ride!")

    @pytest.mark.asyncio
    async def test_concurrent_accepts_single_winner(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет, что из десяти одновременных принятий успешно ровно одно."""
        drivers = [backend.drivers.add(make_driver(f"Driver {i}")) for i in range(10)]
        booking = backend.bookings.add(make_booking())

        results = await asyncio.gather(*(
            services.bookings.accept_booking(booking.id, driver.id) for driver in drivers
        ))

        outcomes = Counter(r.outcome for r in results)
        assert outcomes == {ActionOutcome.SUCCESS: 1, ActionOutcome.ALREADY_TAKEN: 9}

        winner = next(d for d, r in zip(drivers, results) if r.success)
        assert backend.bookings.rows[booking.id].accepted_by == winner.id
        assert len(backend.event_bus.of_type(EventTypes.BOOKING_ACCEPTED)) == 1
        assert backend.event_bus.notification_kinds("customer-1") == ["ride_confirmed"]

        losers = [r for r in results if not r.success]
        assert all(r.message == "This ride has already been taken." for r in losers)

    @pytest.mark.asyncio
    async def test_accept_expired(self, services: Services, backend: FakeBackend, clock: FakeClock) -> None:
        """Проверяет отказ для истёкшей заявки, даже если фон её не пометил."""
        booking = backend.bookings.add(make_booking())
        clock.advance(minutes=30)

        result = await services.bookings.accept_booking(booking.id, "driver-1")

        assert result.outcome == ActionOutcome.EXPIRED
        assert backend.bookings.rows[booking.id].status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_expiry_checked_before_status(
        self, services: Services, backend: FakeBackend, clock: FakeClock
    ) -> None:
        """Проверяет, что просрочка важнее занятости."""
        booking = seed_accepted(backend, "driver-1")
        clock.advance(hours=1)

        result = await services.bookings.accept_booking(booking.id, "driver-2")

        assert result.outcome == ActionOutcome.EXPIRED

    @pytest.mark.asyncio
    async def test_accept_taken_or_cancelled(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет ALREADY_TAKEN для не pending заявок."""
        taken = seed_accepted(backend, "driver-1")
        cancelled = backend.bookings.add(make_booking(status=BookingStatus.CANCELLED))

        assert (await services.bookings.accept_booking(taken.id, "driver-2")).outcome == ActionOutcome.ALREADY_TAKEN
        assert (await services.bookings.accept_booking(cancelled.id, "driver-2")).outcome == ActionOutcome.ALREADY_TAKEN
        assert backend.bookings.rows[taken.id].accepted_by == "driver-1"

    @pytest.mark.asyncio
    async def test_accept_not_found(self, services: Services) -> None:
        """Проверяет NOT_FOUND для неизвестной заявки."""
        result = await services.bookings.accept_booking("missing", "driver-1")

        assert result.outcome == ActionOutcome.NOT_FOUND
        assert result.booking is None

    @pytest.mark.asyncio
    async def test_retry_exhausted_is_unavailable(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет UNAVAILABLE, когда конфликт не проходит после всех попыток."""
        booking = backend.bookings.add(make_booking())
        backend.bookings.forced_conflicts = 100

        with patch("ride_dispatch.core.bookings.service.log_warning", new_callable=AsyncMock) as mock_warning:
            result = await services.bookings.accept_booking(booking.id, "driver-1")

        assert result.outcome == ActionOutcome.UNAVAILABLE
        assert backend.bookings.rows[booking.id].status == BookingStatus.PENDING
        assert backend.db.transactions == 5
        mock_warning.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_storage_error_is_unavailable(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет UNAVAILABLE при ошибке хранилища."""
        backend.bookings.fetch_for_update = AsyncMock(side_effect=RuntimeError("connection lost"))

        with patch("ride_dispatch.core.bookings.service.log_error", new_callable=AsyncMock) as mock_error:
            result = await services.bookings.accept_booking("any", "driver-1")

        assert result.outcome == ActionOutcome.UNAVAILABLE
        assert result.message == "Something went wrong. Please try again."
        mock_error.assert_awaited_once()


class TestCompleteRide:
    """Тесты для завершения поездки."""

    @pytest.mark.asyncio
    async def test_complete(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет завершение и счётчик поездок водителя."""
        driver = backend.drivers.add(make_driver(total_rides=7))
        booking = seed_accepted(backend, driver.id)

        result = await services.bookings.complete_ride(booking.id, driver.id, 3000)

        assert result.outcome == ActionOutcome.SUCCESS
        stored = backend.bookings.rows[booking.id]
        assert stored.status == BookingStatus.COMPLETED
        assert stored.fare == 3000
        assert stored.completed_at == NOW
        assert stored.ride_status == RideStatus.COMPLETED
        assert backend.drivers.rows[driver.id].total_rides == 8

        sent = backend.event_bus.notifications("customer-1")
        assert sent[-1]["message"] == "Arrived safely. Please pay your driver."
        event = backend.event_bus.of_type(EventTypes.BOOKING_COMPLETED)[0]
        assert event.payload["fare"] == 3000

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fare", [0, -100, True])
    async def test_invalid_fare(self, services: Services, backend: FakeBackend, fare) -> None:
        """Проверяет отказ для неположительной стоимости."""
        booking = seed_accepted(backend, "driver-1")

        result = await services.bookings.complete_ride(booking.id, "driver-1", fare)

        assert result.outcome == ActionOutcome.INVALID_INPUT
        assert backend.db.transactions == 0

    @pytest.mark.asyncio
    async def test_not_assigned_driver(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет отказ чужому водителю."""
        backend.drivers.add(make_driver(id="driver-2"))
        booking = seed_accepted(backend, "driver-1")

        result = await services.bookings.complete_ride(booking.id, "driver-2", 3000)

        assert result.outcome == ActionOutcome.NOT_ASSIGNED_DRIVER
        assert backend.bookings.rows[booking.id].status == BookingStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_not_accepted(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет отказ для заявки без водителя."""
        booking = backend.bookings.add(make_booking())

        result = await services.bookings.complete_ride(booking.id, "driver-1", 3000)

        assert result.outcome == ActionOutcome.INVALID_STATE

    @pytest.mark.asyncio
    async def test_missing_driver_row(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет, что без записи водителя заявка не меняется."""
        booking = seed_accepted(backend, "ghost")

        result = await services.bookings.complete_ride(booking.id, "ghost", 3000)

        assert result.outcome == ActionOutcome.NOT_FOUND
        assert backend.bookings.rows[booking.id].status == BookingStatus.ACCEPTED


class TestRateRide:
    """Тесты для оценки поездки."""

    @pytest.fixture
    def completed(self, backend: FakeBackend) -> BookingRequest:
        backend.drivers.add(make_driver(id="driver-1", average_rating=4.0, total_ratings=3))
        return backend.bookings.add(make_booking(
            status=BookingStatus.COMPLETED,
            accepted_by="driver-1",
            ride_status=RideStatus.COMPLETED,
            completed_at=NOW,
            fare=3000,
        ))

    @pytest.mark.asyncio
    async def test_rate_updates_average(
        self, services: Services, backend: FakeBackend, completed: BookingRequest
    ) -> None:
        """Проверяет пересчёт среднего: (4.0 * 3 + 5) / 4 = 4.25 -> 4.3."""
        result = await services.bookings.rate_ride(completed.id, 5, "Great driver")

        assert result.outcome == ActionOutcome.SUCCESS
        driver = backend.drivers.rows["driver-1"]
        assert driver.average_rating == 4.3
        assert driver.total_ratings == 4
        stored = backend.bookings.rows[completed.id]
        assert (stored.rating, stored.review, stored.rated_at) == (5, "Great driver", NOW)

    @pytest.mark.asyncio
    async def test_rating_is_single_shot(
        self, services: Services, backend: FakeBackend, completed: BookingRequest
    ) -> None:
        """Проверяет, что повторная оценка отклоняется и не меняет водителя."""
        await services.bookings.rate_ride(completed.id, 5)

        result = await services.bookings.rate_ride(completed.id, 1)

        assert result.outcome == ActionOutcome.ALREADY_RATED
        assert backend.drivers.rows["driver-1"].total_ratings == 4
        assert backend.bookings.rows[completed.id].rating == 5

    @pytest.mark.asyncio
    async def test_concurrent_ratings(
        self, services: Services, backend: FakeBackend, completed: BookingRequest
    ) -> None:
        """Проверяет, что из одновременных оценок засчитывается одна."""
        results = await asyncio.gather(
            services.bookings.rate_ride(completed.id, 5),
            services.bookings.rate_ride(completed.id, 1),
        )

        assert sorted(r.outcome.value for r in results) == sorted(
            [ActionOutcome.SUCCESS.value, ActionOutcome.ALREADY_RATED.value]
        )
        assert backend.drivers.rows["driver-1"].total_ratings == 4

    @pytest.mark.asyncio
    @pytest.mark.parametrize("rating", [0, 6, True])
    async def test_invalid_rating(self, services: Services, completed: BookingRequest, rating) -> None:
        """Проверяет отказ для оценки вне 1..5."""
        result = await services.bookings.rate_ride(completed.id, rating)

        assert result.outcome == ActionOutcome.INVALID_INPUT

    @pytest.mark.asyncio
    async def test_rate_not_completed(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет отказ для незавершённой поездки."""
        booking = seed_accepted(backend, "driver-1")

        result = await services.bookings.rate_ride(booking.id, 5)

        assert result.outcome == ActionOutcome.INVALID_STATE

    @pytest.mark.asyncio
    async def test_rate_without_driver_row(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет NO_DRIVER_ASSIGNED, если водителя нет в хранилище."""
        booking = backend.bookings.add(make_booking(
            status=BookingStatus.COMPLETED,
            accepted_by="ghost",
            completed_at=NOW,
            fare=3000,
        ))

        result = await services.bookings.rate_ride(booking.id, 4)

        assert result.outcome == ActionOutcome.NO_DRIVER_ASSIGNED
        assert backend.bookings.rows[booking.id].rating is None


class TestCancelAndRequeue:
    """Тесты для отмены и возврата заявки в очередь."""

    @pytest.mark.asyncio
    async def test_cancel_pending(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет отмену ожидающей заявки."""
        booking = backend.bookings.add(make_booking())

        result = await services.bookings.cancel_booking(booking.id, "Changed plans")

        assert result.outcome == ActionOutcome.SUCCESS
        stored = backend.bookings.rows[booking.id]
        assert stored.status == BookingStatus.CANCELLED
        assert stored.cancellation_reason == "Changed plans"
        assert stored.cancelled_at == NOW
        assert backend.event_bus.notifications() == []

    @pytest.mark.asyncio
    async def test_cancel_accepted_notifies_driver(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет, что назначенный водитель узнаёт об отмене."""
        booking = seed_accepted(backend, "driver-1")

        result = await services.bookings.cancel_booking(booking.id, "Found another ride")

        assert result.success
        stored = backend.bookings.rows[booking.id]
        assert stored.accepted_by is None
        assert stored.ride_status is None
        assert backend.event_bus.notification_kinds("driver-1") == ["booking_cancelled"]

    @pytest.mark.asyncio
    async def test_cancel_terminal(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет отказ для завершённой заявки."""
        booking = backend.bookings.add(make_booking(
            status=BookingStatus.COMPLETED, accepted_by="driver-1", completed_at=NOW, fare=100,
        ))

        result = await services.bookings.cancel_booking(booking.id, "Too late")

        assert result.outcome == ActionOutcome.INVALID_STATE
        assert backend.bookings.rows[booking.id].status == BookingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_requeue(self, services: Services, backend: FakeBackend, clock: FakeClock) -> None:
        """Проверяет возврат в очередь с продлением срока и повторное принятие."""
        booking = seed_accepted(backend, "driver-1")
        clock.advance(minutes=25)

        result = await services.bookings.requeue_booking(booking.id, "driver-1", "Car broke down")

        assert result.outcome == ActionOutcome.SUCCESS
        stored = backend.bookings.rows[booking.id]
        assert stored.status == BookingStatus.PENDING
        assert stored.accepted_by is None
        assert stored.ride_status is None
        assert stored.expires_at == clock() + timedelta(minutes=30)
        assert backend.event_bus.notification_kinds("customer-1") == ["driver_cancelled"]

        clock.advance(minutes=10)
        again = await services.bookings.accept_booking(booking.id, "driver-2")
        assert again.success
        assert backend.bookings.rows[booking.id].accepted_by == "driver-2"

    @pytest.mark.asyncio
    async def test_requeue_by_other_driver(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет, что вернуть заявку может только назначенный водитель."""
        booking = seed_accepted(backend, "driver-1")

        result = await services.bookings.requeue_booking(booking.id, "driver-2", "Not mine")

        assert result.outcome == ActionOutcome.NOT_ASSIGNED_DRIVER
        assert backend.bookings.rows[booking.id].accepted_by == "driver-1"

    @pytest.mark.asyncio
    async def test_requeue_pending(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет отказ для непринятой заявки."""
        booking = backend.bookings.add(make_booking())

        result = await services.bookings.requeue_booking(booking.id, "driver-1", "Nothing to drop")

        assert result.outcome == ActionOutcome.INVALID_STATE


class TestRideStatus:
    """Тесты для этапов поездки и позиции водителя."""

    @pytest.mark.asyncio
    async def test_full_ride_sequence(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет последовательные этапы и уведомления клиента."""
        backend.drivers.add(make_driver("Mutua", id="driver-1"))
        booking = seed_accepted(backend, "driver-1")

        for status in (RideStatus.EN_ROUTE, RideStatus.ARRIVED, RideStatus.IN_PROGRESS, RideStatus.COMPLETED):
            result = await services.bookings.update_ride_status(booking.id, "driver-1", status)
            assert result.outcome == ActionOutcome.SUCCESS

        stored = backend.bookings.rows[booking.id]
        assert stored.ride_status == RideStatus.COMPLETED
        assert stored.status == BookingStatus.ACCEPTED
        assert None not in (stored.en_route_at, stored.arrived_at, stored.started_at, stored.trip_completed_at)
        assert backend.event_bus.notification_kinds("customer-1") == [
            "driver_enroute", "driver_arrived", "trip_started", "trip_completed",
        ]
        assert backend.event_bus.notifications("customer-1")[1]["message"] == "Mutua has arrived at Machakos."

    @pytest.mark.asyncio
    async def test_skipping_stage_rejected(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет отказ при пропуске этапа."""
        booking = seed_accepted(backend, "driver-1")

        result = await services.bookings.update_ride_status(booking.id, "driver-1", RideStatus.ARRIVED)

        assert result.outcome == ActionOutcome.INVALID_STATE
        assert backend.bookings.rows[booking.id].ride_status == RideStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_other_driver_rejected(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет отказ чужому водителю."""
        booking = seed_accepted(backend, "driver-1")

        result = await services.bookings.update_ride_status(booking.id, "driver-2", RideStatus.EN_ROUTE)

        assert result.outcome == ActionOutcome.NOT_ASSIGNED_DRIVER

    @pytest.mark.asyncio
    async def test_fallback_driver_name(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет подстановку имени, если водителя нет в хранилище."""
        booking = seed_accepted(backend, "ghost")

        await services.bookings.update_ride_status(booking.id, "ghost", RideStatus.EN_ROUTE)

        message = backend.event_bus.notifications("customer-1")[0]["message"]
        assert message.startswith("Your driver is on the way.")

    @pytest.mark.asyncio
    async def test_location_update(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет запись позиции водителя по принятой заявке."""
        booking = seed_accepted(backend, "driver-1")
        location = DriverLocation(lat=-1.52, lng=37.26, last_updated=NOW)

        result = await services.bookings.update_driver_location(booking.id, location)

        assert result.outcome == ActionOutcome.SUCCESS
        assert backend.bookings.rows[booking.id].driver_location.lat == -1.52

    @pytest.mark.asyncio
    async def test_location_update_requires_accepted(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет отказ записи позиции для непринятой заявки."""
        booking = backend.bookings.add(make_booking())

        result = await services.bookings.update_driver_location(booking.id, DriverLocation(lat=0, lng=0))

        assert result.outcome == ActionOutcome.INVALID_STATE
        assert (await services.bookings.update_driver_location("missing", DriverLocation(lat=0, lng=0))).outcome \
            == ActionOutcome.NOT_FOUND

    @pytest.mark.asyncio
    async def test_location_update_storage_unavailable(self, backend: FakeBackend) -> None:
        """Проверяет, что обрыв соединения даёт UNAVAILABLE, а не NOT_FOUND."""
        db = AsyncMock()
        db.execute.side_effect = ConnectionResetError("connection lost")
        db.fetchrow.side_effect = ConnectionResetError("connection lost")
        service = BookingService(
            backend.db, backend.event_bus, NotificationService(backend.event_bus, language="en"),
            repo=BookingRepository(db),
            driver_repo=backend.drivers,
            clock=backend.clock,
            ttl_minutes=30,
            language="en",
        )

        with patch("ride_dispatch.core.bookings.service.log_error", new_callable=AsyncMock) as mock_log:
            result = await service.update_driver_location("booking-1", DriverLocation(lat=0, lng=0))

        assert result.outcome == ActionOutcome.UNAVAILABLE
        mock_log.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_auto_complete_near_destination(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет автозавершение поездки у пункта назначения."""
        booking = seed_accepted(backend, "driver-1", ride_status=RideStatus.IN_PROGRESS, started_at=NOW)
        destination = Coordinates(lat=-1.5177, lng=37.2634)

        far = await services.bookings.update_driver_location(
            booking.id, DriverLocation(lat=-1.5277, lng=37.2634), destination,
        )
        assert far.outcome == ActionOutcome.SUCCESS
        assert backend.bookings.rows[booking.id].ride_status == RideStatus.IN_PROGRESS

        near = await services.bookings.update_driver_location(
            booking.id, DriverLocation(lat=-1.5180, lng=37.2634), destination,
        )
        assert near.success
        assert near.booking.ride_status == RideStatus.COMPLETED
        assert backend.event_bus.notification_kinds("customer-1") == ["trip_completed"]

    @pytest.mark.asyncio
    async def test_no_auto_complete_before_trip_started(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет, что автозавершение действует только для начатой поездки."""
        booking = seed_accepted(backend, "driver-1", ride_status=RideStatus.ARRIVED)
        destination = Coordinates(lat=-1.5177, lng=37.2634)

        await services.bookings.update_driver_location(
            booking.id, DriverLocation(lat=-1.5177, lng=37.2634), destination,
        )

        assert backend.bookings.rows[booking.id].ride_status == RideStatus.ARRIVED


class TestQueriesAndReaper:
    """Тесты для выборок и фоновой очистки."""

    @pytest.mark.asyncio
    async def test_available_bookings(self, services: Services, backend: FakeBackend, clock: FakeClock) -> None:
        """Проверяет выдачу только актуальных ожидающих заявок в районе."""
        fresh = backend.bookings.add(make_booking(pickup_location="machakos "))
        backend.bookings.add(make_booking(expires_at=NOW - timedelta(seconds=1)))
        backend.bookings.add(make_booking(pickup_location="Kitui"))
        seed_accepted(backend, "driver-1")

        available = await services.bookings.get_available_bookings("Machakos")

        assert [b.id for b in available] == [fresh.id]

    @pytest.mark.asyncio
    async def test_customer_and_driver_history(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет историю клиента (по ID или телефону) и водителя."""
        guest = backend.bookings.add(make_booking(customer_id=None, customer_phone="+254722000000"))
        accepted = seed_accepted(backend, "driver-1")

        by_phone = await services.bookings.get_customer_bookings(customer_phone="+254722000000")
        by_id = await services.bookings.get_customer_bookings(customer_id="customer-1")
        history = await services.bookings.get_driver_history("driver-1")

        assert [b.id for b in by_phone] == [guest.id]
        assert [b.id for b in by_id] == [accepted.id]
        assert [b.id for b in history] == [accepted.id]
        assert await services.bookings.get_customer_bookings() == []

    @pytest.mark.asyncio
    async def test_expire_stale_bookings(self, services: Services, backend: FakeBackend, clock: FakeClock) -> None:
        """Проверяет пометку истёкших ожидающих заявок."""
        stale = backend.bookings.add(make_booking(expires_at=NOW))
        fresh = backend.bookings.add(make_booking(expires_at=NOW + timedelta(minutes=1)))
        accepted = seed_accepted(backend, "driver-1", expires_at=NOW - timedelta(minutes=5))

        expired = await services.bookings.expire_stale_bookings()

        assert expired == 1
        assert backend.bookings.rows[stale.id].status == BookingStatus.EXPIRED
        assert backend.bookings.rows[fresh.id].status == BookingStatus.PENDING
        assert backend.bookings.rows[accepted.id].status == BookingStatus.ACCEPTED
        assert len(backend.event_bus.of_type(EventTypes.BOOKING_EXPIRED)) == 1

        assert await services.bookings.expire_stale_bookings() == 0

    @pytest.mark.asyncio
    async def test_reaper_skips_failed_rows(self, services: Services, backend: FakeBackend) -> None:
        """Проверяет, что ошибка одной заявки не останавливает очистку."""
        backend.bookings.add(make_booking(expires_at=NOW - timedelta(minutes=2)))
        backend.bookings.add(make_booking(expires_at=NOW - timedelta(minutes=1)))
        original = backend.bookings.fetch_for_update
        calls = {"n": 0}

        async def flaky(conn, booking_id):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("row locked")
            return await original(conn, booking_id)

        backend.bookings.fetch_for_update = flaky

        with patch("ride_dispatch.core.bookings.service.log_error", new_callable=AsyncMock) as mock_error:
            expired = await services.bookings.expire_stale_bookings()

        assert expired == 1
        mock_error.assert_awaited_once()


class TestEarnings:
    """Тесты для заработка водителя."""

    @pytest.fixture
    def history(self, backend: FakeBackend) -> None:
        def completed(at: datetime, fare: int, driver_id: str = "driver-1") -> None:
            backend.bookings.add(make_booking(
                status=BookingStatus.COMPLETED,
                accepted_by=driver_id,
                completed_at=at,
                fare=fare,
            ))

        # 01:00 10 марта по Найроби
        completed(datetime(2026, 3, 9, 22, 0, tzinfo=timezone.utc), 1000)
        # 23:00 9 марта по Найроби
        completed(datetime(2026, 3, 9, 20, 0, tzinfo=timezone.utc), 2000)
        completed(datetime(2026, 2, 15, 12, 0, tzinfo=timezone.utc), 1500)
        completed(datetime(2025, 12, 5, 12, 0, tzinfo=timezone.utc), 500)
        completed(datetime(2026, 3, 10, 6, 0, tzinfo=timezone.utc), 9999, driver_id="driver-2")

    @pytest.mark.asyncio
    async def test_today_uses_local_day(self, services: Services, history: None) -> None:
        """Проверяет границы суток по местному времени."""
        assert await services.earnings.get_today_earnings("driver-1") == 1000

    @pytest.mark.asyncio
    async def test_month(self, services: Services, history: None) -> None:
        """Проверяет заработок за текущий месяц."""
        assert await services.earnings.get_month_earnings("driver-1") == 3000

    @pytest.mark.asyncio
    async def test_history_oldest_first(self, services: Services, history: None) -> None:
        """Проверяет помесячную историю за полгода."""
        months = await services.earnings.get_earnings_history("driver-1")

        assert [(m.month, m.earnings) for m in months] == [
            ("Oct 2025", 0),
            ("Nov 2025", 0),
            ("Dec 2025", 500),
            ("Jan 2026", 0),
            ("Feb 2026", 1500),
            ("Mar 2026", 3000),
        ]

    @pytest.mark.asyncio
    async def test_summary_and_counters(self, services: Services, backend: FakeBackend, history: None) -> None:
        """Проверяет сводку, активные поездки и новые заявки в районе."""
        seed_accepted(backend, "driver-1")
        backend.bookings.add(make_booking())

        summary = await services.earnings.get_summary("driver-1")

        assert summary.today == 1000
        assert summary.this_month == 3000
        assert summary.active_trips == 1
        assert summary.currency == "KES"
        assert len(summary.history) == 6
        assert await services.earnings.get_new_requests_count("Machakos") == 1
