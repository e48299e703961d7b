# ride_dispatch/api/app.py
"""
FastAPI приложение: тарифы, подбор водителей, заявки, торг, заработок.

Доменные исходы возвращаются телом результата с кодом, зависящим
от исхода: 404 не найдено, 422 неверный ввод, 503 временная
недоступность, 409 прочие отказы по состоянию.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ride_dispatch.api.schemas import (
    AcceptBookingRequest,
    CancelBookingRequest,
    CompleteRideRequest,
    CounterOfferRequest,
    DeclineOfferRequest,
    ErrorResponse,
    ExpirationStatus,
    HealthStatus,
    LocationUpdateRequest,
    NegotiationActionRequest,
    PendingCount,
    RateRideRequest,
    RequeueBookingRequest,
    RideStatusRequest,
)
from ride_dispatch.common.constants import ActionOutcome, TypeMsg
from ride_dispatch.common.exceptions import DriverNotFoundError, InvalidRouteKeyError, TransactionRetryExhaustedError
from ride_dispatch.common.geo import Coordinates
from ride_dispatch.common.localization import get_text
from ride_dispatch.common.logger import log_info, log_warning
from ride_dispatch.common.results import ActionResult
from ride_dispatch.core.bookings import BookingCreateDTO, BookingRequest, DriverLocation, EarningsSummary
from ride_dispatch.core.drivers import Driver, DriverCreateDTO, DriverLocationDTO, DriverStatusDTO, SubscriptionDTO
from ride_dispatch.core.matching import MatchResult
from ride_dispatch.core.negotiations import Negotiation, NegotiationCreateDTO
from ride_dispatch.core.pricing import FareBreakdown, PricingModifiers, PricingProfile, RoutePriceDTO, SpecialZone
from ride_dispatch.dependencies import Services, close_dependencies, get_services, init_dependencies, set_services


# Коды ответа для неуспешных исходов; остальные отказы дают 409
OUTCOME_STATUS_CODES: dict[ActionOutcome, int] = {
    ActionOutcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ActionOutcome.INVALID_INPUT: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ActionOutcome.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def result_status_code(result: ActionResult, success_code: int = status.HTTP_200_OK) -> int:
    """HTTP код для результата операции."""
    if result.success:
        return success_code
    return OUTCOME_STATUS_CODES.get(result.outcome, status.HTTP_409_CONFLICT)


def respond(result: ActionResult, success_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(
        status_code=result_status_code(result, success_code),
        content=result.model_dump(mode="json"),
    )


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


# =============================================================================
# ПРИЛОЖЕНИЕ
# =============================================================================

def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Создаёт приложение.

    Args:
        services: Готовый набор сервисов. Если не передан, подключения
                  открываются в lifespan.
    """
    from ride_dispatch.config import settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Жизненный цикл приложения."""
        await log_info("HTTP API запускается...", type_msg=TypeMsg.INFO)
        if services is None:
            await init_dependencies()
        else:
            set_services(services)

        yield

        if services is None:
            await close_dependencies()
        await log_info("HTTP API остановлен", type_msg=TypeMsg.INFO)

    app = FastAPI(
        title="Ride Dispatch",
        description="Тарифы, подбор водителей, заявки и торг о цене",
        version=settings.system.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InvalidRouteKeyError)
    async def invalid_route_key_handler(request: Request, exc: InvalidRouteKeyError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})

    @app.exception_handler(DriverNotFoundError)
    async def driver_not_found_handler(request: Request, exc: DriverNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    @app.exception_handler(TransactionRetryExhaustedError)
    async def retry_exhausted_handler(request: Request, exc: TransactionRetryExhaustedError) -> JSONResponse:
        await log_warning(f"{request.method} {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": get_text("SERVICE_UNAVAILABLE", settings.domain.DEFAULT_LANGUAGE)},
        )

    _register_health(app)
    _register_pricing(app)
    _register_drivers(app)
    _register_bookings(app)
    _register_negotiations(app)
    return app


# =============================================================================
# HEALTH CHECK
# =============================================================================

def _register_health(app: FastAPI) -> None:

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check(services: Services = Depends(get_services)) -> HealthStatus:
        """Проверка здоровья сервиса."""
        from ride_dispatch.config import settings

        deps = {
            "postgres": "healthy" if await services.db.health_check() else "unhealthy",
            "redis": "healthy" if await services.redis.health_check() else "unhealthy",
            "rabbitmq": "healthy" if await services.event_bus.health_check() else "unhealthy",
        }
        overall = "healthy" if all(v == "healthy" for v in deps.values()) else "degraded"

        return HealthStatus(
            service="ride_dispatch",
            status=overall,
            version=settings.system.VERSION,
            dependencies=deps,
        )


# =============================================================================
# ТАРИФЫ
# =============================================================================

def _register_pricing(app: FastAPI) -> None:

    @app.get("/api/v1/drivers/{driver_id}/pricing", response_model=PricingProfile, tags=["Pricing"])
    async def get_pricing(driver_id: str, services: Services = Depends(get_services)) -> PricingProfile:
        """Тарифы водителя."""
        return await services.pricing.get_profile(driver_id)

    @app.put(
        "/api/v1/drivers/{driver_id}/pricing/routes",
        response_model=PricingProfile,
        tags=["Pricing"],
        responses={
            404: {"model": ErrorResponse, "description": "Водитель не найден"},
            422: {"model": ErrorResponse, "description": "Недопустимое название места"},
        },
    )
    async def set_route_price(
        driver_id: str,
        request: RoutePriceDTO,
        services: Services = Depends(get_services),
    ) -> PricingProfile:
        """Создание или изменение цены маршрута."""
        return await services.pricing.set_route_price(driver_id, request)

    @app.delete("/api/v1/drivers/{driver_id}/pricing/routes", tags=["Pricing"])
    async def remove_route_price(
        driver_id: str,
        from_location: str,
        to_location: str,
        services: Services = Depends(get_services),
    ) -> dict:
        """Удаление цены маршрута."""
        removed = await services.pricing.remove_route_price(driver_id, from_location, to_location)
        if not removed:
            raise _not_found("Маршрут не настроен")
        return {"removed": True}

    @app.put("/api/v1/drivers/{driver_id}/pricing/modifiers", response_model=PricingProfile, tags=["Pricing"])
    async def update_modifiers(
        driver_id: str,
        request: PricingModifiers,
        services: Services = Depends(get_services),
    ) -> PricingProfile:
        """Замена модификаторов цены."""
        return await services.pricing.update_modifiers(driver_id, request)

    @app.put("/api/v1/drivers/{driver_id}/pricing/zones", response_model=PricingProfile, tags=["Pricing"])
    async def update_zones(
        driver_id: str,
        request: dict[str, SpecialZone],
        services: Services = Depends(get_services),
    ) -> PricingProfile:
        """Замена надбавок особых зон."""
        return await services.pricing.update_special_zones(driver_id, request)

    @app.get("/api/v1/drivers/{driver_id}/fare", response_model=FareBreakdown, tags=["Pricing"])
    async def compute_fare(
        driver_id: str,
        from_location: str,
        to_location: str,
        services: Services = Depends(get_services),
    ) -> FareBreakdown:
        """Стоимость маршрута у водителя (0, если маршрут не настроен)."""
        return await services.pricing.compute_fare(driver_id, from_location, to_location)

    @app.get("/api/v1/matching", response_model=MatchResult, tags=["Matching"])
    async def match_drivers(
        from_location: str,
        to_location: str,
        public_only: bool = False,
        services: Services = Depends(get_services),
    ) -> MatchResult:
        """Водители с ценой на маршрут и рекомендации."""
        return await services.matching.match(from_location, to_location, public_only=public_only)


# =============================================================================
# ВОДИТЕЛИ
# =============================================================================

def _register_drivers(app: FastAPI) -> None:

    @app.post("/api/v1/drivers", response_model=Driver, status_code=status.HTTP_201_CREATED, tags=["Drivers"])
    async def register_driver(request: DriverCreateDTO, services: Services = Depends(get_services)) -> Driver:
        """Регистрация водителя."""
        driver = await services.drivers.register_driver(request)
        if driver is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Не удалось создать водителя")
        return driver

    @app.get("/api/v1/drivers/{driver_id}", response_model=Driver, tags=["Drivers"])
    async def get_driver(driver_id: str, services: Services = Depends(get_services)) -> Driver:
        """Профиль водителя."""
        driver = await services.drivers.get_driver(driver_id)
        if driver is None:
            raise _not_found("Водитель не найден")
        return driver

    @app.patch("/api/v1/drivers/{driver_id}/status", response_model=Driver, tags=["Drivers"])
    async def set_driver_status(
        driver_id: str,
        request: DriverStatusDTO,
        services: Services = Depends(get_services),
    ) -> Driver:
        """Смена доступности."""
        driver = await services.drivers.set_status(driver_id, request.status)
        if driver is None:
            raise _not_found("Водитель не найден")
        return driver

    @app.patch("/api/v1/drivers/{driver_id}/location", response_model=Driver, tags=["Drivers"])
    async def set_driver_location(
        driver_id: str,
        request: DriverLocationDTO,
        services: Services = Depends(get_services),
    ) -> Driver:
        """Смена текущего района."""
        driver = await services.drivers.set_location(driver_id, request.current_location)
        if driver is None:
            raise _not_found("Водитель не найден")
        return driver

    @app.patch("/api/v1/drivers/{driver_id}/subscription", response_model=Driver, tags=["Drivers"])
    async def set_driver_subscription(
        driver_id: str,
        request: SubscriptionDTO,
        services: Services = Depends(get_services),
    ) -> Driver:
        """Подтверждение оплаты подписки администратором."""
        driver = await services.drivers.set_subscription_status(driver_id, request.subscription_status)
        if driver is None:
            raise _not_found("Водитель не найден")
        return driver

    @app.get("/api/v1/drivers/{driver_id}/history", response_model=list[BookingRequest], tags=["Drivers"])
    async def driver_history(
        driver_id: str,
        limit: Optional[int] = None,
        services: Services = Depends(get_services),
    ) -> list[BookingRequest]:
        """История поездок водителя."""
        return await services.bookings.get_driver_history(driver_id, limit=limit)

    @app.get("/api/v1/drivers/{driver_id}/earnings", response_model=EarningsSummary, tags=["Drivers"])
    async def driver_earnings(driver_id: str, services: Services = Depends(get_services)) -> EarningsSummary:
        """Сводка заработка."""
        return await services.earnings.get_summary(driver_id)

    @app.get("/api/v1/drivers/{driver_id}/negotiations", response_model=list[Negotiation], tags=["Drivers"])
    async def driver_negotiations(driver_id: str, services: Services = Depends(get_services)) -> list[Negotiation]:
        """Торги водителя в статусе pending."""
        return await services.negotiations.get_pending_for_driver(driver_id)


# =============================================================================
# ЗАЯВКИ
# =============================================================================

def _register_bookings(app: FastAPI) -> None:

    @app.post("/api/v1/bookings", tags=["Bookings"])
    async def create_booking(request: BookingCreateDTO, services: Services = Depends(get_services)) -> JSONResponse:
        """Создание заявки."""
        return respond(await services.bookings.create_booking(request), status.HTTP_201_CREATED)

    @app.get("/api/v1/bookings", response_model=list[BookingRequest], tags=["Bookings"])
    async def available_bookings(location: str, services: Services = Depends(get_services)) -> list[BookingRequest]:
        """Доступные заявки в районе."""
        return await services.bookings.get_available_bookings(location)

    @app.get("/api/v1/bookings/count", response_model=PendingCount, tags=["Bookings"])
    async def pending_count(location: str, services: Services = Depends(get_services)) -> PendingCount:
        """Количество новых заявок в районе."""
        count = await services.earnings.get_new_requests_count(location)
        return PendingCount(location=location, count=count)

    @app.get("/api/v1/customers/bookings", response_model=list[BookingRequest], tags=["Bookings"])
    async def customer_bookings(
        customer_id: Optional[str] = None,
        customer_phone: Optional[str] = None,
        services: Services = Depends(get_services),
    ) -> list[BookingRequest]:
        """Заявки клиента по ID или телефону."""
        if customer_id is None and customer_phone is None:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Нужен customer_id или customer_phone",
            )
        return await services.bookings.get_customer_bookings(customer_id=customer_id, customer_phone=customer_phone)

    @app.get(
        "/api/v1/bookings/{booking_id}",
        response_model=BookingRequest,
        tags=["Bookings"],
        responses={404: {"model": ErrorResponse, "description": "Заявка не найдена"}},
    )
    async def get_booking(booking_id: str, services: Services = Depends(get_services)) -> BookingRequest:
        """Заявка по ID."""
        booking = await services.bookings.get_booking(booking_id)
        if booking is None:
            raise _not_found("Заявка не найдена")
        return booking

    @app.post("/api/v1/bookings/{booking_id}/accept", tags=["Bookings"])
    async def accept_booking(
        booking_id: str,
        request: AcceptBookingRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Принятие заявки водителем."""
        return respond(await services.bookings.accept_booking(booking_id, request.driver_id))

    @app.post("/api/v1/bookings/{booking_id}/complete", tags=["Bookings"])
    async def complete_ride(
        booking_id: str,
        request: CompleteRideRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Завершение поездки."""
        return respond(await services.bookings.complete_ride(booking_id, request.driver_id, request.fare))

    @app.post("/api/v1/bookings/{booking_id}/rate", tags=["Bookings"])
    async def rate_ride(
        booking_id: str,
        request: RateRideRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Оценка поездки."""
        return respond(await services.bookings.rate_ride(booking_id, request.rating, request.review))

    @app.post("/api/v1/bookings/{booking_id}/cancel", tags=["Bookings"])
    async def cancel_booking(
        booking_id: str,
        request: CancelBookingRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Отмена заявки."""
        return respond(await services.bookings.cancel_booking(booking_id, request.reason))

    @app.post("/api/v1/bookings/{booking_id}/requeue", tags=["Bookings"])
    async def requeue_booking(
        booking_id: str,
        request: RequeueBookingRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Отказ водителя от принятой заявки."""
        return respond(await services.bookings.requeue_booking(booking_id, request.driver_id, request.reason))

    @app.post("/api/v1/bookings/{booking_id}/ride-status", tags=["Bookings"])
    async def update_ride_status(
        booking_id: str,
        request: RideStatusRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Следующий этап поездки."""
        return respond(await services.bookings.update_ride_status(booking_id, request.driver_id, request.status))

    @app.post("/api/v1/bookings/{booking_id}/location", tags=["Bookings"])
    async def update_location(
        booking_id: str,
        request: LocationUpdateRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Позиция водителя по принятой заявке."""
        destination = None
        if request.destination_lat is not None and request.destination_lng is not None:
            destination = Coordinates(lat=request.destination_lat, lng=request.destination_lng)
        location = DriverLocation(lat=request.lat, lng=request.lng)
        return respond(await services.bookings.update_driver_location(booking_id, location, destination))


# =============================================================================
# ТОРГ
# =============================================================================

def _register_negotiations(app: FastAPI) -> None:

    @app.post("/api/v1/negotiations", tags=["Negotiations"])
    async def create_negotiation(
        request: NegotiationCreateDTO,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Открытие торга клиентом."""
        return respond(await services.negotiations.create_negotiation(request), status.HTTP_201_CREATED)

    @app.get("/api/v1/negotiations/{negotiation_id}", response_model=Negotiation, tags=["Negotiations"])
    async def get_negotiation(negotiation_id: str, services: Services = Depends(get_services)) -> Negotiation:
        """Торг по ID."""
        negotiation = await services.negotiations.get_negotiation(negotiation_id)
        if negotiation is None:
            raise _not_found("Торг не найден")
        return negotiation

    @app.post("/api/v1/negotiations/{negotiation_id}/accept", tags=["Negotiations"])
    async def accept_offer(
        negotiation_id: str,
        request: NegotiationActionRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Принятие текущего предложения."""
        return respond(await services.negotiations.accept_offer(negotiation_id, request.actor))

    @app.post("/api/v1/negotiations/{negotiation_id}/decline", tags=["Negotiations"])
    async def decline_offer(
        negotiation_id: str,
        request: DeclineOfferRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Отказ от торга."""
        return respond(await services.negotiations.decline_offer(negotiation_id, request.actor, request.reason))

    @app.post("/api/v1/negotiations/{negotiation_id}/counter", tags=["Negotiations"])
    async def counter_offer(
        negotiation_id: str,
        request: CounterOfferRequest,
        services: Services = Depends(get_services),
    ) -> JSONResponse:
        """Встречное предложение."""
        return respond(await services.negotiations.counter_offer(
            negotiation_id, request.actor, request.price, request.message,
        ))

    @app.post(
        "/api/v1/negotiations/{negotiation_id}/check-expiration",
        response_model=ExpirationStatus,
        tags=["Negotiations"],
    )
    async def check_expiration(negotiation_id: str, services: Services = Depends(get_services)) -> ExpirationStatus:
        """Закрывает торг по сроку, если время вышло."""
        terminal = await services.negotiations.check_expiration(negotiation_id)
        return ExpirationStatus(negotiation_id=negotiation_id, terminal=terminal)
