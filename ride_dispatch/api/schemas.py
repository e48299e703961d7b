# ride_dispatch/api/schemas.py
"""
Модели запросов и ответов HTTP API.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from ride_dispatch.common.constants import Party, RideStatus


class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""

    service: str
    status: str = "healthy"  # healthy, degraded, unhealthy
    version: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)


class ErrorResponse(BaseModel):
    """Ответ с ошибкой."""

    detail: str


# =============================================================================
# ЗАЯВКИ
# =============================================================================

class AcceptBookingRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)


class CompleteRideRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)
    fare: int


class RateRideRequest(BaseModel):
    # Диапазон проверяет сервис, чтобы вернуть локализованное сообщение
    rating: int
    review: Optional[str] = None


class CancelBookingRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class RequeueBookingRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)
    reason: str = Field(..., min_length=1)


class RideStatusRequest(BaseModel):
    driver_id: str = Field(..., min_length=1)
    status: RideStatus


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)
    destination_lat: Optional[float] = Field(None, ge=-90.0, le=90.0)
    destination_lng: Optional[float] = Field(None, ge=-180.0, le=180.0)


class PendingCount(BaseModel):
    location: str
    count: int


# =============================================================================
# ТОРГ
# =============================================================================

class NegotiationActionRequest(BaseModel):
    actor: Party


class DeclineOfferRequest(BaseModel):
    actor: Party
    reason: Optional[str] = None


class CounterOfferRequest(BaseModel):
    actor: Party
    price: int
    message: Optional[str] = None


class ExpirationStatus(BaseModel):
    negotiation_id: str
    terminal: bool
