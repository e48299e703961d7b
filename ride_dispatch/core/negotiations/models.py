# ride_dispatch/core/negotiations/models.py
"""
Модели торга о стоимости поездки.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from ride_dispatch.common.constants import (
    MessageType,
    NegotiationStatus,
    Party,
    TERMINAL_NEGOTIATION_STATUSES,
)
from ride_dispatch.common.results import ActionResult
from ride_dispatch.common.utils import utc_now


# Сообщения, которые несут предложение цены
PRICED_MESSAGE_TYPES = frozenset({MessageType.OFFER, MessageType.COUNTER})


class NegotiationMessage(BaseModel):
    """Запись журнала торга."""

    sender: Party = Field(..., description="Отправитель")
    type: MessageType = Field(..., description="Тип сообщения")
    price: Optional[int] = Field(None, gt=0, description="Цена (для offer, counter, accept)")
    message: str = Field("", description="Текст для участников")
    timestamp: datetime = Field(default_factory=utc_now)


class Negotiation(BaseModel):
    """
    Торг клиента и водителя о цене заявки.

    Инвариант: current_offer равен цене последнего сообщения offer/counter.
    Журнал сообщений только дополняется.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), description="UUID торга")
    booking_request_id: str = Field(..., description="Заявка")
    driver_id: str = Field(..., description="Водитель")
    customer_id: Optional[str] = Field(None, description="Клиент (None для гостя)")
    customer_name: str = Field("", description="Имя клиента")
    customer_phone: Optional[str] = Field(None, description="Телефон клиента")

    initial_price: int = Field(..., gt=0, description="Цена водителя")
    proposed_price: int = Field(..., gt=0, description="Первое предложение клиента")
    current_offer: int = Field(..., gt=0, description="Актуальное предложение")

    status: NegotiationStatus = Field(NegotiationStatus.PENDING, description="Статус торга")
    messages: list[NegotiationMessage] = Field(default_factory=list, description="Журнал")

    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime = Field(..., description="Срок ответа")
    resolved_at: Optional[datetime] = None
    version: int = Field(0, ge=0, description="Версия для оптимистичной блокировки")

    class Config:
        from_attributes = True

    @model_validator(mode="after")
    def _check_current_offer(self) -> "Negotiation":
        priced = [m for m in self.messages if m.type in PRICED_MESSAGE_TYPES]
        if priced and priced[-1].price != self.current_offer:
            raise ValueError("current_offer должен совпадать с ценой последнего предложения")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_NEGOTIATION_STATUSES

    @property
    def last_sender(self) -> Optional[Party]:
        """Отправитель последнего сообщения."""
        return self.messages[-1].sender if self.messages else None

    def is_expired(self, now: datetime) -> bool:
        """Истёк ли срок ответа (строго после expires_at)."""
        return now > self.expires_at

    def append(self, message: NegotiationMessage) -> None:
        """Добавляет сообщение в журнал, для предложений обновляет current_offer."""
        self.messages.append(message)
        if message.type in PRICED_MESSAGE_TYPES and message.price is not None:
            self.current_offer = message.price


class NegotiationCreateDTO(BaseModel):
    """DTO открытия торга. Цены проверяет сервис, чтобы вернуть понятный результат."""

    booking_request_id: str
    driver_id: str
    customer_id: Optional[str] = None
    customer_name: str = ""
    customer_phone: Optional[str] = None
    initial_price: int
    proposed_price: int


class NegotiationResult(ActionResult):
    """Результат операции торга."""

    negotiation: Optional[Negotiation] = None
