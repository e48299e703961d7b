# ride_dispatch/core/notifications/models.py
"""
Уведомления о заявках и торге.

Каждый вид уведомления описан отдельной моделью со своим набором полей.
Поле kind является дискриминатором, поэтому payload разбирается
в правильный тип без ручных проверок.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, ClassVar, Literal, Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter

from ride_dispatch.common.constants import Party
from ride_dispatch.common.utils import utc_now


class _Payload(BaseModel):
    """Общая часть всех payload."""

    # Ключ текста в lang_dict
    TEXT_KEY: ClassVar[str] = "NOTIFY_DEFAULT"

    def text_key(self) -> str:
        """Ключ текста уведомления."""
        return self.TEXT_KEY

    def text_params(self) -> dict:
        """Параметры для форматирования текста."""
        return self.model_dump(exclude={"kind"})


# =============================================================================
# ЗАЯВКИ
# =============================================================================

class BookingCreated(_Payload):
    """Клиенту: заявка создана."""
    kind: Literal["booking_created"] = "booking_created"
    TEXT_KEY: ClassVar[str] = "NOTIFY_BOOKING_CREATED"
    pickup_location: str
    destination: str


class NewBooking(_Payload):
    """Водителю: новая заявка в его районе или прямой запрос."""
    kind: Literal["new_booking"] = "new_booking"
    TEXT_KEY: ClassVar[str] = "NOTIFY_NEW_BOOKING"
    pickup_location: str
    destination: str
    customer_name: str
    estimated_price: Optional[int] = None
    direct: bool = False

    def text_key(self) -> str:
        return "NOTIFY_DIRECT_BOOKING" if self.direct else self.TEXT_KEY


class RideConfirmed(_Payload):
    """Клиенту: водитель принял заявку."""
    kind: Literal["ride_confirmed"] = "ride_confirmed"
    TEXT_KEY: ClassVar[str] = "NOTIFY_RIDE_CONFIRMED"
    driver_id: str
    driver: str


class DriverEnRoute(_Payload):
    """Клиенту: водитель выехал."""
    kind: Literal["driver_enroute"] = "driver_enroute"
    TEXT_KEY: ClassVar[str] = "NOTIFY_DRIVER_ENROUTE"
    driver: str


class DriverArrived(_Payload):
    """Клиенту: водитель на месте подачи."""
    kind: Literal["driver_arrived"] = "driver_arrived"
    TEXT_KEY: ClassVar[str] = "NOTIFY_DRIVER_ARRIVED"
    driver: str
    pickup_location: str


class TripStarted(_Payload):
    """Клиенту: поездка началась."""
    kind: Literal["trip_started"] = "trip_started"
    TEXT_KEY: ClassVar[str] = "NOTIFY_TRIP_STARTED"
    destination: str


class TripCompleted(_Payload):
    """Клиенту: поездка завершена."""
    kind: Literal["trip_completed"] = "trip_completed"
    TEXT_KEY: ClassVar[str] = "NOTIFY_TRIP_COMPLETED"
    fare: Optional[int] = None


class BookingCancelled(_Payload):
    """Водителю: клиент отменил заявку."""
    kind: Literal["booking_cancelled"] = "booking_cancelled"
    TEXT_KEY: ClassVar[str] = "NOTIFY_BOOKING_CANCELLED"
    pickup_location: str
    reason: str


class DriverCancelled(_Payload):
    """Клиенту: водитель отказался, заявка снова в поиске."""
    kind: Literal["driver_cancelled"] = "driver_cancelled"
    TEXT_KEY: ClassVar[str] = "NOTIFY_DRIVER_CANCELLED"
    driver_id: str
    reason: str


# =============================================================================
# ТОРГ
# =============================================================================

class FareChange(_Payload):
    """Водителю: клиент предложил свою цену."""
    kind: Literal["fare_change"] = "fare_change"
    TEXT_KEY: ClassVar[str] = "NOTIFY_FARE_CHANGE"
    negotiation_id: str
    price: int
    currency: str = "KES"


class FareCounter(_Payload):
    """Другой стороне: встречное предложение."""
    kind: Literal["fare_counter"] = "fare_counter"
    TEXT_KEY: ClassVar[str] = "NOTIFY_FARE_COUNTER"
    negotiation_id: str
    price: int
    sender: Party
    currency: str = "KES"


class FareAccepted(_Payload):
    """Другой стороне: предложение принято."""
    kind: Literal["fare_accepted"] = "fare_accepted"
    TEXT_KEY: ClassVar[str] = "NOTIFY_FARE_ACCEPTED"
    negotiation_id: str
    price: int
    currency: str = "KES"


class FareDeclined(_Payload):
    """Другой стороне: предложение отклонено."""
    kind: Literal["fare_declined"] = "fare_declined"
    TEXT_KEY: ClassVar[str] = "NOTIFY_FARE_DECLINED"
    negotiation_id: str
    reason: Optional[str] = None


NotificationPayload = Annotated[
    Union[
        BookingCreated,
        NewBooking,
        RideConfirmed,
        DriverEnRoute,
        DriverArrived,
        TripStarted,
        TripCompleted,
        BookingCancelled,
        DriverCancelled,
        FareChange,
        FareCounter,
        FareAccepted,
        FareDeclined,
    ],
    Field(discriminator="kind"),
]

payload_adapter: TypeAdapter[NotificationPayload] = TypeAdapter(NotificationPayload)


class Notification(BaseModel):
    """Уведомление получателю."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    recipient_id: str = Field(..., description="ID водителя или клиента (или телефон гостя)")
    booking_id: Optional[str] = None
    message: str
    payload: NotificationPayload
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def kind(self) -> str:
        """Вид уведомления."""
        return self.payload.kind
