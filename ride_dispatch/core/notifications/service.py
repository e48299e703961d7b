# ride_dispatch/core/notifications/service.py
"""
Сервис уведомлений.
Публикует уведомления в шину событий; доставку выполняет внешний транспорт.
"""

from __future__ import annotations

from typing import Optional

from ride_dispatch.common.constants import TypeMsg
from ride_dispatch.common.localization import get_text
from ride_dispatch.common.logger import log_error, log_info
from ride_dispatch.core.notifications.models import Notification, NotificationPayload
from ride_dispatch.infra.event_bus import DomainEvent, EventBus, EventTypes


class NotificationService:
    """
    Сервис уведомлений.

    Отправка выполняется по принципу fire-and-forget: ошибки логируются
    и никогда не пробрасываются в вызывающую операцию.
    """

    def __init__(self, event_bus: EventBus, language: str | None = None) -> None:
        """
        Args:
            event_bus: Шина событий
            language: Язык текстов (по умолчанию из конфига)
        """
        if language is None:
            from ride_dispatch.config import settings
            language = settings.domain.DEFAULT_LANGUAGE

        self._event_bus = event_bus
        self._language = language

    def render(self, payload: NotificationPayload, language: str | None = None) -> str:
        """Текст уведомления для payload."""
        return get_text(payload.text_key(), language or self._language, **payload.text_params())

    async def notify(
        self,
        recipient_id: Optional[str],
        booking_id: Optional[str],
        payload: NotificationPayload,
        message: str | None = None,
        language: str | None = None,
    ) -> bool:
        """
        Отправляет уведомление.

        Args:
            recipient_id: Получатель (водитель, клиент или телефон гостя)
            booking_id: Заявка, к которой относится уведомление
            payload: Данные уведомления конкретного вида
            message: Текст (по умолчанию локализованный текст вида)
            language: Язык текста

        Returns:
            True если уведомление поставлено в очередь
        """
        if not recipient_id:
            await log_info(
                f"Уведомление {payload.kind} пропущено: нет получателя",
                type_msg=TypeMsg.DEBUG,
            )
            return False

        try:
            notification = Notification(
                recipient_id=recipient_id,
                booking_id=booking_id,
                message=message or self.render(payload, language),
                payload=payload,
            )

            await self._event_bus.publish(DomainEvent(
                event_type=EventTypes.NOTIFICATION_SEND,
                payload=notification.model_dump(mode="json"),
            ))

            await log_info(
                f"Уведомление поставлено в очередь: recipient={recipient_id}, kind={payload.kind}",
                type_msg=TypeMsg.DEBUG,
            )
            return True
        except Exception as e:
            await log_error(f"Ошибка отправки уведомления {payload.kind} для {recipient_id}: {e}")
            return False
