# ride_dispatch/core/negotiations/service.py
"""
Сервис торга о цене.

Статус торга определяется последним сообщением журнала. Ходы делаются
по очереди: сторона, отправившая последнее сообщение, не может сама
принять или перебить своё предложение. Закрытый торг не меняется.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Awaitable, Callable, Optional

from asyncpg import Connection

from ride_dispatch.common.constants import ActionOutcome, MessageType, NegotiationStatus, Party, TypeMsg
from ride_dispatch.common.exceptions import TransactionRetryExhaustedError
from ride_dispatch.common.localization import get_text
from ride_dispatch.common.logger import log_error, log_info, log_warning
from ride_dispatch.common.utils import Clock, utc_now
from ride_dispatch.core.bookings.repository import BookingRepository
from ride_dispatch.core.negotiations.models import (
    Negotiation,
    NegotiationCreateDTO,
    NegotiationMessage,
    NegotiationResult,
)
from ride_dispatch.core.negotiations.repository import NegotiationRepository
from ride_dispatch.core.notifications import (
    FareAccepted,
    FareChange,
    FareCounter,
    FareDeclined,
    NotificationPayload,
    NotificationService,
)
from ride_dispatch.infra.database import DatabaseManager
from ride_dispatch.infra.event_bus import DomainEvent, EventBus, EventTypes


NegotiationOperation = Callable[[Connection], Awaitable[NegotiationResult]]

PARTICIPANTS = (Party.CUSTOMER, Party.DRIVER)


def _is_positive_price(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class NegotiationService:
    """Сервис торга."""

    def __init__(
        self,
        db: DatabaseManager,
        event_bus: EventBus,
        notifications: NotificationService,
        repo: NegotiationRepository | None = None,
        booking_repo: BookingRepository | None = None,
        clock: Clock = utc_now,
        ttl_minutes: int | None = None,
        language: str | None = None,
        currency: str | None = None,
    ) -> None:
        from ride_dispatch.config import settings

        self._db = db
        self._event_bus = event_bus
        self._notifications = notifications
        self._repo = repo or NegotiationRepository(db)
        self._booking_repo = booking_repo or BookingRepository(db)
        self._clock = clock
        self._ttl = timedelta(minutes=ttl_minutes or settings.negotiation.NEGOTIATION_TTL_MINUTES)
        self._language = language or settings.domain.DEFAULT_LANGUAGE
        self._currency = currency or settings.domain.CURRENCY

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    def _result(
        self,
        outcome: ActionOutcome,
        key: str,
        negotiation: Optional[Negotiation] = None,
        **params,
    ) -> NegotiationResult:
        return NegotiationResult(
            outcome=outcome,
            message=get_text(key, self._language, **params),
            negotiation=negotiation,
        )

    def _party_name(self, party: Party) -> str:
        key = "PARTY_DRIVER" if party == Party.DRIVER else "PARTY_CUSTOMER"
        return get_text(key, self._language)

    async def _transact(self, operation: NegotiationOperation, action: str) -> NegotiationResult:
        try:
            return await self._db.run_transaction(operation)
        except TransactionRetryExhaustedError as e:
            await log_warning(f"Торг: {action} не выполнено, конкуренция за запись: {e}")
        except Exception as e:
            await log_error(f"Торг: ошибка операции {action}: {e}", exc_info=True)
        return self._result(ActionOutcome.UNAVAILABLE, "SERVICE_UNAVAILABLE")

    def _expire(self, negotiation: Negotiation) -> None:
        """Закрывает торг по сроку и фиксирует это в журнале."""
        now = self._clock()
        negotiation.append(NegotiationMessage(
            sender=Party.SYSTEM,
            type=MessageType.EXPIRE,
            message=get_text("MSG_EXPIRED", self._language),
            timestamp=now,
        ))
        negotiation.status = NegotiationStatus.EXPIRED
        negotiation.resolved_at = now

    async def _load_open(
        self,
        conn: Connection,
        negotiation_id: str,
    ) -> tuple[Optional[Negotiation], Optional[NegotiationResult]]:
        """
        Загружает торг для хода участника.

        Returns:
            (торг, None) если ход возможен, иначе (торг или None, результат отказа).
            Просроченный ожидающий торг закрывается в этой же транзакции.
        """
        negotiation = await self._repo.fetch_for_update(conn, negotiation_id)
        if negotiation is None:
            return None, self._result(ActionOutcome.NOT_FOUND, "NEGOTIATION_NOT_FOUND")
        if negotiation.is_terminal:
            return negotiation, self._result(ActionOutcome.ALREADY_RESOLVED, "NEGOTIATION_RESOLVED", negotiation)
        if negotiation.status == NegotiationStatus.PENDING and negotiation.is_expired(self._clock()):
            self._expire(negotiation)
            saved = await self._repo.save(conn, negotiation)
            return saved, self._result(ActionOutcome.EXPIRED, "NEGOTIATION_EXPIRED", saved)
        return negotiation, None

    def _recipient(self, negotiation: Negotiation, actor: Party) -> Optional[str]:
        """Другая сторона торга."""
        if actor == Party.DRIVER:
            return negotiation.customer_id or negotiation.customer_phone
        return negotiation.driver_id

    async def _after_commit(
        self,
        result: NegotiationResult,
        event_type: str,
        actor: Party,
        payload: NotificationPayload,
    ) -> None:
        """Уведомление другой стороны и событие после коммита."""
        negotiation = result.negotiation
        if negotiation is None:
            return
        if result.outcome == ActionOutcome.EXPIRED:
            await self._publish(EventTypes.NEGOTIATION_EXPIRED, negotiation)
            return
        if not result.success:
            return

        await self._notifications.notify(
            self._recipient(negotiation, actor), negotiation.booking_request_id, payload
        )
        await self._publish(event_type, negotiation, actor=actor.value)

    async def _publish(self, event_type: str, negotiation: Negotiation, **extra) -> None:
        try:
            payload = {
                "negotiation_id": negotiation.id,
                "booking_id": negotiation.booking_request_id,
                "driver_id": negotiation.driver_id,
                "status": negotiation.status.value,
                "current_offer": negotiation.current_offer,
            }
            payload.update(extra)
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
        except Exception as e:
            await log_error(f"Ошибка публикации события {event_type}: {e}")

    # =========================================================================
    # ОТКРЫТИЕ ТОРГА
    # =========================================================================

    async def create_negotiation(self, dto: NegotiationCreateDTO) -> NegotiationResult:
        """
        Клиент предлагает свою цену вместо цены водителя.
        Журнал начинается с одного сообщения offer от клиента.
        """
        if not _is_positive_price(dto.initial_price) or not _is_positive_price(dto.proposed_price):
            return self._result(ActionOutcome.INVALID_INPUT, "NEGOTIATION_INVALID_PRICE")
        if dto.initial_price == dto.proposed_price:
            return self._result(ActionOutcome.INVALID_INPUT, "NEGOTIATION_SAME_PRICE")

        try:
            booking = await self._booking_repo.load(dto.booking_request_id)
        except Exception as e:
            await log_error(f"Торг: ошибка чтения заявки {dto.booking_request_id}: {e}", exc_info=True)
            return self._result(ActionOutcome.UNAVAILABLE, "SERVICE_UNAVAILABLE")
        if booking is None:
            return self._result(ActionOutcome.NOT_FOUND, "BOOKING_NOT_FOUND")

        now = self._clock()
        negotiation = Negotiation(
            booking_request_id=dto.booking_request_id,
            driver_id=dto.driver_id,
            customer_id=dto.customer_id,
            customer_name=dto.customer_name,
            customer_phone=dto.customer_phone,
            initial_price=dto.initial_price,
            proposed_price=dto.proposed_price,
            current_offer=dto.proposed_price,
            messages=[NegotiationMessage(
                sender=Party.CUSTOMER,
                type=MessageType.OFFER,
                price=dto.proposed_price,
                message=get_text(
                    "MSG_CUSTOMER_OFFER", self._language,
                    currency=self._currency, price=dto.proposed_price,
                ),
                timestamp=now,
            )],
            created_at=now,
            expires_at=now + self._ttl,
        )

        created = await self._repo.create(negotiation)
        if created is None:
            return self._result(ActionOutcome.UNAVAILABLE, "SERVICE_UNAVAILABLE")

        await log_info(
            f"Торг {created.id} открыт: {created.initial_price} -> {created.proposed_price}",
            type_msg=TypeMsg.INFO,
        )
        await self._notifications.notify(created.driver_id, created.booking_request_id, FareChange(
            negotiation_id=created.id,
            price=created.proposed_price,
            currency=self._currency,
        ))
        await self._publish(EventTypes.NEGOTIATION_CREATED, created)

        return self._result(ActionOutcome.SUCCESS, "NEGOTIATION_CREATED", created)

    # =========================================================================
    # ХОДЫ УЧАСТНИКОВ
    # =========================================================================

    async def accept_offer(self, negotiation_id: str, actor: Party) -> NegotiationResult:
        """Принимает текущее предложение другой стороны."""
        if actor not in PARTICIPANTS:
            return self._result(ActionOutcome.INVALID_INPUT, "NEGOTIATION_INVALID_ACTOR")

        async def operation(conn: Connection) -> NegotiationResult:
            negotiation, failure = await self._load_open(conn, negotiation_id)
            if failure is not None:
                return failure
            if negotiation.last_sender == actor:
                return self._result(ActionOutcome.NOT_YOUR_TURN, "NEGOTIATION_NOT_YOUR_TURN", negotiation)

            now = self._clock()
            negotiation.append(NegotiationMessage(
                sender=actor,
                type=MessageType.ACCEPT,
                price=negotiation.current_offer,
                message=get_text("MSG_ACCEPTED_BY", self._language, party=self._party_name(actor)),
                timestamp=now,
            ))
            negotiation.status = NegotiationStatus.ACCEPTED
            negotiation.resolved_at = now
            saved = await self._repo.save(conn, negotiation)
            return self._result(
                ActionOutcome.SUCCESS, "NEGOTIATION_ACCEPTED", saved,
                currency=self._currency, price=saved.current_offer,
            )

        result = await self._transact(operation, "accept")
        if result.negotiation is not None:
            await self._after_commit(result, EventTypes.NEGOTIATION_ACCEPTED, actor, FareAccepted(
                negotiation_id=result.negotiation.id,
                price=result.negotiation.current_offer,
                currency=self._currency,
            ))
        return result

    async def decline_offer(
        self,
        negotiation_id: str,
        actor: Party,
        reason: str | None = None,
    ) -> NegotiationResult:
        """Отклоняет торг. Доступно любой стороне в любой момент открытого торга."""
        if actor not in PARTICIPANTS:
            return self._result(ActionOutcome.INVALID_INPUT, "NEGOTIATION_INVALID_ACTOR")

        async def operation(conn: Connection) -> NegotiationResult:
            negotiation, failure = await self._load_open(conn, negotiation_id)
            if failure is not None:
                return failure

            now = self._clock()
            negotiation.append(NegotiationMessage(
                sender=actor,
                type=MessageType.DECLINE,
                message=reason or get_text("MSG_DECLINED_BY", self._language, party=self._party_name(actor)),
                timestamp=now,
            ))
            negotiation.status = NegotiationStatus.DECLINED
            negotiation.resolved_at = now
            saved = await self._repo.save(conn, negotiation)
            return self._result(ActionOutcome.SUCCESS, "NEGOTIATION_DECLINED", saved)

        result = await self._transact(operation, "decline")
        if result.negotiation is not None:
            await self._after_commit(result, EventTypes.NEGOTIATION_DECLINED, actor, FareDeclined(
                negotiation_id=result.negotiation.id,
                reason=reason,
            ))
        return result

    async def counter_offer(
        self,
        negotiation_id: str,
        actor: Party,
        new_price: int,
        message: str | None = None,
    ) -> NegotiationResult:
        """Встречное предложение: меняет current_offer и передаёт ход."""
        if actor not in PARTICIPANTS:
            return self._result(ActionOutcome.INVALID_INPUT, "NEGOTIATION_INVALID_ACTOR")
        if not _is_positive_price(new_price):
            return self._result(ActionOutcome.INVALID_INPUT, "NEGOTIATION_INVALID_PRICE")

        async def operation(conn: Connection) -> NegotiationResult:
            negotiation, failure = await self._load_open(conn, negotiation_id)
            if failure is not None:
                return failure
            if negotiation.last_sender == actor:
                return self._result(ActionOutcome.NOT_YOUR_TURN, "NEGOTIATION_NOT_YOUR_TURN", negotiation)

            negotiation.append(NegotiationMessage(
                sender=actor,
                type=MessageType.COUNTER,
                price=new_price,
                message=message or get_text(
                    "MSG_COUNTERED_BY", self._language,
                    party=self._party_name(actor), currency=self._currency, price=new_price,
                ),
                timestamp=self._clock(),
            ))
            negotiation.status = NegotiationStatus.COUNTER_OFFERED
            saved = await self._repo.save(conn, negotiation)
            return self._result(
                ActionOutcome.SUCCESS, "NEGOTIATION_COUNTERED", saved,
                currency=self._currency, price=new_price,
            )

        result = await self._transact(operation, "counter")
        if result.negotiation is not None:
            await self._after_commit(result, EventTypes.NEGOTIATION_COUNTERED, actor, FareCounter(
                negotiation_id=result.negotiation.id,
                price=new_price,
                sender=actor,
                currency=self._currency,
            ))
        return result

    # =========================================================================
    # СРОК ДЕЙСТВИЯ
    # =========================================================================

    async def _expire_if_due(self, negotiation_id: str) -> tuple[Optional[Negotiation], bool]:
        """
        Returns:
            (торг после транзакции, был ли он закрыт именно сейчас)
        """
        async def operation(conn: Connection) -> tuple[Optional[Negotiation], bool]:
            negotiation = await self._repo.fetch_for_update(conn, negotiation_id)
            if negotiation is None or negotiation.is_terminal:
                return negotiation, False
            if negotiation.status != NegotiationStatus.PENDING or not negotiation.is_expired(self._clock()):
                return negotiation, False
            self._expire(negotiation)
            return await self._repo.save(conn, negotiation), True

        negotiation, just_expired = await self._db.run_transaction(operation)
        if just_expired and negotiation is not None:
            await log_info(f"Торг {negotiation_id} истёк", type_msg=TypeMsg.INFO)
            await self._publish(EventTypes.NEGOTIATION_EXPIRED, negotiation)
        return negotiation, just_expired

    async def check_expiration(self, negotiation_id: str) -> bool:
        """
        Закрывает ожидающий торг, если срок ответа прошёл.
        Идемпотентна.

        Returns:
            True, если торг закрыт (или не найден)

        Raises:
            TransactionRetryExhaustedError: Не удалось записать изменение
        """
        negotiation, _ = await self._expire_if_due(negotiation_id)
        return negotiation is None or negotiation.is_terminal

    async def expire_stale(self) -> int:
        """
        Закрывает все просроченные ожидающие торги.

        Returns:
            Количество закрытых торгов
        """
        closed = 0
        for negotiation_id in await self._repo.list_expired_ids(self._clock()):
            try:
                _, just_expired = await self._expire_if_due(negotiation_id)
            except Exception as e:
                await log_error(f"Ошибка закрытия торга {negotiation_id}: {e}")
                continue
            if just_expired:
                closed += 1

        if closed:
            await log_info(f"Истёкших торгов закрыто: {closed}", type_msg=TypeMsg.INFO)
        return closed

    # =========================================================================
    # ЗАПРОСЫ
    # =========================================================================

    async def get_negotiation(self, negotiation_id: str) -> Optional[Negotiation]:
        """Торг по ID."""
        return await self._repo.get_by_id(negotiation_id)

    async def get_pending_for_driver(self, driver_id: str) -> list[Negotiation]:
        """Торги водителя, ожидающие его ответа (статус pending)."""
        return await self._repo.list_pending_for_driver(driver_id)
