# ride_dispatch/common/exceptions.py
"""
Исключения инфраструктурного уровня.

Доменные исходы (заявка уже занята, торг закрыт и т.п.) исключениями
не являются и возвращаются как типизированные результаты.
"""

from __future__ import annotations


class ConcurrencyConflictError(Exception):
    """Документ изменён другой транзакцией (версия не совпала)."""

    def __init__(self, entity: str, entity_id: str, expected_version: int) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Конфликт версий: {entity} {entity_id} (ожидалась версия {expected_version})"
        )


class TransactionRetryExhaustedError(Exception):
    """Транзакция не прошла после всех повторных попыток."""

    def __init__(self, attempts: int) -> None:
        self.attempts = attempts
        super().__init__(f"Транзакция не выполнена после {attempts} попыток")


class InvalidRouteKeyError(ValueError):
    """Недопустимые символы в ключе маршрута."""


class DriverNotFoundError(LookupError):
    """Водитель с таким ID не зарегистрирован."""

    def __init__(self, driver_id: str) -> None:
        self.driver_id = driver_id
        super().__init__(f"Водитель {driver_id} не найден")
