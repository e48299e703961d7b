# ride_dispatch/common/results.py
"""
Базовая модель результата операции.
"""

from __future__ import annotations

from pydantic import BaseModel, computed_field

from ride_dispatch.common.constants import ActionOutcome


class ActionResult(BaseModel):
    """
    Результат операции над доменной сущностью.

    Неуспех (заявка занята, истекла, чужой водитель) является ожидаемым
    исходом, а не исключением, поэтому передаётся в поле outcome вместе
    с сообщением для пользователя.
    """

    outcome: ActionOutcome
    message: str

    @computed_field  # type: ignore[misc]
    @property
    def success(self) -> bool:
        """Успешна ли операция."""
        return self.outcome == ActionOutcome.SUCCESS
