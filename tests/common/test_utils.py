# tests/common/test_utils.py
"""
Тесты для вспомогательных функций, геометрии и модели результата.
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from ride_dispatch.common.constants import ActionOutcome
from ride_dispatch.common.exceptions import ConcurrencyConflictError, TransactionRetryExhaustedError
from ride_dispatch.common.geo import Coordinates, calculate_distance, distance_meters
from ride_dispatch.common.results import ActionResult
from ride_dispatch.common.utils import normalize_location, round_currency, round_half_up, utc_now


class TestRounding:
    """Тесты для округления."""

    @pytest.mark.parametrize(
        ("value", "ndigits", "expected"),
        [
            (4.25, 1, 4.3),
            (4.24, 1, 4.2),
            (2.5, 0, 3.0),
            (3.5, 0, 4.0),
            (-2.5, 0, -3.0),
        ],
    )
    def test_round_half_up(self, value: float, ndigits: int, expected: float) -> None:
        """Проверяет округление половин вверх."""
        assert round_half_up(value, ndigits) == expected

    def test_round_currency(self) -> None:
        """Проверяет округление до целой суммы."""
        assert round_currency(2999.5) == 3000
        assert isinstance(round_currency(10.2), int)


class TestNormalizeLocation:
    """Тесты для нормализации названий мест."""

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("  Athi   River ", "athi river"),
            ("MACHAKOS", "machakos"),
            ("masii", "masii"),
        ],
    )
    def test_normalize(self, raw: str, expected: str) -> None:
        """Проверяет удаление лишних пробелов и регистр."""
        assert normalize_location(raw) == expected


class TestUtcNow:
    """Тесты для utc_now."""

    def test_is_aware(self) -> None:
        """Проверяет, что время содержит часовой пояс."""
        assert utc_now().utcoffset() is not None


class TestGeo:
    """Тесты для расчёта расстояний."""

    def test_same_point(self) -> None:
        """Проверяет нулевое расстояние."""
        assert calculate_distance(-1.5177, 37.2634, -1.5177, 37.2634) == 0.0

    def test_nairobi_to_machakos(self) -> None:
        """Проверяет расстояние между Найроби и Мачакосом."""
        distance = calculate_distance(-1.2921, 36.8219, -1.5177, 37.2634)

        assert 50.0 < distance < 60.0

    def test_distance_meters(self) -> None:
        """Проверяет расстояние в метрах для близких точек."""
        a = Coordinates(lat=-1.5177, lng=37.2634)
        b = Coordinates(lat=-1.5186, lng=37.2634)

        assert 90.0 < distance_meters(a, b) < 110.0

    def test_coordinates_bounds(self) -> None:
        """Проверяет валидацию широты и долготы."""
        with pytest.raises(ValidationError):
            Coordinates(lat=91.0, lng=0.0)


class TestActionResult:
    """Тесты для модели ActionResult."""

    def test_success_flag(self) -> None:
        """Проверяет вычисляемое поле success."""
        assert ActionResult(outcome=ActionOutcome.SUCCESS, message="ok").success is True
        assert ActionResult(outcome=ActionOutcome.NOT_FOUND, message="missing").success is False

    def test_success_in_dump(self) -> None:
        """Проверяет, что success попадает в сериализацию."""
        data = ActionResult(outcome=ActionOutcome.SUCCESS, message="ok").model_dump()

        assert data["success"] is True


class TestExceptions:
    """Тесты для исключений инфраструктуры."""

    def test_conflict_error_attributes(self) -> None:
        """Проверяет атрибуты конфликта версий."""
        error = ConcurrencyConflictError("booking", "b-1", 3)

        assert error.entity_id == "b-1"
        assert error.expected_version == 3
        assert "b-1" in str(error)

    def test_retry_exhausted(self) -> None:
        """Проверяет число попыток в сообщении."""
        error = TransactionRetryExhaustedError(5)

        assert error.attempts == 5
        assert "5" in str(error)
