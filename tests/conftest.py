# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from tests.fakes import FakeBackend, FakeClock, NOW  # noqa: E402
from ride_dispatch.dependencies import Services  # noqa: E402


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture(scope="session")
def lang_dict_path(project_root: Path) -> Path:
    """Путь к файлу локализации."""
    return project_root / "config" / "lang_dict.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "ride_dispatch_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "COMPONENT_MODE": "api",
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FORMAT": "colored",
        "DEFAULT_LANGUAGE": "sw",
        "SUPPORTED_LANGUAGES": ["en", "sw"],
        "TIMEZONE": "Africa/Nairobi",
        "CURRENCY": "KES",
        "DB_HOST": "db.internal",
        "DB_PORT": 5433,
        "DB_NAME": "ride_dispatch_test",
        "DB_USER": "postgres",
        "DB_PASSWORD": "test_password",
        "TRANSACTION_MAX_ATTEMPTS": 3,
        "TRANSACTION_RETRY_DELAY": 0.01,
        "REDIS_HOST": "localhost",
        "REDIS_NAMESPACE": "ride_test",
        "PRICING_TTL": 60,
        "RABBITMQ_HOST": "localhost",
        "RABBITMQ_EXCHANGE": "ride_dispatch.test",
        "BOOKING_TTL_MINUTES": 20,
        "NEGOTIATION_TTL_MINUTES": 10,
        "PRICE_WEIGHT": 0.5,
        "RATING_WEIGHT": 0.3,
        "EXPERIENCE_WEIGHT": 0.2,
        "AUTO_COMPLETE_RADIUS_METERS": 50,
        "USE_MOCK_LOCATION": False,
        "API_PORT": 9090,
    }


@pytest.fixture
def mock_lang_dict() -> dict[str, dict[str, str]]:
    """Мок словаря локализации для тестов."""
    return {
        "BOOKING_CREATED": {
            "en": "Booking created",
            "sw": "Ombi limeundwa",
        },
        "BOOKING_EXPIRED": {
            "en": "Booking expired",
            "sw": "Ombi limeisha muda",
        },
        "GREETING": {
            "en": "Hello, {name}!",
            "sw": "Habari, {name}!",
        },
        "ONLY_EN": {
            "en": "English only",
        },
    }


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="UPDATE 1")
    db.fetchval = AsyncMock(return_value=None)
    db.health_check = AsyncMock(return_value=True)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок клиента Redis."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.exists = AsyncMock(return_value=False)
    redis.get_model = AsyncMock(return_value=None)
    redis.set_model = AsyncMock(return_value=True)
    redis.health_check = AsyncMock(return_value=True)
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.health_check = AsyncMock(return_value=True)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# IN-MEMORY ХРАНИЛИЩА И СЕРВИСЫ
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    """Часы, остановленные на NOW."""
    return FakeClock(NOW)


@pytest.fixture
def backend(clock: FakeClock) -> FakeBackend:
    """In-memory БД, Redis и шина событий."""
    return FakeBackend(clock=clock)


@pytest.fixture
def services(backend: FakeBackend) -> Services:
    """Сервисы поверх in-memory хранилищ."""
    return backend.services()


# =============================================================================
# УТИЛИТЫ
# =============================================================================

@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


@pytest.fixture
def temp_lang_dict_file(tmp_path: Path, mock_lang_dict: dict[str, dict[str, str]]) -> Path:
    """Создаёт временный файл локализации."""
    lang_file = tmp_path / "lang_dict.json"
    lang_file.write_text(json.dumps(mock_lang_dict, ensure_ascii=False, indent=2))
    return lang_file
