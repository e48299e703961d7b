# ride_dispatch/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Секреты и адреса сервисов переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """
    Возвращает путь к файлу конфигурации.
    Может быть переопределён переменной RIDE_DISPATCH_CONFIG.
    """
    override = os.getenv("RIDE_DISPATCH_CONFIG")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без комментариев."""
    config_path = path or get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "ride_dispatch"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"
    RUN_DEV_MODE: bool = True
    COMPONENT_MODE: str = "all"

    @field_validator("COMPONENT_MODE")
    @classmethod
    def check_mode(cls, v: str) -> str:
        """Допустимые режимы запуска: api, worker, all."""
        if v not in ("api", "worker", "all"):
            raise ValueError(f"Неизвестный режим запуска: {v}")
        return v


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DomainSettings(BaseModel):
    """Настройки домена и локализации."""
    DEFAULT_LANGUAGE: str = "en"
    SUPPORTED_LANGUAGES: list[str] = Field(default_factory=lambda: ["en", "sw"])
    TIMEZONE: str = "Africa/Nairobi"
    CURRENCY: str = "KES"


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "ride_dispatch"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 1.0
    # Повторы оптимистичных транзакций при конфликте версий
    TRANSACTION_MAX_ATTEMPTS: int = Field(5, ge=1)
    TRANSACTION_RETRY_DELAY: float = Field(0.05, ge=0.0)

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "ride_dispatch"
    REDIS_MAX_CONNECTIONS: int = 50

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RedisTTLSettings(BaseModel):
    """Настройки TTL кэша (секунды)."""
    PRICING_TTL: int = 300
    DRIVER_TTL: int = 120


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "ride_dispatch.events"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class BookingSettings(BaseModel):
    """Настройки жизненного цикла заявки."""
    BOOKING_TTL_MINUTES: int = Field(30, gt=0)
    AVAILABLE_BOOKINGS_LIMIT: int = 100
    HISTORY_LIMIT: int = 50
    EXPIRY_REAPER_ENABLED: bool = True
    EXPIRY_REAPER_INTERVAL: int = Field(60, gt=0)


class NegotiationSettings(BaseModel):
    """Настройки торга."""
    NEGOTIATION_TTL_MINUTES: int = Field(15, gt=0)


class MatchingSettings(BaseModel):
    """Веса и параметры подбора водителей."""
    PRICE_WEIGHT: float = 0.4
    RATING_WEIGHT: float = 0.4
    EXPERIENCE_WEIGHT: float = 0.2
    NEARBY_PENALTY: float = Field(0.9, gt=0.0, le=1.0)
    EXPERIENCE_CAP: int = Field(100, gt=0)
    DEFAULT_DRIVER_RATING: float = Field(4.5, ge=0.0, le=5.0)

    @model_validator(mode="after")
    def check_weights(self) -> "MatchingSettings":
        """Сумма весов должна быть равна 1."""
        total = self.PRICE_WEIGHT + self.RATING_WEIGHT + self.EXPERIENCE_WEIGHT
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Сумма весов подбора должна быть 1.0, получено {total}")
        return self


class TrackingSettings(BaseModel):
    """Настройки отслеживания поездки."""
    LOCATION_UPDATE_INTERVAL: int = Field(30, gt=0)
    AUTO_COMPLETE_RADIUS_METERS: float = 100.0
    USE_MOCK_LOCATION: bool = True
    MOCK_LATITUDE: float = -1.5177
    MOCK_LONGITUDE: float = 37.2634
    LOCATION_SOURCE_URL: str = "http://localhost:8095/location"
    LOCATION_SOURCE_TIMEOUT: float = 10.0


class ApiSettings(BaseModel):
    """Настройки HTTP API."""
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8080


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    system: SystemSettings = Field(default_factory=SystemSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    domain: DomainSettings = Field(default_factory=DomainSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    redis_ttl: RedisTTLSettings = Field(default_factory=RedisTTLSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    booking: BookingSettings = Field(default_factory=BookingSettings)
    negotiation: NegotiationSettings = Field(default_factory=NegotiationSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    api: ApiSettings = Field(default_factory=ApiSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def from_config_json(cls, path: Path | None = None) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Пароли и адреса переопределяются из переменных окружения.
        """
        data = load_config_json(path)

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "ride_dispatch"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
                RUN_DEV_MODE=data.get("RUN_DEV_MODE", True),
                COMPONENT_MODE=os.getenv("COMPONENT_MODE", data.get("COMPONENT_MODE", "all")),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=os.getenv("LOG_LEVEL", data.get("LOG_LEVEL", "DEBUG")),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
            ),
            domain=DomainSettings(
                DEFAULT_LANGUAGE=data.get("DEFAULT_LANGUAGE", "en"),
                SUPPORTED_LANGUAGES=data.get("SUPPORTED_LANGUAGES", ["en", "sw"]),
                TIMEZONE=data.get("TIMEZONE", "Africa/Nairobi"),
                CURRENCY=data.get("CURRENCY", "KES"),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", data.get("DB_NAME", "ride_dispatch")),
                DB_USER=os.getenv("DB_USER", data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 5),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 20),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 60),
                DB_RETRY_ATTEMPTS=data.get("DB_RETRY_ATTEMPTS", 3),
                DB_RETRY_DELAY=data.get("DB_RETRY_DELAY", 1.0),
                TRANSACTION_MAX_ATTEMPTS=data.get("TRANSACTION_MAX_ATTEMPTS", 5),
                TRANSACTION_RETRY_DELAY=data.get("TRANSACTION_RETRY_DELAY", 0.05),
            ),
            redis=RedisSettings(
                REDIS_HOST=os.getenv("REDIS_HOST", data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", data.get("REDIS_PORT", 6379))),
                REDIS_DB=data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=data.get("REDIS_NAMESPACE", "ride_dispatch"),
                REDIS_MAX_CONNECTIONS=data.get("REDIS_MAX_CONNECTIONS", 50),
            ),
            redis_ttl=RedisTTLSettings(
                PRICING_TTL=data.get("PRICING_TTL", 300),
                DRIVER_TTL=data.get("DRIVER_TTL", 120),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_HOST=os.getenv("RABBITMQ_HOST", data.get("RABBITMQ_HOST", "localhost")),
                RABBITMQ_PORT=int(os.getenv("RABBITMQ_PORT", data.get("RABBITMQ_PORT", 5672))),
                RABBITMQ_USER=os.getenv("RABBITMQ_USER", data.get("RABBITMQ_USER", "guest")),
                RABBITMQ_PASSWORD=os.getenv("RABBITMQ_PASSWORD", data.get("RABBITMQ_PASSWORD", "guest")),
                RABBITMQ_VHOST=data.get("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=data.get("RABBITMQ_EXCHANGE", "ride_dispatch.events"),
                RABBITMQ_PREFETCH_COUNT=data.get("RABBITMQ_PREFETCH_COUNT", 10),
            ),
            booking=BookingSettings(
                BOOKING_TTL_MINUTES=data.get("BOOKING_TTL_MINUTES", 30),
                AVAILABLE_BOOKINGS_LIMIT=data.get("AVAILABLE_BOOKINGS_LIMIT", 100),
                HISTORY_LIMIT=data.get("HISTORY_LIMIT", 50),
                EXPIRY_REAPER_ENABLED=data.get("EXPIRY_REAPER_ENABLED", True),
                EXPIRY_REAPER_INTERVAL=data.get("EXPIRY_REAPER_INTERVAL", 60),
            ),
            negotiation=NegotiationSettings(
                NEGOTIATION_TTL_MINUTES=data.get("NEGOTIATION_TTL_MINUTES", 15),
            ),
            matching=MatchingSettings(
                PRICE_WEIGHT=data.get("PRICE_WEIGHT", 0.4),
                RATING_WEIGHT=data.get("RATING_WEIGHT", 0.4),
                EXPERIENCE_WEIGHT=data.get("EXPERIENCE_WEIGHT", 0.2),
                NEARBY_PENALTY=data.get("NEARBY_PENALTY", 0.9),
                EXPERIENCE_CAP=data.get("EXPERIENCE_CAP", 100),
                DEFAULT_DRIVER_RATING=data.get("DEFAULT_DRIVER_RATING", 4.5),
            ),
            tracking=TrackingSettings(
                LOCATION_UPDATE_INTERVAL=data.get("LOCATION_UPDATE_INTERVAL", 30),
                AUTO_COMPLETE_RADIUS_METERS=data.get("AUTO_COMPLETE_RADIUS_METERS", 100.0),
                USE_MOCK_LOCATION=os.getenv(
                    "USE_MOCK_LOCATION", str(data.get("USE_MOCK_LOCATION", True))
                ).lower() in ("1", "true", "yes"),
                MOCK_LATITUDE=data.get("MOCK_LATITUDE", -1.5177),
                MOCK_LONGITUDE=data.get("MOCK_LONGITUDE", 37.2634),
                LOCATION_SOURCE_URL=os.getenv(
                    "LOCATION_SOURCE_URL", data.get("LOCATION_SOURCE_URL", "http://localhost:8095/location")
                ),
                LOCATION_SOURCE_TIMEOUT=data.get("LOCATION_SOURCE_TIMEOUT", 10.0),
            ),
            api=ApiSettings(
                API_HOST=os.getenv("API_HOST", data.get("API_HOST", "0.0.0.0")),
                API_PORT=int(os.getenv("API_PORT", data.get("API_PORT", 8080))),
            ),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Перед чтением конфигурации подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
