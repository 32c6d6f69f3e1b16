# carwash/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины: config/config.json.
Секретные данные и адреса сервисов переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации (можно переопределить CARWASH_CONFIG)."""
    override = os.getenv("CARWASH_CONFIG")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json() -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = get_config_path()
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
    PROJECT_NAME: str = "carwash"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"


class DeploymentSettings(BaseModel):
    """Настройки развертывания API."""
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_PREFIX: str = "/api/v1"
    CORS_ORIGINS: list[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "carwash"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 5
    DB_MAX_POOL_SIZE: int = 20
    DB_COMMAND_TIMEOUT: int = 60

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

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
    REDIS_NAMESPACE: str = "carwash"
    REDIS_MAX_CONNECTIONS: int = 50

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class RedisTTLSettings(BaseModel):
    """Настройки TTL кэша."""
    BOOKING_TTL: int = 3600


class RabbitMQSettings(BaseModel):
    """Настройки RabbitMQ."""
    RABBITMQ_HOST: str = "localhost"
    RABBITMQ_PORT: int = 5672
    RABBITMQ_USER: str = "guest"
    RABBITMQ_PASSWORD: str = "guest"
    RABBITMQ_VHOST: str = "/"
    RABBITMQ_EXCHANGE: str = "carwash.events"
    RABBITMQ_PREFETCH_COUNT: int = 10

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к RabbitMQ."""
        return (
            f"amqp://{self.RABBITMQ_USER}:{self.RABBITMQ_PASSWORD}"
            f"@{self.RABBITMQ_HOST}:{self.RABBITMQ_PORT}{self.RABBITMQ_VHOST}"
        )


class AuthSettings(BaseModel):
    """Настройки проверки токенов доступа."""
    AUTH_TOKEN_SECRET: str = ""
    AUTH_TOKEN_TTL: int = 30 * 24 * 3600

    @field_validator("AUTH_TOKEN_SECRET", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает секрет из переменных окружения."""
        if not v:
            return os.getenv("AUTH_TOKEN_SECRET", "")
        return v


class BookingSettings(BaseModel):
    """Настройки бронирований."""
    BOOKING_ID_PREFIX: str = "MWG"
    BOOKING_ID_PAD: int = 5
    CANCELLATION_GRACE_MINUTES: int = 10
    TIMEZONE: str = "Asia/Kolkata"
    DEFAULT_SERVICE_NAME: str = "Car Wash"


class DispatchSettings(BaseModel):
    """Настройки диспетчеризации заказов партнёрам."""
    OFFER_TIMEOUT_SECONDS: float = Field(60.0, gt=0)
    REQUEUE_ON_PARTNER_ONLINE: bool = False
    PUSH_OFFERED_PARTNERS: bool = True


class PaymentSettings(BaseModel):
    """Настройки платёжного шлюза."""
    RAZORPAY_KEY_ID: str = ""
    RAZORPAY_KEY_SECRET: str = ""
    CURRENCY: str = "INR"


class PushSettings(BaseModel):
    """Настройки push-уведомлений (Expo)."""
    PUSH_ENABLED: bool = True
    EXPO_PUSH_URL: str = "https://exp.host/--/api/v2/push/send"
    PUSH_CHUNK_SIZE: int = 100
    PUSH_TIMEOUT_SECONDS: float = 10.0


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    redis_ttl: RedisTTLSettings = Field(default_factory=RedisTTLSettings)
    rabbitmq: RabbitMQSettings = Field(default_factory=RabbitMQSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    bookings: BookingSettings = Field(default_factory=BookingSettings)
    dispatch: DispatchSettings = Field(default_factory=DispatchSettings)
    payments: PaymentSettings = Field(default_factory=PaymentSettings)
    push: PushSettings = Field(default_factory=PushSettings)

    @classmethod
    def from_config_json(cls) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты и адреса переопределяются из переменных окружения.
        """
        data = load_config_json()

        return cls(
            system=SystemSettings(
                PROJECT_NAME=data.get("PROJECT_NAME", "carwash"),
                VERSION=data.get("VERSION", "1.0.0"),
                DEBUG=data.get("DEBUG", True),
                ENVIRONMENT=os.getenv("ENVIRONMENT", data.get("ENVIRONMENT", "development")),
            ),
            deployment=DeploymentSettings(
                API_HOST=os.getenv("API_HOST", data.get("API_HOST", "0.0.0.0")),
                API_PORT=int(os.getenv("API_PORT", data.get("API_PORT", 8000))),
                API_PREFIX=data.get("API_PREFIX", "/api/v1"),
                CORS_ORIGINS=data.get("CORS_ORIGINS", ["*"]),
            ),
            logging=LoggingSettings(
                LOG_LEVEL=os.getenv("LOG_LEVEL", data.get("LOG_LEVEL", "DEBUG")),
                LOG_TO_FILE=data.get("LOG_TO_FILE", False),
                LOG_FILE_PATH=data.get("LOG_FILE_PATH", "logs/app.log"),
                LOG_FORMAT=data.get("LOG_FORMAT", "colored"),
                LOG_MAX_BYTES=data.get("LOG_MAX_BYTES", 10485760),
            ),
            database=DatabaseSettings(
                DB_HOST=os.getenv("DB_HOST", data.get("DB_HOST", "localhost")),
                DB_PORT=int(os.getenv("DB_PORT", data.get("DB_PORT", 5432))),
                DB_NAME=os.getenv("DB_NAME", data.get("DB_NAME", "carwash")),
                DB_USER=os.getenv("DB_USER", data.get("DB_USER", "postgres")),
                DB_PASSWORD=os.getenv("DB_PASSWORD", data.get("DB_PASSWORD", "")),
                DB_MIN_POOL_SIZE=data.get("DB_MIN_POOL_SIZE", 5),
                DB_MAX_POOL_SIZE=data.get("DB_MAX_POOL_SIZE", 20),
                DB_COMMAND_TIMEOUT=data.get("DB_COMMAND_TIMEOUT", 60),
            ),
            redis=RedisSettings(
                REDIS_HOST=os.getenv("REDIS_HOST", data.get("REDIS_HOST", "localhost")),
                REDIS_PORT=int(os.getenv("REDIS_PORT", data.get("REDIS_PORT", 6379))),
                REDIS_DB=data.get("REDIS_DB", 0),
                REDIS_PASSWORD=os.getenv("REDIS_PASSWORD", data.get("REDIS_PASSWORD", "")),
                REDIS_NAMESPACE=data.get("REDIS_NAMESPACE", "carwash"),
                REDIS_MAX_CONNECTIONS=data.get("REDIS_MAX_CONNECTIONS", 50),
            ),
            redis_ttl=RedisTTLSettings(
                BOOKING_TTL=data.get("BOOKING_TTL", 3600),
            ),
            rabbitmq=RabbitMQSettings(
                RABBITMQ_HOST=os.getenv("RABBITMQ_HOST", data.get("RABBITMQ_HOST", "localhost")),
                RABBITMQ_PORT=int(os.getenv("RABBITMQ_PORT", data.get("RABBITMQ_PORT", 5672))),
                RABBITMQ_USER=os.getenv("RABBITMQ_USER", data.get("RABBITMQ_USER", "guest")),
                RABBITMQ_PASSWORD=os.getenv("RABBITMQ_PASSWORD", data.get("RABBITMQ_PASSWORD", "guest")),
                RABBITMQ_VHOST=data.get("RABBITMQ_VHOST", "/"),
                RABBITMQ_EXCHANGE=data.get("RABBITMQ_EXCHANGE", "carwash.events"),
                RABBITMQ_PREFETCH_COUNT=data.get("RABBITMQ_PREFETCH_COUNT", 10),
            ),
            auth=AuthSettings(
                AUTH_TOKEN_SECRET=os.getenv("AUTH_TOKEN_SECRET", data.get("AUTH_TOKEN_SECRET", "")),
                AUTH_TOKEN_TTL=data.get("AUTH_TOKEN_TTL", 30 * 24 * 3600),
            ),
            bookings=BookingSettings(
                BOOKING_ID_PREFIX=data.get("BOOKING_ID_PREFIX", "MWG"),
                BOOKING_ID_PAD=data.get("BOOKING_ID_PAD", 5),
                CANCELLATION_GRACE_MINUTES=data.get("CANCELLATION_GRACE_MINUTES", 10),
                TIMEZONE=data.get("TIMEZONE", "Asia/Kolkata"),
                DEFAULT_SERVICE_NAME=data.get("DEFAULT_SERVICE_NAME", "Car Wash"),
            ),
            dispatch=DispatchSettings(
                OFFER_TIMEOUT_SECONDS=float(
                    os.getenv("OFFER_TIMEOUT_SECONDS", data.get("OFFER_TIMEOUT_SECONDS", 60))
                ),
                REQUEUE_ON_PARTNER_ONLINE=data.get("REQUEUE_ON_PARTNER_ONLINE", False),
                PUSH_OFFERED_PARTNERS=data.get("PUSH_OFFERED_PARTNERS", True),
            ),
            payments=PaymentSettings(
                RAZORPAY_KEY_ID=os.getenv("RAZORPAY_KEY_ID", data.get("RAZORPAY_KEY_ID", "")),
                RAZORPAY_KEY_SECRET=os.getenv("RAZORPAY_KEY_SECRET", data.get("RAZORPAY_KEY_SECRET", "")),
                CURRENCY=data.get("CURRENCY", "INR"),
            ),
            push=PushSettings(
                PUSH_ENABLED=data.get("PUSH_ENABLED", True),
                EXPO_PUSH_URL=data.get("EXPO_PUSH_URL", "https://exp.host/--/api/v2/push/send"),
                PUSH_CHUNK_SIZE=data.get("PUSH_CHUNK_SIZE", 100),
                PUSH_TIMEOUT_SECONDS=data.get("PUSH_TIMEOUT_SECONDS", 10.0),
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
