# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("AUTH_TOKEN_SECRET", "test_auth_secret")
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "test_razorpay_secret")

from tests.fakes import Stack, make_stack  # noqa: E402


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


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Мок конфигурации для тестов."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "carwash_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "ENVIRONMENT": "test",
        "API_PREFIX": "/api/v1",
        "LOG_LEVEL": "DEBUG",
        "LOG_TO_FILE": False,
        "LOG_FORMAT": "colored",
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "carwash_test",
        "DB_USER": "postgres",
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_NAMESPACE": "carwash_test",
        "BOOKING_TTL": 60,
        "RABBITMQ_EXCHANGE": "carwash.test",
        "BOOKING_ID_PREFIX": "TST",
        "BOOKING_ID_PAD": 6,
        "CANCELLATION_GRACE_MINUTES": 15,
        "TIMEZONE": "Asia/Kolkata",
        "OFFER_TIMEOUT_SECONDS": 30,
        "REQUEUE_ON_PARTNER_ONLINE": True,
        "PUSH_OFFERED_PARTNERS": False,
        "CURRENCY": "INR",
        "PUSH_ENABLED": False,
        "PUSH_CHUNK_SIZE": 50,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


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

    conn = MagicMock(name="conn")

    @asynccontextmanager
    async def transaction():
        yield conn

    db.transaction = transaction
    db.conn = conn
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
    return redis


@pytest.fixture
def mock_event_bus() -> AsyncMock:
    """Мок шины событий."""
    event_bus = AsyncMock()
    event_bus.publish = AsyncMock(return_value=None)
    event_bus.is_connected = True
    return event_bus


# =============================================================================
# ФИКСТУРЫ ДОМЕНА (IN-MEMORY)
# =============================================================================

@pytest_asyncio.fixture
async def stack(mock_event_bus: AsyncMock) -> AsyncGenerator[Stack, None]:
    """Собранные сервисы поверх in-memory репозиториев."""
    built = make_stack(event_bus=mock_event_bus)
    yield built
    await built.dispatch.close()
