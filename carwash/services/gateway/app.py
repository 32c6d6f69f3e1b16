# carwash/services/gateway/app.py
"""
FastAPI приложение маркетплейса автомоек.

HTTP endpoints:
- /api/v1/bookings/...: бронирования и статусы
- /api/v1/bookings/{id}/payment/...: учёт оплаты
- /api/v1/profile, /api/v1/coupons/apply

WebSocket endpoints:
- /ws/partner: партнёры (предложения, принятие, статусы, локация)
- /ws/customer: клиенты (подписка на своё бронирование)

Служебные:
- GET /health: проверка здоровья
- GET /stats: статистика соединений
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from carwash.common.constants import TypeMsg
from carwash.common.exceptions import (
    CarWashError,
    ConflictError,
    ExternalServiceError,
    InvalidTransitionError,
    NotFoundError,
    OverpaymentError,
    UnauthorizedError,
    ValidationError,
)
from carwash.common.logger import log_error, log_info, log_warning, setup_logging
from carwash.config import settings
from carwash.infra.database import close_db, get_db, init_db
from carwash.infra.event_bus import close_event_bus, get_event_bus, init_event_bus
from carwash.infra.redis_client import close_redis, get_redis, init_redis
from carwash.services.gateway.dependencies import Container, build_container
from carwash.services.gateway.routes import router
from carwash.services.gateway.ws import router as ws_router
from carwash.shared.common import ErrorResponse, HealthStatus


# Порядок важен: подклассы раньше базовых классов
_STATUS_CODES: list[tuple[type[CarWashError], int]] = [
    (ValidationError, 400),
    (NotFoundError, 404),
    (UnauthorizedError, 403),
    (InvalidTransitionError, 409),
    (ConflictError, 409),
    (OverpaymentError, 422),
    (ExternalServiceError, 502),
]


def status_code_for(error: CarWashError) -> int:
    for error_class, code in _STATUS_CODES:
        if isinstance(error, error_class):
            return code
    return 500


# === LIFESPAN ===

async def _startup_infra() -> tuple[Any, Any]:
    """
    PostgreSQL обязателен. Redis и RabbitMQ нет: без них сервис работает
    без кэша и без доменных событий.
    """
    await init_db()

    redis = None
    try:
        await init_redis()
        redis = get_redis()
    except Exception as e:
        await log_warning(f"Redis недоступен, кэш бронирований отключён: {e}")

    event_bus = None
    try:
        await init_event_bus()
        event_bus = get_event_bus()
    except Exception as e:
        await log_warning(f"RabbitMQ недоступен, доменные события не публикуются: {e}")

    return redis, event_bus


def create_app(container: Container | None = None) -> FastAPI:
    """
    Создаёт приложение.

    Args:
        container: Готовый набор сервисов (в тестах). Если передан,
            инфраструктура при старте не поднимается.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        owns_infra = container is None

        if owns_infra:
            redis, event_bus = await _startup_infra()
            app.state.container = build_container(settings, get_db(), redis, event_bus)
        else:
            app.state.container = container

        await log_info(
            f"{settings.system.PROJECT_NAME} {settings.system.VERSION} запущен "
            f"({settings.system.ENVIRONMENT})",
            type_msg=TypeMsg.INFO,
        )

        yield

        await app.state.container.close()
        if owns_infra:
            await close_event_bus()
            await close_redis()
            await close_db()
        await log_info("Сервис остановлен", type_msg=TypeMsg.INFO)

    app = FastAPI(
        title="Car Wash Marketplace",
        description="Бронирование мойки на выезде, рассылка заказов партнёрам и учёт оплаты.",
        version=settings.system.VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.deployment.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(CarWashError)
    async def handle_domain_error(request: Request, exc: CarWashError) -> JSONResponse:
        status_code = status_code_for(exc)
        if status_code >= 500:
            await log_error(f"[HTTP] {request.method} {request.url.path}: {exc.message}")
        else:
            await log_info(
                f"[HTTP] {request.method} {request.url.path} -> {status_code} {exc.code}: {exc.message}",
                type_msg=TypeMsg.DEBUG,
            )
        body = ErrorResponse(error_code=exc.code, message=exc.message, details=exc.details or None)
        return JSONResponse(status_code=status_code, content=body.model_dump())

    # === HEALTH CHECK ===

    @app.get("/health", response_model=HealthStatus, tags=["Health"])
    async def health_check(request: Request) -> HealthStatus:
        """Проверка здоровья сервиса и его зависимостей."""
        dependencies: dict[str, str] = {}
        checks = {
            "postgres": get_db().health_check,
            "redis": get_redis().health_check,
            "rabbitmq": get_event_bus().health_check,
        }
        for name, check in checks.items():
            try:
                dependencies[name] = "healthy" if await check() else "unhealthy"
            except Exception:
                dependencies[name] = "unhealthy"

        if dependencies["postgres"] != "healthy":
            status = "unhealthy"
        elif any(state != "healthy" for state in dependencies.values()):
            status = "degraded"
        else:
            status = "healthy"

        return HealthStatus(
            service=settings.system.PROJECT_NAME,
            status=status,
            version=settings.system.VERSION,
            dependencies=dependencies,
        )

    # === STATS ===

    @app.get("/stats", tags=["Health"])
    async def get_stats(request: Request) -> dict[str, Any]:
        """Статистика realtime-соединений и открытых предложений."""
        container: Container = request.app.state.container
        stats = container.manager.get_stats()
        stats["offers_open"] = len(await container.offers.all())
        return stats

    app.include_router(router, prefix=settings.deployment.API_PREFIX)
    app.include_router(ws_router)
    return app


app = create_app()
