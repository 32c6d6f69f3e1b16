# carwash/shared/common.py
"""
Общие модели для HTTP-слоя.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    """Параметры пагинации списков бронирований (?page=&page_size=)."""

    page: int = Field(default=1, ge=1, description="Номер страницы")
    page_size: int = Field(default=20, ge=1, le=100, description="Размер страницы")

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size

    @property
    def limit(self) -> int:
        return self.page_size


class PageResponse(BaseModel):
    """
    Страница списка. Общее количество не считается: has_more
    выставляется, если страница заполнена целиком.
    """

    items: list[dict[str, Any]]
    page: int
    page_size: int
    has_more: bool = False

    @classmethod
    def create(cls, items: list[dict[str, Any]], pagination: PaginationParams) -> PageResponse:
        return cls(
            items=items,
            page=pagination.page,
            page_size=pagination.page_size,
            has_more=len(items) == pagination.page_size,
        )


class ErrorResponse(BaseModel):
    """Тело ответа при доменной ошибке: {error_code, message, details}."""

    error_code: str
    message: str
    details: dict[str, Any] | None = None


class HealthStatus(BaseModel):
    """Ответ /health. status: healthy, degraded (нет Redis/RabbitMQ) или unhealthy (нет PostgreSQL)."""

    service: str
    status: str = "healthy"
    version: str | None = None
    dependencies: dict[str, str] = Field(default_factory=dict)
