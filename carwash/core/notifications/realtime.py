# carwash/core/notifications/realtime.py
"""
Интерфейс realtime-уведомлений.

Компоненты получают notifier явно через конструктор; реализация поверх
WebSocket живёт в gateway, для тестов и фоновых задач есть NullNotifier.
"""

from __future__ import annotations

from typing import Any, Protocol


def booking_topic(booking_id: str) -> str:
    return f"booking:{booking_id}"


def partner_topic(partner_id: str) -> str:
    return f"partner:{partner_id}"


class RealtimeNotifier(Protocol):
    """Отправка событий в realtime-каналы."""

    async def to_booking(self, booking_id: str, event: str, data: dict[str, Any]) -> int:
        """Всем подписчикам канала бронирования. Возвращает число доставок."""
        ...

    async def to_partner(self, partner_id: str, event: str, data: dict[str, Any]) -> bool:
        """Конкретному партнёру."""
        ...


class NullNotifier:
    """Ничего не отправляет."""

    async def to_booking(self, booking_id: str, event: str, data: dict[str, Any]) -> int:
        return 0

    async def to_partner(self, partner_id: str, event: str, data: dict[str, Any]) -> bool:
        return False
