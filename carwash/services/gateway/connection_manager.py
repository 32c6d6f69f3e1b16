# carwash/services/gateway/connection_manager.py
"""
Менеджер WebSocket соединений.
Управляет подписками и рассылкой сообщений.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket

from carwash.common.logger import log_warning
from carwash.core.notifications.realtime import booking_topic, partner_topic


def connection_key(role: str, user_id: str) -> str:
    """ID клиентов и партнёров живут в разных таблицах, поэтому ключ включает роль."""
    return f"{role}:{user_id}"


def frame(event: str, data: dict[str, Any]) -> dict[str, Any]:
    """Формат сообщения realtime-канала."""
    return {"event": event, "data": data}


@dataclass
class ConnectionInfo:
    """Информация о соединении."""
    websocket: WebSocket
    user_id: str
    role: str  # customer, partner, ...
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    subscriptions: set[str] = field(default_factory=set)  # booking:{id}, partner:{id}


class ConnectionManager:
    """
    Менеджер WebSocket соединений.

    Поддерживает:
    - Подключение/отключение клиентов
    - Подписка на топики (booking:{id}, partner:{id})
    - Рассылку по топикам
    """

    def __init__(self) -> None:
        # connection key -> ConnectionInfo
        self._connections: dict[str, ConnectionInfo] = {}

        # topic -> set of connection keys
        self._subscriptions: dict[str, set[str]] = {}

        # Для статистики
        self._total_connections: int = 0
        self._total_messages_sent: int = 0

    @property
    def active_connections(self) -> int:
        """Количество активных соединений."""
        return len(self._connections)

    async def connect(self, websocket: WebSocket, user_id: str, role: str) -> str:
        """
        Подключить клиента.

        Если у пользователя уже есть соединение, старое закрывается.

        Returns:
            Ключ соединения
        """
        key = connection_key(role, user_id)
        if key in self._connections:
            old_conn = self._connections.pop(key)
            for topic in list(old_conn.subscriptions):
                self._unsubscribe_from_topic(key, topic)
            await self._close_connection(old_conn)

        await websocket.accept()

        self._connections[key] = ConnectionInfo(websocket=websocket, user_id=user_id, role=role)
        self._total_connections += 1
        return key

    async def disconnect(self, key: str, websocket: WebSocket | None = None) -> None:
        """
        Отключить клиента.

        Если передан websocket, запись удаляется только когда она
        принадлежит этому сокету (а не более новому подключению).
        """
        conn = self._connections.get(key)
        if conn is None:
            return
        if websocket is not None and conn.websocket is not websocket:
            return

        for topic in list(conn.subscriptions):
            self._unsubscribe_from_topic(key, topic)
        del self._connections[key]

    async def subscribe(self, key: str, topic: str) -> None:
        """Подписать соединение на топик."""
        if key not in self._connections:
            return

        self._connections[key].subscriptions.add(topic)
        self._subscriptions.setdefault(topic, set()).add(key)

    async def unsubscribe(self, key: str, topic: str) -> None:
        """Отписать соединение от топика."""
        self._unsubscribe_from_topic(key, topic)

    def _unsubscribe_from_topic(self, key: str, topic: str) -> None:
        if key in self._connections:
            self._connections[key].subscriptions.discard(topic)

        if topic in self._subscriptions:
            self._subscriptions[topic].discard(key)
            if not self._subscriptions[topic]:
                del self._subscriptions[topic]

    async def broadcast_to_topic(self, topic: str, message: dict[str, Any]) -> int:
        """
        Отправить сообщение всем подписчикам топика.

        Returns:
            Количество успешно отправленных сообщений
        """
        if topic not in self._subscriptions:
            return 0

        sent_count = 0
        failed: list[ConnectionInfo] = []

        for key in list(self._subscriptions[topic]):
            conn = self._connections.get(key)
            if conn is None:
                continue
            try:
                await conn.websocket.send_json(message)
                sent_count += 1
                self._total_messages_sent += 1
            except Exception as e:
                await log_warning(f"[WS] Не удалось отправить сообщение {key}: {e}")
                failed.append(conn)

        for conn in failed:
            await self.disconnect(connection_key(conn.role, conn.user_id), conn.websocket)

        return sent_count

    def get_subscriptions(self, key: str) -> set[str]:
        """Получить все подписки соединения."""
        if key in self._connections:
            return self._connections[key].subscriptions.copy()
        return set()

    def get_topic_subscribers(self, topic: str) -> set[str]:
        """Получить всех подписчиков топика."""
        return self._subscriptions.get(topic, set()).copy()

    def get_stats(self) -> dict[str, Any]:
        """Получить статистику."""
        counts: dict[str, int] = {}
        for conn in self._connections.values():
            counts[conn.role] = counts.get(conn.role, 0) + 1
        return {
            "active_connections": len(self._connections),
            "total_topics": len(self._subscriptions),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
            "connections_by_role": counts,
        }

    async def _close_connection(self, conn: ConnectionInfo) -> None:
        """Закрыть соединение."""
        try:
            await conn.websocket.close()
        except RuntimeError:
            # Сокет уже закрыт
            pass


class ConnectionManagerNotifier:
    """RealtimeNotifier поверх ConnectionManager."""

    def __init__(self, manager: ConnectionManager) -> None:
        self._manager = manager

    async def to_booking(self, booking_id: str, event: str, data: dict[str, Any]) -> int:
        return await self._manager.broadcast_to_topic(booking_topic(booking_id), frame(event, data))

    async def to_partner(self, partner_id: str, event: str, data: dict[str, Any]) -> bool:
        sent = await self._manager.broadcast_to_topic(partner_topic(partner_id), frame(event, data))
        return sent > 0
