# tests/infra/test_event_bus.py
"""
Тесты для шины событий.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from carwash.infra.event_bus import DomainEvent, EventBus, EventTypes


class TestDomainEvent:
    """Тесты для DomainEvent."""

    def test_defaults(self) -> None:
        event = DomainEvent(event_type=EventTypes.BOOKING_CREATED)

        assert event.event_id
        assert event.timestamp.endswith("Z")
        assert event.payload == {}

    def test_to_json(self) -> None:
        event = DomainEvent(
            event_type=EventTypes.BOOKING_STATUS_CHANGED,
            payload={"booking_id": "MWG00001", "to_status": "confirmed"},
        )

        data = json.loads(event.to_json())

        assert data["event_type"] == "booking.status_changed"
        assert data["payload"]["to_status"] == "confirmed"
        assert data["event_id"] == event.event_id


class TestEventBus:
    """Тесты для EventBus."""

    @pytest.fixture
    def event_bus(self) -> EventBus:
        EventBus._instance = None
        return EventBus()

    def test_singleton(self) -> None:
        EventBus._instance = None
        assert EventBus() is EventBus()

    def test_not_connected_by_default(self, event_bus: EventBus) -> None:
        assert event_bus.is_connected is False

    @pytest.mark.asyncio
    async def test_publish_without_connection_does_not_raise(self, event_bus: EventBus) -> None:
        await event_bus.publish(DomainEvent(event_type=EventTypes.PARTNER_ONLINE))

    @pytest.mark.asyncio
    async def test_publish_uses_event_type_as_routing_key(self, event_bus: EventBus) -> None:
        connection = MagicMock()
        connection.is_closed = False
        exchange = AsyncMock()
        event_bus._connection = connection
        event_bus._exchange = exchange

        event = DomainEvent(event_type=EventTypes.PAYMENT_RECORDED, payload={"booking_id": "MWG00003"})
        await event_bus.publish(event)

        exchange.publish.assert_awaited_once()
        message = exchange.publish.await_args.args[0]
        assert exchange.publish.await_args.kwargs["routing_key"] == "payment.recorded"
        assert json.loads(message.body)["payload"]["booking_id"] == "MWG00003"

    @pytest.mark.asyncio
    async def test_publish_swallows_broker_errors(self, event_bus: EventBus) -> None:
        connection = MagicMock()
        connection.is_closed = False
        exchange = AsyncMock()
        exchange.publish.side_effect = RuntimeError("channel closed")
        event_bus._connection = connection
        event_bus._exchange = exchange

        await event_bus.publish(DomainEvent(event_type=EventTypes.BOOKING_CREATED))

        exchange.publish.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_health_check(self, event_bus: EventBus) -> None:
        assert await event_bus.health_check() is False
