# tests/services/test_gateway_ws.py
"""
Тесты realtime WebSocket endpoints: выход партнёра онлайн, рассылка
предложения, принятие заказа и подписка клиента на бронирование.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from carwash.common.constants import ActorRole, BookingStatus
from carwash.core.auth.tokens import TokenVerifier
from carwash.services.gateway.app import create_app
from carwash.services.gateway.connection_manager import ConnectionManager, ConnectionManagerNotifier
from tests.fakes import ADDRESS, Stack, make_booking, make_container, make_stack

_tokens = TokenVerifier("test_auth_secret")


def token(user_id: str, role: ActorRole) -> str:
    return _tokens.issue(user_id, role)


def message(event: str, **data) -> dict:
    return {"event": event, "data": data}


@pytest.fixture
def gateway(mock_event_bus: AsyncMock) -> Iterator[tuple[TestClient, Stack]]:
    manager = ConnectionManager()
    stack = make_stack(event_bus=mock_event_bus, notifier=ConnectionManagerNotifier(manager))
    with TestClient(create_app(make_container(stack, manager))) as client:
        yield client, stack


class TestPartnerSocket:
    """Тесты для /ws/partner."""

    def test_go_online(self, gateway: tuple[TestClient, Stack]) -> None:
        client, stack = gateway

        with client.websocket_connect(f"/ws/partner?token={token('partner-c', ActorRole.PARTNER)}") as ws:
            ws.send_json(message("goOnline", pincodes=["400002"], location={"latitude": 19.0, "longitude": 72.8}))
            ack = ws.receive_json()

        assert ack["event"] == "onlineAck"
        assert ack["data"] == {"partnerId": "partner-c", "pincodes": ["400002"], "offerTimeoutSeconds": 60.0}

    def test_go_online_outside_area(self, gateway: tuple[TestClient, Stack]) -> None:
        client, stack = gateway

        with client.websocket_connect(f"/ws/partner?token={token('partner-a', ActorRole.PARTNER)}") as ws:
            ws.send_json(message("goOnline", pincodes=["110001"]))
            reply = ws.receive_json()

        assert reply["event"] == "error"
        assert reply["data"]["code"] == "validation_error"

    def test_go_offline(self, gateway: tuple[TestClient, Stack]) -> None:
        client, stack = gateway

        with client.websocket_connect(f"/ws/partner?token={token('partner-a', ActorRole.PARTNER)}") as ws:
            ws.send_json(message("goOnline"))
            ws.receive_json()
            ws.send_json(message("goOffline"))
            # Следующий ответ приходит только после обработки goOffline
            ws.send_json(message("ping"))
            reply = ws.receive_json()

            assert reply["data"]["message"] == "Unknown event 'ping'"
            assert len(stack.registry) == 0

    def test_invalid_json(self, gateway: tuple[TestClient, Stack]) -> None:
        client, _ = gateway

        with client.websocket_connect(f"/ws/partner?token={token('partner-a', ActorRole.PARTNER)}") as ws:
            ws.send_text("not json")
            reply = ws.receive_json()

        assert reply == {
            "event": "error",
            "data": {"code": "validation_error", "message": "Message must be valid JSON"},
        }

    @pytest.mark.parametrize(
        "query",
        [
            "",
            "?token=forged.token",
            f"?token={token('cust-1', ActorRole.CUSTOMER)}",
            f"?token={token('partner-x', ActorRole.PARTNER)}",
        ],
    )
    def test_rejected(self, gateway: tuple[TestClient, Stack], query: str) -> None:
        client, _ = gateway

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(f"/ws/partner{query}") as ws:
                ws.receive_json()

        assert exc_info.value.code == 1008

    def test_offer_and_accept(self, gateway: tuple[TestClient, Stack]) -> None:
        client, stack = gateway
        customer_token = token("cust-1", ActorRole.CUSTOMER)

        with client.websocket_connect(f"/ws/partner?token={token('partner-a', ActorRole.PARTNER)}") as partner_ws:
            partner_ws.send_json(message("goOnline"))
            assert partner_ws.receive_json()["event"] == "onlineAck"

            response = client.post(
                "/api/v1/bookings",
                json={
                    "service_ids": ["svc-wash"],
                    "vehicle_id": "veh-1",
                    "scheduled_date": (date.today() + timedelta(days=1)).isoformat(),
                    "scheduled_time": "10:00",
                    "address": ADDRESS,
                    "latitude": 18.94,
                    "longitude": 72.82,
                },
                headers={"Authorization": f"Bearer {customer_token}"},
            )
            booking_id = response.json()["booking_id"]

            offer = partner_ws.receive_json()
            assert offer["event"] == "newBooking"
            assert offer["data"]["bookingId"] == booking_id
            assert "otp" not in offer["data"]

            with client.websocket_connect(f"/ws/customer?token={customer_token}") as customer_ws:
                customer_ws.send_json(message("joinBooking", bookingId=booking_id))
                assert customer_ws.receive_json()["data"]["status"] == "pending"

                partner_ws.send_json(message("acceptBooking", bookingId=booking_id))
                update = partner_ws.receive_json()

                assert update["event"] == "bookingStatusUpdate"
                assert update["data"]["status"] == "confirmed"

                received = [customer_ws.receive_json() for _ in range(3)]
                assert [frame["event"] for frame in received] == [
                    "bookingStatusUpdate",
                    "bookingConfirmed",
                    "bookingAccepted",
                ]
                assert received[2]["data"]["partnerId"] == "partner-a"

                # Победитель подписан на канал бронирования
                partner_ws.send_json(message("updateBookingStatus", bookingId=booking_id, status="enroute"))
                assert partner_ws.receive_json()["data"]["status"] == "enroute"
                assert customer_ws.receive_json()["data"]["status"] == "enroute"

        booking = stack.bookings.items[booking_id]
        assert booking.status == BookingStatus.ENROUTE
        assert booking.partner_id == "partner-a"

    def test_update_location(self, gateway: tuple[TestClient, Stack]) -> None:
        client, stack = gateway
        stack.seed(make_booking(status=BookingStatus.ENROUTE, partner_id="partner-a"))

        with client.websocket_connect(f"/ws/customer?token={token('cust-1', ActorRole.CUSTOMER)}") as customer_ws:
            customer_ws.send_json(message("joinBooking", bookingId="MWG00001"))
            customer_ws.receive_json()

            with client.websocket_connect(f"/ws/partner?token={token('partner-a', ActorRole.PARTNER)}") as ws:
                ws.send_json(message("updateLocation", bookingId="MWG00001", latitude=19.1, longitude=72.9))
                tracked = customer_ws.receive_json()

        assert tracked["event"] == "liveTracking"
        assert stack.bookings.items["MWG00001"].partner_live_location.latitude == 19.1


class TestCustomerSocket:
    """Тесты для /ws/customer."""

    def test_join_foreign_booking(self, gateway: tuple[TestClient, Stack]) -> None:
        client, stack = gateway
        stack.seed(make_booking())

        with client.websocket_connect(f"/ws/customer?token={token('cust-2', ActorRole.CUSTOMER)}") as ws:
            ws.send_json(message("joinBooking", bookingId="MWG00001"))
            reply = ws.receive_json()

        assert reply["event"] == "error"
        assert reply["data"]["code"] == "unauthorized"

    def test_join_requires_booking_id(self, gateway: tuple[TestClient, Stack]) -> None:
        client, _ = gateway

        with client.websocket_connect(f"/ws/customer?token={token('cust-1', ActorRole.CUSTOMER)}") as ws:
            ws.send_json(message("joinBooking"))
            reply = ws.receive_json()

        assert reply["data"] == {"code": "validation_error", "message": "'bookingId' is required"}

    def test_partner_token_rejected(self, gateway: tuple[TestClient, Stack]) -> None:
        client, _ = gateway

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/ws/customer?token={token('partner-a', ActorRole.PARTNER)}") as ws:
                ws.receive_json()

    def test_cancel_reaches_subscriber(self, gateway: tuple[TestClient, Stack]) -> None:
        client, stack = gateway
        stack.seed(make_booking())
        customer_token = token("cust-1", ActorRole.CUSTOMER)

        with client.websocket_connect(f"/ws/customer?token={customer_token}") as ws:
            ws.send_json(message("joinBooking", bookingId="MWG00001"))
            ws.receive_json()

            client.post("/api/v1/bookings/MWG00001/cancel", headers={"Authorization": f"Bearer {customer_token}"})
            update = ws.receive_json()

        assert update["event"] == "bookingStatusUpdate"
        assert update["data"]["status"] == "cancelled"
