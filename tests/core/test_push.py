# tests/core/test_push.py
"""
Тесты для отправителя push-уведомлений.
"""

from __future__ import annotations

import json
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio

from carwash.core.notifications.push import PushNotificationSender


class ExpoStub:
    """Имитация Expo Push API поверх httpx.MockTransport."""

    def __init__(self, status_code: int = 200, ticket_status: str = "ok") -> None:
        self.status_code = status_code
        self.ticket_status = ticket_status
        self.requests: list[list[dict]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        messages = json.loads(request.content)
        self.requests.append(messages)
        tickets = [{"status": self.ticket_status, "id": f"ticket-{i}"} for i, _ in enumerate(messages)]
        return httpx.Response(self.status_code, json={"data": tickets})


def _sender(stub, **kwargs) -> PushNotificationSender:
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return PushNotificationSender("https://push.test/send", client=client, **kwargs)


class TestPushNotificationSender:
    """Тесты для PushNotificationSender."""

    @pytest.fixture
    def stub(self) -> ExpoStub:
        return ExpoStub()

    @pytest_asyncio.fixture
    async def sender(self, stub: ExpoStub) -> AsyncGenerator[PushNotificationSender, None]:
        sender = _sender(stub, chunk_size=2)
        yield sender
        await sender.close()

    @pytest.mark.asyncio
    async def test_single_token(self, sender: PushNotificationSender, stub: ExpoStub) -> None:
        accepted = await sender.send("ExponentPushToken[abc]", "Booking Confirmed", "On the way", {"bookingId": "MWG00001"})

        assert accepted == 1
        assert stub.requests == [[{
            "to": "ExponentPushToken[abc]",
            "sound": "default",
            "title": "Booking Confirmed",
            "body": "On the way",
            "data": {"bookingId": "MWG00001"},
        }]]

    @pytest.mark.asyncio
    async def test_invalid_tokens_filtered(self, sender: PushNotificationSender, stub: ExpoStub) -> None:
        accepted = await sender.send(
            ["ExponentPushToken[a]", "garbage", "", "ExpoPushToken[b]"], "New Booking", "Wash"
        )

        assert accepted == 2
        assert [m["to"] for m in stub.requests[0]] == ["ExponentPushToken[a]", "ExpoPushToken[b]"]

    @pytest.mark.asyncio
    async def test_chunking(self, sender: PushNotificationSender, stub: ExpoStub) -> None:
        tokens = [f"ExponentPushToken[{i}]" for i in range(5)]

        assert await sender.send(tokens, "New Booking", "Wash") == 5
        assert [len(r) for r in stub.requests] == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_no_valid_tokens(self, sender: PushNotificationSender, stub: ExpoStub) -> None:
        assert await sender.send(None, "t", "b") == 0
        assert await sender.send(["nope"], "t", "b") == 0
        assert stub.requests == []

    @pytest.mark.asyncio
    async def test_disabled(self, stub: ExpoStub) -> None:
        sender = _sender(stub, enabled=False)

        assert await sender.send("ExponentPushToken[a]", "t", "b") == 0
        assert stub.requests == []
        await sender.close()

    @pytest.mark.asyncio
    async def test_provider_error_swallowed(self) -> None:
        sender = _sender(ExpoStub(status_code=500))

        assert await sender.send("ExponentPushToken[a]", "t", "b") == 0
        await sender.close()

    @pytest.mark.asyncio
    async def test_rejected_tickets_not_counted(self) -> None:
        sender = _sender(ExpoStub(ticket_status="error"))

        assert await sender.send(["ExponentPushToken[a]", "ExponentPushToken[b]"], "t", "b") == 0
        await sender.close()

    @pytest.mark.asyncio
    async def test_network_error_swallowed(self) -> None:
        def broken(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        sender = _sender(broken)

        assert await sender.send("ExponentPushToken[a]", "t", "b") == 0
        await sender.close()
