# tests/core/test_dispatch_registry.py
"""
Тесты реестра онлайн-партнёров и хранилища предложений.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from carwash.core.dispatch.offers import BookingOffer, InMemoryOfferStore
from carwash.core.dispatch.registry import GeoPoint, InMemoryPartnerRegistry
from tests.fakes import FakeConnection


class TestInMemoryPartnerRegistry:
    """Тесты для InMemoryPartnerRegistry."""

    @pytest.fixture
    def registry(self) -> InMemoryPartnerRegistry:
        return InMemoryPartnerRegistry()

    @pytest.mark.asyncio
    async def test_find_eligible_by_pincode(self, registry: InMemoryPartnerRegistry) -> None:
        await registry.mark_online("partner-b", ["400001"], FakeConnection())
        await registry.mark_online("partner-a", ["400001", "400002"], FakeConnection())
        await registry.mark_online("partner-d", ["560001"], FakeConnection())

        eligible = await registry.find_eligible("400001")

        assert [p.partner_id for p in eligible] == ["partner-a", "partner-b"]
        assert [p.partner_id for p in await registry.find_eligible("400002")] == ["partner-a"]
        assert await registry.find_eligible("110001") == []

    @pytest.mark.asyncio
    async def test_mark_online_is_idempotent(self, registry: InMemoryPartnerRegistry) -> None:
        await registry.mark_online("partner-a", ["400001"], FakeConnection())
        presence = await registry.mark_online(
            "partner-a", ["400002"], FakeConnection(), location=GeoPoint(19.0, 72.8), name="Asha"
        )

        assert len(registry) == 1
        assert await registry.find_eligible("400001") == []
        assert (await registry.get("partner-a")) is presence
        assert presence.serves("400002")
        assert presence.location.latitude == 19.0

    @pytest.mark.asyncio
    async def test_mark_offline(self, registry: InMemoryPartnerRegistry) -> None:
        await registry.mark_online("partner-a", ["400001"], FakeConnection())

        assert await registry.mark_offline("partner-a") is True
        assert await registry.mark_offline("partner-a") is False
        assert await registry.find_eligible("400001") == []
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_stale_connection_does_not_remove_new_one(self, registry: InMemoryPartnerRegistry) -> None:
        """Закрытие старого сокета после переподключения не снимает партнёра."""
        old, new = FakeConnection(), FakeConnection()
        await registry.mark_online("partner-a", ["400001"], old)
        await registry.mark_online("partner-a", ["400001"], new)

        assert await registry.mark_offline("partner-a", old) is False
        assert (await registry.get("partner-a")).connection is new

        assert await registry.mark_offline("partner-a", new) is True


class TestInMemoryOfferStore:
    @pytest.mark.asyncio
    async def test_add_get_remove(self) -> None:
        store = InMemoryOfferStore()
        offer = BookingOffer(booking_id="MWG00001", offered_to={"partner-a"}, expires_at=datetime.now(timezone.utc))

        await store.add(offer)

        assert await store.get("MWG00001") is offer
        assert await store.all() == [offer]
        assert await store.remove("MWG00001") is offer
        assert await store.remove("MWG00001") is None
        assert len(store) == 0

    def test_offer_is_open(self) -> None:
        offer = BookingOffer(booking_id="MWG00001", offered_to=set(), expires_at=datetime.now(timezone.utc))

        assert offer.is_open
        offer.closed = True
        assert not offer.is_open
