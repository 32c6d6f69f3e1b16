# carwash/core/dispatch/offers.py
"""
Хранилище активных предложений заказа партнёрам.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol


@dataclass
class BookingOffer:
    """Одна активная рассылка бронирования партнёрам."""
    booking_id: str
    offered_to: set[str]
    expires_at: datetime
    accepted: bool = False
    accepted_by: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Предложение закрыто (принято, истекло или отозвано)
    closed: bool = False

    # Сериализует accept и истечение по одному предложению
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)
    timer: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def is_open(self) -> bool:
        return not self.accepted and not self.closed


class OfferStore(Protocol):
    """Хранилище предложений по booking_id."""

    async def add(self, offer: BookingOffer) -> None:
        ...

    async def get(self, booking_id: str) -> Optional[BookingOffer]:
        ...

    async def remove(self, booking_id: str) -> Optional[BookingOffer]:
        ...

    async def all(self) -> list[BookingOffer]:
        ...


class InMemoryOfferStore:
    """Хранилище предложений в памяти процесса."""

    def __init__(self) -> None:
        self._offers: dict[str, BookingOffer] = {}

    def __len__(self) -> int:
        return len(self._offers)

    async def add(self, offer: BookingOffer) -> None:
        self._offers[offer.booking_id] = offer

    async def get(self, booking_id: str) -> Optional[BookingOffer]:
        return self._offers.get(booking_id)

    async def remove(self, booking_id: str) -> Optional[BookingOffer]:
        return self._offers.pop(booking_id, None)

    async def all(self) -> list[BookingOffer]:
        return list(self._offers.values())
