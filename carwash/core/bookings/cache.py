# carwash/core/bookings/cache.py
"""
Кэш бронирований в Redis (read-through, инвалидация при каждом изменении).

Ошибки Redis не должны ломать операции с бронированием: они логируются,
а чтение уходит в PostgreSQL.
"""

from __future__ import annotations

from typing import Optional

from redis.exceptions import RedisError

from carwash.common.logger import log_warning
from carwash.core.bookings.models import Booking
from carwash.infra.redis_client import RedisClient


class BookingCache:
    """Кэш бронирований."""

    def __init__(self, redis: RedisClient | None, ttl: int = 3600) -> None:
        self._redis = redis
        self._ttl = ttl

    @staticmethod
    def key(booking_id: str) -> str:
        return f"booking:{booking_id}"

    async def get(self, booking_id: str) -> Optional[Booking]:
        if self._redis is None:
            return None
        try:
            return await self._redis.get_model(self.key(booking_id), Booking)
        except (RedisError, RuntimeError) as e:
            await log_warning(f"[BookingCache] Не удалось прочитать {booking_id}: {e}")
            return None

    async def set(self, booking: Booking) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set_model(self.key(booking.booking_id), booking, ttl=self._ttl)
        except (RedisError, RuntimeError) as e:
            await log_warning(f"[BookingCache] Не удалось записать {booking.booking_id}: {e}")

    async def invalidate(self, booking_id: str) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.delete(self.key(booking_id))
        except (RedisError, RuntimeError) as e:
            await log_warning(f"[BookingCache] Не удалось инвалидировать {booking_id}: {e}")
