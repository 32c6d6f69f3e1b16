# carwash/core/coupons/repository.py
"""
Репозиторий купонов.
"""

from __future__ import annotations

from typing import Optional

from asyncpg import Connection

from carwash.core.coupons.models import Coupon
from carwash.infra.database import DatabaseManager


class CouponRepository:
    """Репозиторий купонов и счётчиков использования."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_by_code(self, code: str) -> Optional[Coupon]:
        row = await self._db.fetchrow(
            """
            SELECT id, code, status, discount_type, discount_value, max_discount, min_amount,
                   start_date, end_date, limit_per_user, scope, pincodes
            FROM coupons WHERE code = $1
            """,
            code.strip().upper(),
        )
        if not row:
            return None
        data = dict(row)
        data["pincodes"] = list(data.get("pincodes") or [])
        return Coupon(**data)

    async def try_increment_usage(
        self,
        coupon_id: str,
        user_id: str,
        limit: int,
        conn: Connection | None = None,
    ) -> Optional[int]:
        """
        Сравнить-и-увеличить счётчик использования одним запросом.

        Конфликтующая строка блокируется до конца транзакции, поэтому
        параллельные попытки одного пользователя выполняются по очереди,
        и условие ``used_count < limit`` проверяется на актуальном значении.

        Returns:
            Новое значение счётчика или None, если лимит уже исчерпан
        """
        return await self._db.fetchval(
            """
            INSERT INTO coupon_usages (coupon_id, user_id, used_count)
            VALUES ($1, $2, 1)
            ON CONFLICT (coupon_id, user_id) DO UPDATE
                SET used_count = coupon_usages.used_count + 1
                WHERE coupon_usages.used_count < $3
            RETURNING used_count
            """,
            coupon_id, user_id, limit,
            conn=conn,
        )
