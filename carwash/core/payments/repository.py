# carwash/core/payments/repository.py
"""
Репозиторий учёта оплаты.
"""

from __future__ import annotations

from typing import Optional

from asyncpg import Connection

from carwash.common.constants import PaymentSplitStatus
from carwash.core.payments.models import PaymentSplit
from carwash.infra.database import DatabaseManager

_COLUMNS = """
    booking_id, online_amount, cash_amount, online_transaction_ref,
    online_collected_at, cash_collected_at, collected_by, status,
    created_at, updated_at
"""


class PaymentSplitRepository:
    """Репозиторий записей PaymentSplit (одна на бронирование)."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get(self, booking_id: str, conn: Connection | None = None) -> Optional[PaymentSplit]:
        row = await self._db.fetchrow(
            f"SELECT {_COLUMNS} FROM payment_splits WHERE booking_id = $1",
            booking_id,
            conn=conn,
        )
        if not row:
            return None
        data = dict(row)
        data["status"] = PaymentSplitStatus(data["status"])
        return PaymentSplit(**data)

    async def save(self, split: PaymentSplit, conn: Connection | None = None) -> None:
        """Вставляет или перезаписывает запись целиком (вызывается под блокировкой бронирования)."""
        await self._db.execute(
            """
            INSERT INTO payment_splits (
                booking_id, online_amount, cash_amount, online_transaction_ref,
                online_collected_at, cash_collected_at, collected_by, status,
                created_at, updated_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, NOW())
            ON CONFLICT (booking_id) DO UPDATE SET
                online_amount = EXCLUDED.online_amount,
                cash_amount = EXCLUDED.cash_amount,
                online_transaction_ref = EXCLUDED.online_transaction_ref,
                online_collected_at = EXCLUDED.online_collected_at,
                cash_collected_at = EXCLUDED.cash_collected_at,
                collected_by = EXCLUDED.collected_by,
                status = EXCLUDED.status,
                updated_at = NOW()
            """,
            split.booking_id, split.online_amount, split.cash_amount, split.online_transaction_ref,
            split.online_collected_at, split.cash_collected_at, split.collected_by, split.status.value,
            split.created_at,
            conn=conn,
        )
