# carwash/core/partners/repository.py
"""
Репозиторий партнёров.

is_available и current_booking_id меняются только парой и только
условными UPDATE внутри транзакции перехода статуса бронирования.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional

from asyncpg import Connection, Record

from carwash.core.partners.models import Partner
from carwash.infra.database import DatabaseManager, affected_rows

_COLUMNS = """
    id, name, email, phone, franchise_id, pincodes, push_token,
    is_available, current_booking_id, current_cash_in_hand, all_time_cash_collected,
    live_latitude, live_longitude, live_updated_at
"""

PROFILE_COLUMNS = frozenset({"name", "email", "phone", "push_token", "pincodes"})


class PartnerRepository:
    """Репозиторий партнёров."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get(self, partner_id: str, conn: Connection | None = None) -> Optional[Partner]:
        row = await self._db.fetchrow(
            f"SELECT {_COLUMNS} FROM partners WHERE id = $1",
            partner_id,
            conn=conn,
        )
        return self._row_to_partner(row) if row else None

    async def claim(self, partner_id: str, booking_id: str, conn: Connection | None = None) -> bool:
        """
        Занимает партнёра под бронирование.

        Returns:
            False, если у партнёра уже есть текущий заказ
        """
        status = await self._db.execute(
            """
            UPDATE partners
            SET is_available = FALSE, current_booking_id = $2, updated_at = NOW()
            WHERE id = $1 AND (current_booking_id IS NULL OR current_booking_id = $2)
            """,
            partner_id, booking_id,
            conn=conn,
        )
        return affected_rows(status) == 1

    async def release(self, partner_id: str, booking_id: str, conn: Connection | None = None) -> bool:
        """
        Освобождает партнёра, только если он всё ещё привязан к этому бронированию.

        Returns:
            True, если партнёр освобождён
        """
        status = await self._db.execute(
            """
            UPDATE partners
            SET is_available = TRUE, current_booking_id = NULL, updated_at = NOW()
            WHERE id = $1 AND current_booking_id = $2
            """,
            partner_id, booking_id,
            conn=conn,
        )
        return affected_rows(status) == 1

    async def add_cash_collected(self, partner_id: str, amount: float, conn: Connection | None = None) -> None:
        """Увеличивает наличные на руках и общую сумму собранных наличных."""
        await self._db.execute(
            """
            UPDATE partners
            SET current_cash_in_hand = current_cash_in_hand + $2,
                all_time_cash_collected = all_time_cash_collected + $2,
                updated_at = NOW()
            WHERE id = $1
            """,
            partner_id, amount,
            conn=conn,
        )

    async def update_live_location(self, partner_id: str, latitude: float, longitude: float) -> None:
        await self._db.execute(
            """
            UPDATE partners
            SET live_latitude = $2, live_longitude = $3, live_updated_at = NOW()
            WHERE id = $1
            """,
            partner_id, latitude, longitude,
        )

    async def get_push_tokens(self, partner_ids: Iterable[str]) -> list[str]:
        """Push-токены партнёров (пустые пропускаются)."""
        rows = await self._db.fetch(
            "SELECT push_token FROM partners WHERE id = ANY($1::text[]) AND push_token IS NOT NULL",
            list(partner_ids),
        )
        return [r["push_token"] for r in rows if r["push_token"]]

    async def update_profile(self, partner_id: str, changes: dict[str, Any]) -> Optional[Partner]:
        """Обновляет разрешённые поля профиля."""
        unknown = set(changes) - PROFILE_COLUMNS
        if unknown:
            raise ValueError(f"Недопустимые поля профиля партнёра: {sorted(unknown)}")
        if not changes:
            return await self.get(partner_id)

        args: list[Any] = [partner_id]
        assignments = ["updated_at = NOW()"]
        for column, value in changes.items():
            args.append(value)
            assignments.append(f"{column} = ${len(args)}")

        row = await self._db.fetchrow(
            f"UPDATE partners SET {', '.join(assignments)} WHERE id = $1 RETURNING {_COLUMNS}",
            *args,
        )
        return self._row_to_partner(row) if row else None

    @staticmethod
    def _row_to_partner(row: Record) -> Partner:
        data = dict(row)
        data["pincodes"] = list(data.get("pincodes") or [])
        return Partner(**data)
