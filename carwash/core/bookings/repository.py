# carwash/core/bookings/repository.py
"""
Репозиторий бронирований в PostgreSQL.

Статус меняется только условным UPDATE (``WHERE status = ANY(...)``):
если строку успели изменить между чтением и записью, метод возвращает
None, и вызывающий код трактует это как проигранную гонку.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable, Optional

from asyncpg import Connection, Record

from carwash.common.constants import BookingStatus
from carwash.core.bookings.models import (
    Booking,
    Cancellation,
    LiveLocation,
    Pricing,
    ServiceLocation,
    ServiceSnapshot,
)
from carwash.infra.database import DatabaseManager

_COLUMNS = """
    booking_id, customer_id, partner_id, branch_id, vehicle_id, services,
    address, pincode, latitude, longitude, delivery_address_id,
    scheduled_date, scheduled_time, scheduled_at, estimated_completion,
    status, otp, otp_verified_at,
    subtotal, tax, charges, discount, total, coupon_code,
    payment_type, payment_mode,
    partner_live_latitude, partner_live_longitude, partner_live_updated_at,
    cancelled_by, cancelled_by_role, cancellation_reason, cancelled_at, notes,
    created_at, updated_at, confirmed_at, travel_started_at, arrived_at,
    service_started_at, completed_at
"""

# Колонки, которые можно менять вместе со статусом
MUTABLE_COLUMNS = frozenset({
    "partner_id", "branch_id", "otp", "otp_verified_at",
    "partner_live_latitude", "partner_live_longitude", "partner_live_updated_at",
    "cancelled_by", "cancelled_by_role", "cancellation_reason", "cancelled_at",
    "confirmed_at", "travel_started_at", "arrived_at", "service_started_at", "completed_at",
})


class BookingRepository:
    """Репозиторий бронирований."""

    COUNTER_NAME = "booking"

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    # =========================================================================
    # СЧЁТЧИК ID
    # =========================================================================

    async def next_booking_number(self, conn: Connection | None = None) -> int:
        """
        Атомарно увеличивает счётчик бронирований и возвращает новое значение.

        Upsert блокирует строку счётчика до конца транзакции, поэтому
        параллельные создания получают разные и возрастающие номера.
        """
        return await self._db.fetchval(
            """
            INSERT INTO counters (name, value) VALUES ($1, 1)
            ON CONFLICT (name) DO UPDATE SET value = counters.value + 1
            RETURNING value
            """,
            self.COUNTER_NAME,
            conn=conn,
        )

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get(
        self,
        booking_id: str,
        *,
        for_update: bool = False,
        conn: Connection | None = None,
    ) -> Optional[Booking]:
        """
        Возвращает бронирование по ID.

        Args:
            booking_id: ID бронирования
            for_update: Заблокировать строку до конца транзакции (нужен conn)
            conn: Соединение открытой транзакции
        """
        query = f"SELECT {_COLUMNS} FROM bookings WHERE booking_id = $1"
        if for_update:
            query += " FOR UPDATE"
        row = await self._db.fetchrow(query, booking_id, conn=conn)
        return self._row_to_booking(row) if row else None

    async def list_by_customer(self, customer_id: str, limit: int = 20, offset: int = 0) -> list[Booking]:
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM bookings
            WHERE customer_id = $1
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            customer_id, limit, offset,
        )
        return [self._row_to_booking(r) for r in rows]

    async def list_by_partner(self, partner_id: str, limit: int = 20, offset: int = 0) -> list[Booking]:
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM bookings
            WHERE partner_id = $1
            ORDER BY created_at DESC
            LIMIT $2 OFFSET $3
            """,
            partner_id, limit, offset,
        )
        return [self._row_to_booking(r) for r in rows]

    async def list_pending_by_pincodes(self, pincodes: Iterable[str]) -> list[Booking]:
        """Ожидающие назначения бронирования в указанных индексах (старые первыми)."""
        rows = await self._db.fetch(
            f"""
            SELECT {_COLUMNS} FROM bookings
            WHERE status = $1 AND pincode = ANY($2::text[])
            ORDER BY created_at ASC
            """,
            BookingStatus.PENDING.value, list(pincodes),
        )
        return [self._row_to_booking(r) for r in rows]

    async def completed_totals(
        self,
        partner_id: str,
        *,
        today_start: datetime,
        week_start: datetime,
    ) -> dict[str, Any]:
        """
        Суммы total завершённых заказов партнёра по completed_at.

        Returns:
            {"total", "today", "week", "completed_count"}
        """
        row = await self._db.fetchrow(
            """
            SELECT
                COALESCE(SUM(total), 0) AS total,
                COALESCE(SUM(total) FILTER (WHERE completed_at >= $3), 0) AS today,
                COALESCE(SUM(total) FILTER (WHERE completed_at >= $4), 0) AS week,
                COUNT(*) AS completed_count
            FROM bookings
            WHERE partner_id = $1 AND status = $2
            """,
            partner_id, BookingStatus.COMPLETED.value, today_start, week_start,
        )
        if row is None:
            return {"total": 0.0, "today": 0.0, "week": 0.0, "completed_count": 0}
        return {
            "total": float(row["total"]),
            "today": float(row["today"]),
            "week": float(row["week"]),
            "completed_count": int(row["completed_count"]),
        }

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def create(self, booking: Booking, conn: Connection | None = None) -> None:
        """Вставляет новое бронирование."""
        loc = booking.location
        p = booking.pricing
        await self._db.execute(
            """
            INSERT INTO bookings (
                booking_id, customer_id, partner_id, branch_id, vehicle_id, services,
                address, pincode, latitude, longitude, delivery_address_id,
                scheduled_date, scheduled_time, scheduled_at, estimated_completion,
                status, otp, subtotal, tax, charges, discount, total, coupon_code,
                payment_type, payment_mode, notes, created_at, updated_at
            ) VALUES (
                $1, $2, $3, $4, $5, $6::jsonb,
                $7, $8, $9, $10, $11,
                $12, $13, $14, $15,
                $16, $17, $18, $19, $20, $21, $22, $23,
                $24, $25, $26, $27, $28
            )
            """,
            booking.booking_id, booking.customer_id, booking.partner_id, booking.branch_id,
            booking.vehicle_id, json.dumps([s.model_dump() for s in booking.services]),
            loc.address, loc.pincode, loc.latitude, loc.longitude, loc.delivery_address_id,
            booking.scheduled_date, booking.scheduled_time, booking.scheduled_at, booking.estimated_completion,
            booking.status.value, booking.otp, p.subtotal, p.tax, p.charges, p.discount, p.total,
            booking.coupon_code, booking.payment_type.value, booking.payment_mode.value,
            booking.notes, booking.created_at, booking.updated_at,
            conn=conn,
        )

    async def update_status(
        self,
        booking_id: str,
        *,
        expected: Iterable[BookingStatus],
        new_status: BookingStatus,
        fields: dict[str, Any] | None = None,
        require_no_partner: bool = False,
        conn: Connection | None = None,
    ) -> Optional[Booking]:
        """
        Условно меняет статус (и сопутствующие поля).

        Returns:
            Обновлённое бронирование или None, если статус уже не входит
            в expected (или партнёр уже назначен при require_no_partner)
        """
        fields = fields or {}
        unknown = set(fields) - MUTABLE_COLUMNS
        if unknown:
            raise ValueError(f"Недопустимые поля для обновления: {sorted(unknown)}")

        args: list[Any] = [booking_id, new_status.value, [s.value for s in expected]]
        assignments = ["status = $2", "updated_at = NOW()"]
        for column, value in fields.items():
            args.append(value)
            assignments.append(f"{column} = ${len(args)}")

        where = "booking_id = $1 AND status = ANY($3::text[])"
        if require_no_partner:
            where += " AND partner_id IS NULL"

        row = await self._db.fetchrow(
            f"UPDATE bookings SET {', '.join(assignments)} WHERE {where} RETURNING {_COLUMNS}",
            *args,
            conn=conn,
        )
        return self._row_to_booking(row) if row else None

    async def update_live_location(
        self,
        booking_id: str,
        partner_id: str,
        location: LiveLocation,
        *,
        active_statuses: Iterable[BookingStatus],
    ) -> Optional[Booking]:
        """Обновляет позицию партнёра, только если он назначен и заказ активен."""
        row = await self._db.fetchrow(
            f"""
            UPDATE bookings
            SET partner_live_latitude = $3, partner_live_longitude = $4,
                partner_live_updated_at = $5, updated_at = NOW()
            WHERE booking_id = $1 AND partner_id = $2 AND status = ANY($6::text[])
            RETURNING {_COLUMNS}
            """,
            booking_id, partner_id, location.latitude, location.longitude, location.updated_at,
            [s.value for s in active_statuses],
        )
        return self._row_to_booking(row) if row else None

    # =========================================================================
    # МАППИНГ
    # =========================================================================

    @staticmethod
    def _row_to_booking(row: Record) -> Booking:
        services = row["services"]
        if isinstance(services, str):
            services = json.loads(services)

        live = None
        if row["partner_live_latitude"] is not None and row["partner_live_longitude"] is not None:
            live = LiveLocation(
                latitude=row["partner_live_latitude"],
                longitude=row["partner_live_longitude"],
                updated_at=row["partner_live_updated_at"],
            )

        cancellation = None
        if row["cancelled_at"] is not None:
            cancellation = Cancellation(
                actor_id=row["cancelled_by"],
                actor_role=row["cancelled_by_role"],
                reason=row["cancellation_reason"],
                cancelled_at=row["cancelled_at"],
            )

        return Booking(
            booking_id=row["booking_id"],
            customer_id=row["customer_id"],
            partner_id=row["partner_id"],
            branch_id=row["branch_id"],
            vehicle_id=row["vehicle_id"],
            services=[ServiceSnapshot(**s) for s in services],
            location=ServiceLocation(
                address=row["address"],
                pincode=row["pincode"],
                latitude=row["latitude"],
                longitude=row["longitude"],
                delivery_address_id=row["delivery_address_id"],
            ),
            scheduled_date=row["scheduled_date"],
            scheduled_time=row["scheduled_time"],
            scheduled_at=row["scheduled_at"],
            estimated_completion=row["estimated_completion"],
            status=BookingStatus(row["status"]),
            otp=row["otp"],
            otp_verified_at=row["otp_verified_at"],
            pricing=Pricing(
                subtotal=row["subtotal"],
                tax=row["tax"],
                charges=row["charges"],
                discount=row["discount"],
                total=row["total"],
            ),
            coupon_code=row["coupon_code"],
            payment_type=row["payment_type"],
            payment_mode=row["payment_mode"],
            partner_live_location=live,
            cancellation=cancellation,
            notes=row["notes"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            confirmed_at=row["confirmed_at"],
            travel_started_at=row["travel_started_at"],
            arrived_at=row["arrived_at"],
            service_started_at=row["service_started_at"],
            completed_at=row["completed_at"],
        )
