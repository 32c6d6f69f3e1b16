# carwash/core/catalog/repository.py
"""
Чтение каталога услуг.

Бронирование хранит снимок цены и длительности, поэтому изменения
каталога не затрагивают уже созданные заказы.
"""

from __future__ import annotations

from typing import Iterable

from carwash.core.bookings.models import ServiceSnapshot
from carwash.infra.database import DatabaseManager


class CatalogRepository:
    """Каталог услуг."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get_snapshots(self, service_ids: Iterable[str]) -> list[ServiceSnapshot]:
        """
        Возвращает снимки активных услуг в порядке запроса.

        Неизвестные и неактивные ID пропускаются; полноту проверяет вызывающий код.
        """
        ids = list(service_ids)
        rows = await self._db.fetch(
            """
            SELECT id, name, price, tax, charges, discount, duration_minutes
            FROM services
            WHERE id = ANY($1::text[]) AND is_active
            """,
            ids,
        )
        by_id = {
            r["id"]: ServiceSnapshot(
                service_id=r["id"],
                name=r["name"],
                price=r["price"],
                tax=r["tax"],
                charges=r["charges"],
                discount=r["discount"],
                duration_minutes=r["duration_minutes"],
            )
            for r in rows
        }
        return [by_id[i] for i in ids if i in by_id]
