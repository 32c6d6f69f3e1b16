# carwash/core/customers/repository.py
"""
Репозиторий клиентов.
"""

from __future__ import annotations

from typing import Any, Optional

from carwash.core.customers.models import Customer, DeliveryAddress, Vehicle
from carwash.infra.database import DatabaseManager

PROFILE_COLUMNS = frozenset({"name", "email", "phone", "push_token"})


class CustomerRepository:
    """Репозиторий клиентов и их автомобилей/адресов."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get(self, customer_id: str) -> Optional[Customer]:
        row = await self._db.fetchrow(
            "SELECT id, name, email, phone, push_token FROM customers WHERE id = $1",
            customer_id,
        )
        return Customer(**dict(row)) if row else None

    async def get_vehicle(self, customer_id: str, vehicle_id: str) -> Optional[Vehicle]:
        """Автомобиль, только если он принадлежит клиенту."""
        row = await self._db.fetchrow(
            """
            SELECT id, customer_id, make, model, number_plate, vehicle_type
            FROM vehicles WHERE id = $1 AND customer_id = $2
            """,
            vehicle_id, customer_id,
        )
        return Vehicle(**dict(row)) if row else None

    async def get_delivery_address(self, customer_id: str, address_id: str) -> Optional[DeliveryAddress]:
        """Сохранённый адрес, только если он принадлежит клиенту."""
        row = await self._db.fetchrow(
            """
            SELECT id, customer_id, address, postal_code, latitude, longitude
            FROM delivery_addresses WHERE id = $1 AND customer_id = $2
            """,
            address_id, customer_id,
        )
        return DeliveryAddress(**dict(row)) if row else None

    async def update_profile(self, customer_id: str, changes: dict[str, Any]) -> Optional[Customer]:
        unknown = set(changes) - PROFILE_COLUMNS
        if unknown:
            raise ValueError(f"Недопустимые поля профиля клиента: {sorted(unknown)}")
        if not changes:
            return await self.get(customer_id)

        args: list[Any] = [customer_id]
        assignments = ["updated_at = NOW()"]
        for column, value in changes.items():
            args.append(value)
            assignments.append(f"{column} = ${len(args)}")

        row = await self._db.fetchrow(
            f"""
            UPDATE customers SET {', '.join(assignments)} WHERE id = $1
            RETURNING id, name, email, phone, push_token
            """,
            *args,
        )
        return Customer(**dict(row)) if row else None
