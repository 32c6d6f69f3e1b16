# carwash/core/profiles/repository.py
"""
Профили администраторов.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel

from carwash.infra.database import DatabaseManager

PROFILE_COLUMNS = frozenset({"name", "email", "phone"})


class Admin(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class AdminRepository:
    """Репозиторий администраторов."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get(self, admin_id: str) -> Optional[Admin]:
        row = await self._db.fetchrow("SELECT id, name, email, phone FROM admins WHERE id = $1", admin_id)
        return Admin(**dict(row)) if row else None

    async def update_profile(self, admin_id: str, changes: dict[str, Any]) -> Optional[Admin]:
        unknown = set(changes) - PROFILE_COLUMNS
        if unknown:
            raise ValueError(f"Недопустимые поля профиля администратора: {sorted(unknown)}")
        if not changes:
            return await self.get(admin_id)

        args: list[Any] = [admin_id]
        assignments = ["updated_at = NOW()"]
        for column, value in changes.items():
            args.append(value)
            assignments.append(f"{column} = ${len(args)}")

        row = await self._db.fetchrow(
            f"UPDATE admins SET {', '.join(assignments)} WHERE id = $1 RETURNING id, name, email, phone",
            *args,
        )
        return Admin(**dict(row)) if row else None
