# carwash/core/profiles/service.py
"""
Обновление профиля.

Каждая роль имеет свой обработчик со списком разрешённых полей; выбор
обработчика идёт по явной таблице, без ветвлений по роли в вызывающем коде.
"""

from __future__ import annotations

import re
from typing import Any, Protocol

from pydantic import BaseModel

from carwash.common.constants import ActorRole, TypeMsg
from carwash.common.exceptions import NotFoundError, UnauthorizedError, ValidationError
from carwash.common.logger import log_info
from carwash.core.auth.tokens import Actor
from carwash.core.customers.repository import CustomerRepository
from carwash.core.partners.repository import PartnerRepository
from carwash.core.profiles.repository import AdminRepository

# Поля, которые нельзя менять через профиль ни для одной роли
PROTECTED_FIELDS = frozenset({"id", "password", "role", "created_at", "updated_at"})

_PINCODE_RE = re.compile(r"^\d{6}$")


class ProfileUpdater(Protocol):
    """Обработчик обновления профиля одной роли."""

    allowed_fields: frozenset[str]

    async def update(self, user_id: str, changes: dict[str, Any]) -> BaseModel | None:
        ...


class CustomerProfileUpdater:
    allowed_fields = frozenset({"name", "email", "phone", "push_token"})

    def __init__(self, repository: CustomerRepository) -> None:
        self._repo = repository

    async def update(self, user_id: str, changes: dict[str, Any]) -> BaseModel | None:
        return await self._repo.update_profile(user_id, changes)


class PartnerProfileUpdater:
    allowed_fields = frozenset({"name", "email", "phone", "push_token", "pincodes"})

    def __init__(self, repository: PartnerRepository) -> None:
        self._repo = repository

    async def update(self, user_id: str, changes: dict[str, Any]) -> BaseModel | None:
        if "pincodes" in changes:
            pincodes = changes["pincodes"]
            if not isinstance(pincodes, list) or not all(
                isinstance(p, str) and _PINCODE_RE.match(p) for p in pincodes
            ):
                raise ValidationError("Pincodes must be a list of 6-digit strings")
            changes = {**changes, "pincodes": sorted(set(pincodes))}
        return await self._repo.update_profile(user_id, changes)


class AdminProfileUpdater:
    allowed_fields = frozenset({"name", "email", "phone"})

    def __init__(self, repository: AdminRepository) -> None:
        self._repo = repository

    async def update(self, user_id: str, changes: dict[str, Any]) -> BaseModel | None:
        return await self._repo.update_profile(user_id, changes)


class ProfileService:
    """Обновление профиля текущего участника."""

    def __init__(self, updaters: dict[ActorRole, ProfileUpdater]) -> None:
        self._updaters = dict(updaters)

    async def update_profile(self, actor: Actor, changes: dict[str, Any]) -> BaseModel:
        """
        Raises:
            UnauthorizedError: для роли нет обработчика
            ValidationError: защищённые или неизвестные поля, пустой запрос
            NotFoundError: профиль не найден
        """
        updater = self._updaters.get(actor.role)
        if updater is None:
            raise UnauthorizedError(f"Profile updates are not supported for role '{actor.role.value}'")
        if not changes:
            raise ValidationError("No fields to update")

        protected = sorted(set(changes) & PROTECTED_FIELDS)
        if protected:
            raise ValidationError("Protected fields cannot be updated", details={"fields": protected})

        unknown = sorted(set(changes) - updater.allowed_fields)
        if unknown:
            raise ValidationError("Unknown profile fields", details={"fields": unknown})

        profile = await updater.update(actor.user_id, changes)
        if profile is None:
            raise NotFoundError("Profile not found", details={"user_id": actor.user_id})

        await log_info(
            f"[Profile] {actor.role.value} {actor.user_id} обновил поля: {', '.join(sorted(changes))}",
            type_msg=TypeMsg.INFO,
        )
        return profile
