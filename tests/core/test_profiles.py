# tests/core/test_profiles.py
"""
Тесты обновления профиля.
"""

from __future__ import annotations

import pytest

from carwash.common.exceptions import NotFoundError, UnauthorizedError, ValidationError
from tests.fakes import ADMIN, CUSTOMER, FRANCHISE, Stack, partner_actor


class TestProfileService:
    """Тесты для ProfileService."""

    @pytest.mark.asyncio
    async def test_customer_updates_allowed_fields(self, stack: Stack) -> None:
        profile = await stack.profiles.update_profile(CUSTOMER, {"name": "Asha K", "phone": "+919800000000"})

        assert profile.name == "Asha K"
        assert stack.customers.customers["cust-1"].phone == "+919800000000"

    @pytest.mark.asyncio
    async def test_partner_pincodes_normalized(self, stack: Stack) -> None:
        profile = await stack.profiles.update_profile(
            partner_actor("partner-b"), {"pincodes": ["400002", "400001", "400002"]}
        )

        assert profile.pincodes == ["400001", "400002"]

    @pytest.mark.parametrize("pincodes", [["4000"], ["40000a"], "400001", [400001]])
    @pytest.mark.asyncio
    async def test_partner_invalid_pincodes(self, stack: Stack, pincodes) -> None:
        with pytest.raises(ValidationError, match="6-digit"):
            await stack.profiles.update_profile(partner_actor("partner-b"), {"pincodes": pincodes})

    @pytest.mark.asyncio
    async def test_admin_update(self, stack: Stack) -> None:
        profile = await stack.profiles.update_profile(ADMIN, {"email": "root@example.com"})

        assert profile.email == "root@example.com"

    @pytest.mark.parametrize("field", ["id", "password", "role", "created_at"])
    @pytest.mark.asyncio
    async def test_protected_fields(self, stack: Stack, field: str) -> None:
        with pytest.raises(ValidationError, match="Protected fields"):
            await stack.profiles.update_profile(CUSTOMER, {field: "x"})

    @pytest.mark.asyncio
    async def test_field_not_allowed_for_role(self, stack: Stack) -> None:
        with pytest.raises(ValidationError, match="Unknown profile fields"):
            await stack.profiles.update_profile(CUSTOMER, {"pincodes": ["400001"]})

    @pytest.mark.asyncio
    async def test_empty_changes(self, stack: Stack) -> None:
        with pytest.raises(ValidationError):
            await stack.profiles.update_profile(CUSTOMER, {})

    @pytest.mark.asyncio
    async def test_role_without_updater(self, stack: Stack) -> None:
        with pytest.raises(UnauthorizedError):
            await stack.profiles.update_profile(FRANCHISE, {"name": "Branch"})

    @pytest.mark.asyncio
    async def test_missing_profile(self, stack: Stack) -> None:
        with pytest.raises(NotFoundError):
            await stack.profiles.update_profile(partner_actor("partner-x"), {"name": "Ghost"})
