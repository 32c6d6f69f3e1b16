# tests/core/test_partner_earnings.py
"""
Тесты сводки заработка партнёра.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from carwash.common.constants import BookingStatus
from carwash.common.exceptions import NotFoundError, UnauthorizedError
from carwash.core.bookings.repository import BookingRepository
from carwash.core.partners.service import earnings_window
from tests.fakes import CUSTOMER, POLISH, Stack, make_booking, partner_actor

# 17:30 по Калькутте
NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def completed(booking_id: str, completed_at: datetime, *, partner_id: str = "partner-a", **kwargs):
    booking = make_booking(booking_id, status=BookingStatus.COMPLETED, partner_id=partner_id, **kwargs)
    return booking.model_copy(update={"completed_at": completed_at})


class TestEarningsWindow:
    """Тесты для earnings_window."""

    def test_local_midnight(self) -> None:
        today_start, week_start = earnings_window(NOW, "Asia/Kolkata")

        assert today_start == datetime(2026, 3, 9, 18, 30, tzinfo=timezone.utc)
        assert week_start == datetime(2026, 3, 3, 18, 30, tzinfo=timezone.utc)

    def test_utc(self) -> None:
        today_start, week_start = earnings_window(NOW, "UTC")

        assert today_start == datetime(2026, 3, 10, tzinfo=timezone.utc)
        assert today_start - week_start == timedelta(days=6)


class TestGetEarnings:
    """Тесты для PartnerService.get_earnings."""

    @pytest.mark.asyncio
    async def test_totals(self, stack: Stack) -> None:
        # После местной полуночи, хотя по UTC ещё вчера
        stack.seed(completed("MWG00001", datetime(2026, 3, 9, 19, 0, tzinfo=timezone.utc)))
        stack.seed(completed("MWG00002", NOW - timedelta(days=3), services=[POLISH]))
        stack.seed(completed("MWG00003", NOW - timedelta(days=20)))
        stack.seed(completed("MWG00004", NOW - timedelta(hours=1), partner_id="partner-b"))
        stack.seed(make_booking("MWG00005", status=BookingStatus.IN_PROGRESS, partner_id="partner-a"))

        earnings = await stack.partner_service.get_earnings(partner_actor("partner-a"), now=NOW)

        assert earnings.total == 1365.0
        assert earnings.today == 535.0
        assert earnings.week == 830.0
        assert earnings.completed_count == 3

    @pytest.mark.asyncio
    async def test_cash_in_hand(self, stack: Stack) -> None:
        await stack.partners.add_cash_collected("partner-a", 535.0)

        earnings = await stack.partner_service.get_earnings(partner_actor("partner-a"), now=NOW)

        assert earnings.cash_in_hand == 535.0
        assert earnings.all_time_cash_collected == 535.0
        assert earnings.completed_count == 0
        assert earnings.total == 0.0

    @pytest.mark.asyncio
    async def test_customer_denied(self, stack: Stack) -> None:
        with pytest.raises(UnauthorizedError):
            await stack.partner_service.get_earnings(CUSTOMER)

    @pytest.mark.asyncio
    async def test_unknown_partner(self, stack: Stack) -> None:
        with pytest.raises(NotFoundError):
            await stack.partner_service.get_earnings(partner_actor("partner-x"))


class TestCompletedTotalsQuery:
    """SQL агрегата по завершённым заказам."""

    @pytest.mark.asyncio
    async def test_query_and_args(self, mock_db: AsyncMock) -> None:
        mock_db.fetchrow.return_value = {
            "total": Decimal("1365.00"),
            "today": Decimal("535.00"),
            "week": Decimal("830.00"),
            "completed_count": 3,
        }
        today_start, week_start = earnings_window(NOW, "Asia/Kolkata")

        totals = await BookingRepository(mock_db).completed_totals(
            "partner-a", today_start=today_start, week_start=week_start
        )

        assert totals == {"total": 1365.0, "today": 535.0, "week": 830.0, "completed_count": 3}
        query, *args = mock_db.fetchrow.call_args.args
        assert args == ["partner-a", "completed", today_start, week_start]
        assert "WHERE partner_id = $1 AND status = $2" in query
        assert "FILTER (WHERE completed_at >= $3)" in query
        assert "FILTER (WHERE completed_at >= $4)" in query
