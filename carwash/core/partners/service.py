# carwash/core/partners/service.py
"""
Сервис партнёра: сводка заработка.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from carwash.common.constants import ActorRole
from carwash.common.exceptions import NotFoundError, UnauthorizedError
from carwash.core.auth.tokens import Actor
from carwash.core.bookings.repository import BookingRepository
from carwash.core.partners.models import PartnerEarnings
from carwash.core.partners.repository import PartnerRepository


def earnings_window(now: datetime, tz_name: str) -> tuple[datetime, datetime]:
    """
    Начало текущих суток и начало 7-дневного окна (в UTC).

    Сутки считаются в часовом поясе сервиса: неделя включает сегодня
    и шесть предыдущих дней.
    """
    local_now = now.astimezone(ZoneInfo(tz_name))
    today_start = datetime.combine(local_now.date(), time.min, tzinfo=local_now.tzinfo)
    week_start = today_start - timedelta(days=6)
    return today_start.astimezone(timezone.utc), week_start.astimezone(timezone.utc)


class PartnerService:
    """Данные партнёра для его собственного кабинета."""

    def __init__(
        self,
        bookings: BookingRepository,
        partners: PartnerRepository,
        *,
        timezone_name: str = "Asia/Kolkata",
    ) -> None:
        self._bookings = bookings
        self._partners = partners
        self._tz = timezone_name

    async def get_earnings(self, actor: Actor, now: Optional[datetime] = None) -> PartnerEarnings:
        """
        Заработок по завершённым заказам: всего, сегодня, за неделю,
        плюс наличные на руках.

        Raises:
            UnauthorizedError: вызывающий не партнёр
            NotFoundError: партнёра нет в базе
        """
        if actor.role != ActorRole.PARTNER:
            raise UnauthorizedError("Only partners have earnings")

        partner = await self._partners.get(actor.user_id)
        if partner is None:
            raise NotFoundError("Partner not found", details={"partner_id": actor.user_id})

        today_start, week_start = earnings_window(now or datetime.now(timezone.utc), self._tz)
        totals = await self._bookings.completed_totals(
            partner.id,
            today_start=today_start,
            week_start=week_start,
        )
        return PartnerEarnings(
            **totals,
            cash_in_hand=partner.current_cash_in_hand,
            all_time_cash_collected=partner.all_time_cash_collected,
        )
