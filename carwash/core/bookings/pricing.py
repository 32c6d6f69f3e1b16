# carwash/core/bookings/pricing.py
"""
Расчёт производных полей бронирования: стоимость, расписание, OTP, ID.
"""

from __future__ import annotations

import re
import secrets
from datetime import date, datetime, time, timedelta
from typing import Iterable
from zoneinfo import ZoneInfo

from carwash.common.exceptions import ValidationError
from carwash.core.bookings.models import Pricing, ServiceSnapshot

_PINCODE_RE = re.compile(r"\b\d{6}\b")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def _money(value: float) -> float:
    return round(value + 0.0, 2)


def calculate_pricing(services: Iterable[ServiceSnapshot], extra_discount: float = 0.0) -> Pricing:
    """
    Суммирует компоненты цены по всем услугам.

    Args:
        services: Снимки услуг
        extra_discount: Дополнительная скидка (купон)

    Returns:
        Разбивка стоимости. Скидка ограничивается суммой до скидки,
        поэтому итог никогда не бывает отрицательным.
    """
    services = list(services)
    subtotal = _money(sum(s.price for s in services))
    tax = _money(sum(s.tax for s in services))
    charges = _money(sum(s.charges for s in services))
    discount = _money(sum(s.discount for s in services) + max(extra_discount, 0.0))

    gross = _money(subtotal + tax + charges)
    discount = min(discount, gross)

    return Pricing(
        subtotal=subtotal,
        tax=tax,
        charges=charges,
        discount=discount,
        total=_money(gross - discount),
    )


def extract_pincode(address: str | None) -> str | None:
    """Находит первый шестизначный индекс в свободной строке адреса."""
    if not address:
        return None
    match = _PINCODE_RE.search(address)
    return match.group(0) if match else None


def parse_time_of_day(value: str) -> time:
    """Разбирает 'HH:MM' (часы 0-23, минуты 0-59)."""
    match = _TIME_RE.match(value.strip()) if value else None
    if not match:
        raise ValidationError(f"Invalid scheduled time '{value}', expected HH:MM")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValidationError(f"Invalid scheduled time '{value}', expected HH:MM")
    return time(hours, minutes)


def combine_schedule(scheduled_date: date, scheduled_time: str, tz_name: str) -> datetime:
    """Объединяет дату и время суток в один момент в часовом поясе сервиса."""
    return datetime.combine(scheduled_date, parse_time_of_day(scheduled_time), tzinfo=ZoneInfo(tz_name))


def estimate_completion(scheduled_at: datetime, services: Iterable[ServiceSnapshot]) -> datetime:
    """Плановое окончание: начало + сумма длительностей услуг."""
    return scheduled_at + timedelta(minutes=sum(s.duration_minutes for s in services))


def generate_otp() -> str:
    """Четырёхзначный числовой код (1000-9999)."""
    return str(1000 + secrets.randbelow(9000))


def format_booking_id(number: int, prefix: str = "MWG", pad: int = 5) -> str:
    """MWG + номер с ведущими нулями: 1 -> MWG00001."""
    return f"{prefix}{number:0{pad}d}"
