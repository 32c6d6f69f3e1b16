"""
Модуль бронирований: модели, расчёт стоимости, машина состояний.

Сервисы (BookingService, BookingLifecycle) импортируются из своих модулей.
"""

from carwash.core.bookings.models import (
    Booking,
    CreateBookingRequest,
    Pricing,
    ServiceLocation,
    ServiceSnapshot,
)
from carwash.core.bookings.state_machine import BookingEvent, BookingStateMachine

__all__ = [
    "Booking",
    "CreateBookingRequest",
    "Pricing",
    "ServiceLocation",
    "ServiceSnapshot",
    "BookingEvent",
    "BookingStateMachine",
]
