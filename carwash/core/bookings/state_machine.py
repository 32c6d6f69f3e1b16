# carwash/core/bookings/state_machine.py
"""
Машина состояний бронирования: допустимые переходы и события.
"""

from __future__ import annotations

from enum import Enum

from carwash.common.constants import BookingStatus, TERMINAL_STATUSES
from carwash.common.exceptions import InvalidTransitionError


class BookingEvent(str, Enum):
    """События, меняющие статус бронирования."""
    ACCEPT = "accept"                # партнёр принял предложение
    ASSIGN = "assign"                # ручное назначение админом/франшизой
    VERIFY_OTP = "verify_otp"        # альтернативное подтверждение по OTP
    START_TRAVEL = "start_travel"
    MARK_ARRIVED = "mark_arrived"
    START_SERVICE = "start_service"  # OTP на месте
    COMPLETE = "complete"
    CANCEL = "cancel"
    EXPIRE = "expire"
    FAIL = "fail"


_NON_TERMINAL = tuple(s for s in BookingStatus if s not in TERMINAL_STATUSES)


class BookingStateMachine:
    """
    Таблица переходов.

    EVENT_TRANSITIONS: событие -> (из каких статусов, в какой статус).
    """

    EVENT_TRANSITIONS: dict[BookingEvent, tuple[tuple[BookingStatus, ...], BookingStatus]] = {
        BookingEvent.ACCEPT: ((BookingStatus.PENDING,), BookingStatus.CONFIRMED),
        BookingEvent.ASSIGN: ((BookingStatus.PENDING, BookingStatus.CONFIRMED), BookingStatus.CONFIRMED),
        BookingEvent.VERIFY_OTP: ((BookingStatus.PENDING,), BookingStatus.CONFIRMED),
        BookingEvent.START_TRAVEL: ((BookingStatus.CONFIRMED,), BookingStatus.ENROUTE),
        BookingEvent.MARK_ARRIVED: ((BookingStatus.ENROUTE,), BookingStatus.ARRIVED),
        BookingEvent.START_SERVICE: ((BookingStatus.ARRIVED,), BookingStatus.IN_PROGRESS),
        BookingEvent.COMPLETE: ((BookingStatus.IN_PROGRESS,), BookingStatus.COMPLETED),
        BookingEvent.CANCEL: (_NON_TERMINAL, BookingStatus.CANCELLED),
        BookingEvent.EXPIRE: ((BookingStatus.PENDING,), BookingStatus.EXPIRED),
        BookingEvent.FAIL: ((BookingStatus.PENDING,), BookingStatus.FAILED),
    }

    @classmethod
    def resolve(cls, current: BookingStatus, event: BookingEvent) -> BookingStatus:
        """
        Возвращает целевой статус для события.

        Raises:
            InvalidTransitionError: событие недопустимо в текущем статусе
        """
        sources, target = cls.EVENT_TRANSITIONS[event]
        if current not in sources:
            raise InvalidTransitionError(
                f"Cannot {event.value.replace('_', ' ')} a booking in status '{current.value}'",
                details={"status": current.value, "event": event.value},
            )
        return target

