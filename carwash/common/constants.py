# carwash/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ActorRole(str, Enum):
    """Роли участников системы."""
    CUSTOMER = "customer"
    PARTNER = "partner"
    FRANCHISE = "franchise"
    ADMIN = "admin"


# Роли без ограничения окна отмены
PRIVILEGED_ROLES = frozenset({ActorRole.ADMIN, ActorRole.FRANCHISE})


class BookingStatus(str, Enum):
    """Статусы бронирования."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ENROUTE = "enroute"
    ARRIVED = "arrived"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.EXPIRED,
    BookingStatus.FAILED,
})


class PaymentType(str, Enum):
    """Когда клиент платит."""
    PAY_AFTER_SERVICE = "pay after service"
    PAY_ONLINE = "pay online"


class PaymentMode(str, Enum):
    """Канал оплаты."""
    ONLINE = "online"
    CASH = "cash"


class PaymentSplitStatus(str, Enum):
    """Статусы учёта оплаты."""
    PENDING = "pending"
    PARTIAL = "partial"
    COMPLETED = "completed"


class CollectionMode(str, Enum):
    """Режимы приёма оплаты партнёром на месте."""
    FULL_ONLINE = "full-online"
    FULL_CASH = "full-cash"
    SPLIT = "split"


class CouponStatus(str, Enum):
    """Статусы купона."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class DiscountType(str, Enum):
    """Тип скидки купона."""
    PERCENTAGE = "percentage"
    FLAT = "flat"


class CouponScope(str, Enum):
    """Область действия купона."""
    ALL = "all"
    FRANCHISE = "franchise"


class RealtimeEvent:
    """Имена событий realtime-канала."""
    # Входящие от партнёра
    GO_ONLINE = "goOnline"
    GO_OFFLINE = "goOffline"
    ACCEPT_BOOKING = "acceptBooking"
    DECLINE_BOOKING = "declineBooking"
    UPDATE_BOOKING_STATUS = "updateBookingStatus"
    UPDATE_LOCATION = "updateLocation"

    # Входящие от клиента
    JOIN_BOOKING = "joinBooking"
    LEAVE_BOOKING = "leaveBooking"

    # Исходящие
    NEW_BOOKING = "newBooking"
    BOOKING_ACCEPTED = "bookingAccepted"
    BOOKING_CANCELLED = "bookingCancelled"
    BOOKING_EXPIRED = "bookingExpired"
    BOOKING_CONFIRMED = "bookingConfirmed"
    BOOKING_STATUS_UPDATE = "bookingStatusUpdate"
    LIVE_TRACKING = "liveTracking"
    ONLINE_ACK = "onlineAck"
    ERROR = "error"
