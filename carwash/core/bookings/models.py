# carwash/core/bookings/models.py
"""
Модели данных бронирований.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from carwash.common.constants import (
    ActorRole,
    BookingStatus,
    PaymentMode,
    PaymentType,
    TERMINAL_STATUSES,
)


def utc_now() -> datetime:
    """Текущее время в UTC (aware)."""
    return datetime.now(timezone.utc)


# Допуск на округление денежных сумм до копеек
MONEY_EPSILON = 0.005


class ServiceSnapshot(BaseModel):
    """Снимок услуги каталога на момент бронирования."""

    service_id: str = Field(..., description="ID услуги в каталоге")
    name: str = Field(..., description="Название услуги")
    price: float = Field(..., ge=0.0, description="Цена")
    tax: float = Field(0.0, ge=0.0, description="Налог")
    charges: float = Field(0.0, ge=0.0, description="Дополнительные сборы")
    discount: float = Field(0.0, ge=0.0, description="Скидка услуги")
    duration_minutes: int = Field(0, ge=0, description="Длительность в минутах")

    model_config = ConfigDict(frozen=True)


class ServiceLocation(BaseModel):
    """Место оказания услуги."""

    address: str = Field(..., min_length=1, description="Адрес")
    pincode: str = Field(..., pattern=r"^\d{6}$", description="Почтовый индекс (6 цифр)")
    latitude: Optional[float] = Field(None, ge=-90.0, le=90.0, description="Широта")
    longitude: Optional[float] = Field(None, ge=-180.0, le=180.0, description="Долгота")
    delivery_address_id: Optional[str] = Field(None, description="ID сохранённого адреса клиента")


class Pricing(BaseModel):
    """
    Разбивка стоимости.

    Инвариант: total == subtotal + tax + charges - discount и total >= 0.
    """

    subtotal: float = Field(..., ge=0.0)
    tax: float = Field(0.0, ge=0.0)
    charges: float = Field(0.0, ge=0.0)
    discount: float = Field(0.0, ge=0.0)
    total: float = Field(..., ge=0.0)

    @model_validator(mode="after")
    def check_total(self) -> "Pricing":
        expected = self.subtotal + self.tax + self.charges - self.discount
        if abs(self.total - expected) > MONEY_EPSILON:
            raise ValueError(
                f"total {self.total} != subtotal + tax + charges - discount ({expected})"
            )
        return self

    @property
    def gross(self) -> float:
        """Сумма до скидки."""
        return round(self.subtotal + self.tax + self.charges, 2)


class LiveLocation(BaseModel):
    """Последняя известная позиция партнёра по заказу."""

    latitude: float
    longitude: float
    updated_at: datetime = Field(default_factory=utc_now)


class Cancellation(BaseModel):
    """Кто, когда и почему отменил бронирование."""

    actor_id: str
    actor_role: ActorRole
    reason: Optional[str] = None
    cancelled_at: datetime = Field(default_factory=utc_now)


class Booking(BaseModel):
    """Модель бронирования."""

    booking_id: str = Field(..., description="Человекочитаемый ID, например MWG00001")
    customer_id: str = Field(..., description="ID клиента")
    partner_id: Optional[str] = Field(None, description="ID назначенного партнёра")
    branch_id: Optional[str] = Field(None, description="ID франшизы партнёра")
    vehicle_id: str = Field(..., description="ID автомобиля клиента")

    services: list[ServiceSnapshot] = Field(..., min_length=1, description="Снимки услуг")
    location: ServiceLocation

    # Расписание
    scheduled_date: date
    scheduled_time: str = Field(..., pattern=r"^\d{2}:\d{2}$", description="Время HH:MM")
    scheduled_at: datetime
    estimated_completion: datetime

    status: BookingStatus = Field(BookingStatus.PENDING, description="Статус")
    otp: Optional[str] = Field(None, pattern=r"^\d{4}$", description="Код подтверждения")
    otp_verified_at: Optional[datetime] = None

    pricing: Pricing
    coupon_code: Optional[str] = None
    payment_type: PaymentType = PaymentType.PAY_AFTER_SERVICE
    payment_mode: PaymentMode = PaymentMode.CASH

    partner_live_location: Optional[LiveLocation] = None
    cancellation: Optional[Cancellation] = None
    notes: Optional[str] = None

    # Временные метки
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    confirmed_at: Optional[datetime] = None
    travel_started_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    service_started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_terminal(self) -> bool:
        """Находится ли бронирование в конечном статусе."""
        return self.status in TERMINAL_STATUSES

    @property
    def total_duration_minutes(self) -> int:
        return sum(s.duration_minutes for s in self.services)

    def service_summary(self, default: str = "Car Wash") -> str:
        """Название для уведомлений: первая услуга или значение по умолчанию."""
        return self.services[0].name if self.services else default

    def public_view(self) -> dict:
        """Данные для партнёра и сторонних наблюдателей, без OTP."""
        return self.model_dump(mode="json", exclude={"otp"})


# =============================================================================
# DTO
# =============================================================================

class OnlinePaymentProof(BaseModel):
    """Подтверждение онлайн-оплаты от платёжного шлюза."""

    order_id: str
    payment_id: str
    signature: str


class CreateBookingRequest(BaseModel):
    """
    Запрос на создание бронирования.

    Поля намеренно необязательны: полноту проверяет BookingService и
    отвечает доменной ValidationError.
    """

    service_ids: list[str] = Field(default_factory=list, description="ID услуг каталога")
    vehicle_id: Optional[str] = None
    scheduled_date: Optional[date] = None
    scheduled_time: Optional[str] = Field(None, description="Время HH:MM")

    # Либо сохранённый адрес, либо адрес + координаты
    delivery_address_id: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    payment_type: PaymentType = PaymentType.PAY_AFTER_SERVICE
    payment_mode: PaymentMode = PaymentMode.CASH
    coupon_code: Optional[str] = None
    online_payment: Optional[OnlinePaymentProof] = None
    notes: Optional[str] = Field(None, max_length=500)
