# carwash/core/payments/models.py
"""
Модели учёта оплаты.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from carwash.common.constants import CollectionMode, PaymentSplitStatus
from carwash.core.bookings.models import MONEY_EPSILON, utc_now


def resolve_status(online_amount: float, cash_amount: float, total: float) -> PaymentSplitStatus:
    """
    Статус по собранным суммам.

    completed, если собрано не меньше итога; partial, если собрано хоть
    что-то; иначе pending.
    """
    collected = online_amount + cash_amount
    if collected + MONEY_EPSILON >= total:
        return PaymentSplitStatus.COMPLETED
    if collected > 0:
        return PaymentSplitStatus.PARTIAL
    return PaymentSplitStatus.PENDING


class PaymentSplit(BaseModel):
    """Учёт того, как собран итог бронирования."""

    booking_id: str
    online_amount: float = Field(0.0, ge=0.0)
    cash_amount: float = Field(0.0, ge=0.0)
    online_transaction_ref: Optional[str] = None
    online_collected_at: Optional[datetime] = None
    cash_collected_at: Optional[datetime] = None
    collected_by: Optional[str] = Field(None, description="Партнёр, принявший наличные")
    status: PaymentSplitStatus = PaymentSplitStatus.PENDING
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def collected(self) -> float:
        return round(self.online_amount + self.cash_amount, 2)

    def remaining(self, total: float) -> float:
        return round(max(total - self.collected, 0.0), 2)


class CollectPaymentRequest(BaseModel):
    """Приём оплаты партнёром на месте."""

    mode: CollectionMode
    online_amount: Optional[float] = Field(None, ge=0.0)
    cash_amount: Optional[float] = Field(None, ge=0.0)
    transaction_ref: Optional[str] = None


class VerifyOnlinePaymentRequest(BaseModel):
    """Подтверждение онлайн-оплаты от шлюза."""

    order_id: str
    payment_id: str
    signature: str
    amount: float = Field(..., gt=0.0)


class PaymentFailedRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
