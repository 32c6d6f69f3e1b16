# carwash/core/coupons/models.py
"""
Модели данных купонов.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from carwash.common.constants import CouponScope, CouponStatus, DiscountType


class Coupon(BaseModel):
    """Купон на скидку."""

    id: str
    code: str = Field(..., description="Код купона (в верхнем регистре)")
    status: CouponStatus = CouponStatus.ACTIVE
    discount_type: DiscountType
    discount_value: float = Field(..., ge=0.0)
    max_discount: float = Field(0.0, ge=0.0, description="Потолок процентной скидки (0 = без потолка)")
    min_amount: float = Field(0.0, ge=0.0, description="Минимальная сумма заказа")
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit_per_user: int = Field(1, ge=1)
    scope: CouponScope = CouponScope.ALL
    pincodes: list[str] = Field(default_factory=list)

    def is_active_at(self, moment: datetime) -> bool:
        if self.status != CouponStatus.ACTIVE:
            return False
        if self.start_date and moment < self.start_date:
            return False
        if self.end_date and moment > self.end_date:
            return False
        return True

    def covers_pincode(self, pincode: str) -> bool:
        """Купоны франшизы действуют только в её индексах."""
        return self.scope == CouponScope.ALL or pincode in self.pincodes

    def discount_for(self, amount: float) -> float:
        """Размер скидки для суммы заказа, не больше самой суммы."""
        if self.discount_type == DiscountType.PERCENTAGE:
            discount = amount * self.discount_value / 100
            if self.max_discount > 0:
                discount = min(discount, self.max_discount)
        else:
            discount = self.discount_value
        return round(max(0.0, min(discount, amount)), 2)


class AppliedCoupon(BaseModel):
    """Результат проверки купона для конкретного заказа."""

    coupon: Coupon
    discount: float
    new_total: float
