# carwash/core/coupons/service.py
"""
Сервис купонов.

Проверка условий (resolve) и списание использования (redeem) разделены:
redeem вызывается внутри транзакции создания бронирования, и проигрыш
гонки за последний слот откатывает всё бронирование.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from asyncpg import Connection

from carwash.common.constants import TypeMsg
from carwash.common.exceptions import ConflictError, ValidationError
from carwash.common.logger import log_info
from carwash.core.bookings.models import utc_now
from carwash.core.coupons.models import AppliedCoupon, Coupon
from carwash.core.coupons.repository import CouponRepository


class CouponService:
    """Проверка и применение купонов."""

    def __init__(self, repository: CouponRepository) -> None:
        self._repo = repository

    async def resolve(
        self,
        code: str,
        *,
        order_amount: float,
        pincode: str,
        now: Optional[datetime] = None,
    ) -> AppliedCoupon:
        """
        Проверяет купон для заказа и считает скидку.

        Raises:
            ValidationError: купон не найден, неактивен, вне срока действия,
                сумма меньше минимальной или индекс вне области франшизы
        """
        if not code or not code.strip():
            raise ValidationError("Coupon code is empty")

        coupon = await self._repo.get_by_code(code)
        if coupon is None:
            raise ValidationError("Invalid coupon", details={"coupon_code": code})

        moment = now or utc_now()
        if not coupon.is_active_at(moment):
            raise ValidationError("Coupon expired or inactive", details={"coupon_code": coupon.code})
        if order_amount < coupon.min_amount:
            raise ValidationError(
                f"Minimum order amount for this coupon is {coupon.min_amount}",
                details={"coupon_code": coupon.code, "min_amount": coupon.min_amount},
            )
        if not coupon.covers_pincode(pincode):
            raise ValidationError("Coupon not valid for your location", details={"coupon_code": coupon.code})

        discount = coupon.discount_for(order_amount)
        return AppliedCoupon(coupon=coupon, discount=discount, new_total=round(order_amount - discount, 2))

    async def redeem(self, coupon: Coupon, user_id: str, conn: Connection | None = None) -> int:
        """
        Списывает одно использование купона пользователем.

        Raises:
            ConflictError: лимит использований на пользователя исчерпан
        """
        used = await self._repo.try_increment_usage(coupon.id, user_id, coupon.limit_per_user, conn=conn)
        if used is None:
            raise ConflictError(
                "Coupon usage limit reached",
                details={"coupon_code": coupon.code, "limit_per_user": coupon.limit_per_user},
            )
        await log_info(
            f"[Coupon] {coupon.code}: использование {used}/{coupon.limit_per_user} пользователем {user_id}",
            type_msg=TypeMsg.DEBUG,
        )
        return used
