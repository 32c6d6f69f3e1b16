"""
Модуль купонов: проверка условий и атомарный учёт использований.
"""

from carwash.core.coupons.models import AppliedCoupon, Coupon
from carwash.core.coupons.repository import CouponRepository
from carwash.core.coupons.service import CouponService

__all__ = ["AppliedCoupon", "Coupon", "CouponRepository", "CouponService"]
