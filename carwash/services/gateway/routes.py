# carwash/services/gateway/routes.py
"""
HTTP маршруты. Тонкий слой: проверка роли и вызов доменных сервисов,
доменные исключения превращаются в ответы обработчиком в app.py.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from carwash.common.constants import ActorRole, BookingStatus
from carwash.core.auth.tokens import Actor
from carwash.core.bookings.lifecycle import BookingLifecycle
from carwash.core.bookings.models import Booking, CreateBookingRequest
from carwash.core.bookings.service import BookingService
from carwash.core.coupons.service import CouponService
from carwash.core.partners.models import PartnerEarnings
from carwash.core.partners.service import PartnerService
from carwash.core.payments.models import (
    CollectPaymentRequest,
    PaymentFailedRequest,
    VerifyOnlinePaymentRequest,
)
from carwash.core.payments.service import PaymentLedgerService
from carwash.core.profiles.service import ProfileService
from carwash.services.gateway.dependencies import (
    get_booking_service,
    get_coupon_service,
    get_current_actor,
    get_ledger,
    get_lifecycle,
    get_partner_service,
    get_profile_service,
    require_role,
)
from carwash.shared.common import PageResponse, PaginationParams

router = APIRouter()


# === MODELS ===

class CancelBookingRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class VerifyOtpRequest(BaseModel):
    otp: str = Field(..., min_length=4, max_length=4)


class StartServiceRequest(BaseModel):
    otp: Optional[str] = None


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0)
    longitude: float = Field(..., ge=-180.0, le=180.0)


class AssignPartnerRequest(BaseModel):
    partner_id: str


class StatusUpdateRequest(BaseModel):
    status: BookingStatus
    otp: Optional[str] = None


class ApplyCouponRequest(BaseModel):
    code: str
    order_amount: float = Field(..., ge=0.0)
    pincode: str


class ApplyCouponResponse(BaseModel):
    code: str
    discount: float
    new_total: float


def booking_view(booking: Booking, actor: Actor) -> dict[str, Any]:
    """Партнёр не видит OTP: его сообщает клиент на месте."""
    if actor.role == ActorRole.PARTNER:
        return booking.public_view()
    return booking.model_dump(mode="json")


# === BOOKINGS ===

@router.post("/bookings", status_code=201, tags=["Bookings"])
async def create_booking(
    request: CreateBookingRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
) -> dict[str, Any]:
    require_role(actor, ActorRole.CUSTOMER)
    booking = await service.create_booking(actor.user_id, request)
    return booking_view(booking, actor)


@router.get("/bookings", response_model=PageResponse, tags=["Bookings"])
async def list_bookings(
    pagination: PaginationParams = Depends(),
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
) -> PageResponse:
    """Бронирования текущего клиента или партнёра."""
    if actor.role == ActorRole.PARTNER:
        bookings = await service.list_partner_bookings(actor, pagination.limit, pagination.offset)
    else:
        bookings = await service.list_customer_bookings(actor, pagination.limit, pagination.offset)
    return PageResponse.create([booking_view(b, actor) for b in bookings], pagination)


@router.get("/bookings/{booking_id}", tags=["Bookings"])
async def get_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
) -> dict[str, Any]:
    booking = await service.get_booking(booking_id, actor)
    return booking_view(booking, actor)


@router.post("/bookings/{booking_id}/cancel", tags=["Bookings"])
async def cancel_booking(
    booking_id: str,
    request: Optional[CancelBookingRequest] = None,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
) -> dict[str, Any]:
    booking = await service.cancel_booking(booking_id, actor, request.reason if request else None)
    return booking_view(booking, actor)


@router.post("/bookings/{booking_id}/verify-otp", tags=["Bookings"])
async def verify_otp(
    booking_id: str,
    request: VerifyOtpRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
) -> dict[str, Any]:
    booking = await service.verify_otp(booking_id, request.otp, actor)
    return booking_view(booking, actor)


@router.post("/bookings/{booking_id}/assign", tags=["Bookings"])
async def assign_partner(
    booking_id: str,
    request: AssignPartnerRequest,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
) -> dict[str, Any]:
    booking = await service.assign_partner(booking_id, request.partner_id, actor)
    return booking_view(booking, actor)


@router.post("/bookings/{booking_id}/reoffer", tags=["Bookings"])
async def reoffer_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    service: BookingService = Depends(get_booking_service),
) -> dict[str, Any]:
    offered = await service.reoffer(booking_id, actor)
    return {"bookingId": booking_id, "offeredTo": offered}


# === СТАТУСЫ ПАРТНЁРА ===

@router.post("/bookings/{booking_id}/start", tags=["Partner"])
async def start_travel(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> dict[str, Any]:
    require_role(actor, ActorRole.PARTNER)
    booking = await lifecycle.start_travel(booking_id, actor.user_id)
    return booking_view(booking, actor)


@router.post("/bookings/{booking_id}/arrive", tags=["Partner"])
async def mark_arrived(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> dict[str, Any]:
    require_role(actor, ActorRole.PARTNER)
    booking = await lifecycle.mark_arrived(booking_id, actor.user_id)
    return booking_view(booking, actor)


@router.post("/bookings/{booking_id}/start-service", tags=["Partner"])
async def start_service(
    booking_id: str,
    request: Optional[StartServiceRequest] = None,
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> dict[str, Any]:
    require_role(actor, ActorRole.PARTNER)
    booking = await lifecycle.start_service(booking_id, actor.user_id, request.otp if request else None)
    return booking_view(booking, actor)


@router.post("/bookings/{booking_id}/complete", tags=["Partner"])
async def complete_booking(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> dict[str, Any]:
    require_role(actor, ActorRole.PARTNER)
    booking = await lifecycle.complete(booking_id, actor.user_id)
    return booking_view(booking, actor)


@router.patch("/bookings/{booking_id}/status", tags=["Partner"])
async def update_status(
    booking_id: str,
    request: StatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> dict[str, Any]:
    require_role(actor, ActorRole.PARTNER)
    booking = await lifecycle.update_status_by_partner(booking_id, actor.user_id, request.status, request.otp)
    return booking_view(booking, actor)


@router.post("/bookings/{booking_id}/location", tags=["Partner"])
async def update_location(
    booking_id: str,
    request: LocationUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    lifecycle: BookingLifecycle = Depends(get_lifecycle),
) -> dict[str, Any]:
    require_role(actor, ActorRole.PARTNER)
    booking = await lifecycle.update_live_location(
        booking_id, actor.user_id, request.latitude, request.longitude
    )
    return booking_view(booking, actor)


@router.get("/partners/me/earnings", response_model=PartnerEarnings, tags=["Partner"])
async def get_earnings(
    actor: Actor = Depends(get_current_actor),
    partners: PartnerService = Depends(get_partner_service),
) -> PartnerEarnings:
    """Заработок партнёра по завершённым заказам."""
    require_role(actor, ActorRole.PARTNER)
    return await partners.get_earnings(actor)


# === PAYMENTS ===

@router.get("/bookings/{booking_id}/payment", tags=["Payments"])
async def get_payment(
    booking_id: str,
    actor: Actor = Depends(get_current_actor),
    bookings: BookingService = Depends(get_booking_service),
    ledger: PaymentLedgerService = Depends(get_ledger),
) -> dict[str, Any]:
    await bookings.get_booking(booking_id, actor)
    split = await ledger.get_split(booking_id)
    return split.model_dump(mode="json")


@router.post("/bookings/{booking_id}/payment/collect", tags=["Payments"])
async def collect_payment(
    booking_id: str,
    request: CollectPaymentRequest,
    actor: Actor = Depends(get_current_actor),
    ledger: PaymentLedgerService = Depends(get_ledger),
) -> dict[str, Any]:
    require_role(actor, ActorRole.PARTNER)
    split = await ledger.collect_payment(
        booking_id,
        actor.user_id,
        request.mode,
        online_amount=request.online_amount,
        cash_amount=request.cash_amount,
        transaction_ref=request.transaction_ref,
    )
    return split.model_dump(mode="json")


@router.post("/bookings/{booking_id}/payment/verify", tags=["Payments"])
async def verify_payment(
    booking_id: str,
    request: VerifyOnlinePaymentRequest,
    actor: Actor = Depends(get_current_actor),
    bookings: BookingService = Depends(get_booking_service),
    ledger: PaymentLedgerService = Depends(get_ledger),
) -> dict[str, Any]:
    await bookings.get_booking(booking_id, actor)
    split = await ledger.verify_online_payment(
        booking_id,
        request.order_id,
        request.payment_id,
        request.signature,
        request.amount,
    )
    return split.model_dump(mode="json")


@router.post("/bookings/{booking_id}/payment/failed", tags=["Payments"])
async def payment_failed(
    booking_id: str,
    request: Optional[PaymentFailedRequest] = None,
    actor: Actor = Depends(get_current_actor),
    bookings: BookingService = Depends(get_booking_service),
    ledger: PaymentLedgerService = Depends(get_ledger),
) -> dict[str, Any]:
    await bookings.get_booking(booking_id, actor)
    booking = await ledger.mark_payment_failed(booking_id, request.reason if request else None)
    return booking_view(booking, actor)


# === PROFILE / COUPONS ===

@router.patch("/profile", tags=["Profile"])
async def update_profile(
    changes: dict[str, Any] = Body(...),
    actor: Actor = Depends(get_current_actor),
    profiles: ProfileService = Depends(get_profile_service),
) -> dict[str, Any]:
    profile = await profiles.update_profile(actor, changes)
    return profile.model_dump(mode="json")


@router.post("/coupons/apply", response_model=ApplyCouponResponse, tags=["Coupons"])
async def apply_coupon(
    request: ApplyCouponRequest,
    actor: Actor = Depends(get_current_actor),
    coupons: CouponService = Depends(get_coupon_service),
) -> ApplyCouponResponse:
    """Предварительный расчёт скидки. Использование купона не списывается."""
    applied = await coupons.resolve(request.code, order_amount=request.order_amount, pincode=request.pincode)
    return ApplyCouponResponse(code=applied.coupon.code, discount=applied.discount, new_total=applied.new_total)
