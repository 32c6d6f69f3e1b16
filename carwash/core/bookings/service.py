# carwash/core/bookings/service.py
"""
Сервис бронирований: создание, чтение, отмена и операции админа.

Переходы статусов делегируются BookingLifecycle, рассылка партнёрам
выполняется через DispatchService.
"""

from __future__ import annotations

from typing import Optional

from carwash.common.constants import ActorRole, BookingStatus, PaymentType, RealtimeEvent, TypeMsg
from carwash.common.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from carwash.common.logger import log_error, log_info
from carwash.core.auth.tokens import Actor
from carwash.core.bookings.cache import BookingCache
from carwash.core.bookings.lifecycle import BookingLifecycle
from carwash.core.bookings.models import (
    Booking,
    CreateBookingRequest,
    ServiceLocation,
    utc_now,
)
from carwash.core.bookings.pricing import (
    calculate_pricing,
    combine_schedule,
    estimate_completion,
    extract_pincode,
    format_booking_id,
    generate_otp,
)
from carwash.core.bookings.repository import BookingRepository
from carwash.core.catalog.repository import CatalogRepository
from carwash.core.coupons.models import AppliedCoupon
from carwash.core.coupons.service import CouponService
from carwash.core.customers.repository import CustomerRepository
from carwash.core.dispatch.service import DispatchService
from carwash.core.notifications.push import PushNotificationSender
from carwash.core.payments.gateway import PaymentGateway
from carwash.core.payments.models import PaymentSplit, resolve_status
from carwash.core.payments.repository import PaymentSplitRepository
from carwash.infra.database import DatabaseManager
from carwash.infra.event_bus import DomainEvent, EventBus, EventTypes


class BookingService:
    """Сервис бронирований."""

    def __init__(
        self,
        db: DatabaseManager,
        bookings: BookingRepository,
        catalog: CatalogRepository,
        customers: CustomerRepository,
        payments: PaymentSplitRepository,
        coupons: CouponService,
        lifecycle: BookingLifecycle,
        dispatch: DispatchService,
        gateway: PaymentGateway,
        *,
        cache: BookingCache | None = None,
        event_bus: EventBus | None = None,
        push: PushNotificationSender | None = None,
        id_prefix: str = "MWG",
        id_pad: int = 5,
        timezone_name: str = "Asia/Kolkata",
    ) -> None:
        self._db = db
        self._bookings = bookings
        self._catalog = catalog
        self._customers = customers
        self._payments = payments
        self._coupons = coupons
        self._lifecycle = lifecycle
        self._dispatch = dispatch
        self._gateway = gateway
        self._cache = cache or BookingCache(None)
        self._event_bus = event_bus
        self._push = push
        self._id_prefix = id_prefix
        self._id_pad = id_pad
        self._tz = timezone_name

    # =========================================================================
    # СОЗДАНИЕ
    # =========================================================================

    async def create_booking(self, customer_id: str, request: CreateBookingRequest) -> Booking:
        """
        Создаёт бронирование в статусе pending и рассылает его партнёрам.

        Вся проверка входных данных выполняется до транзакции. В
        транзакции списывается купон, выдаётся номер и вставляются
        бронирование и запись оплаты; любая ошибка откатывает всё.
        После коммита бронирование существует, и сбои уведомлений его
        не отменяют.

        Raises:
            ValidationError: неполный запрос, чужой автомобиль, нет индекса в адресе,
                неизвестные услуги, неверный купон или подпись платежа
            ConflictError: лимит использований купона исчерпан
        """
        if not request.service_ids:
            raise ValidationError("At least one service is required")
        if not request.vehicle_id:
            raise ValidationError("Vehicle is required")
        if request.scheduled_date is None or not request.scheduled_time:
            raise ValidationError("Scheduled date and time are required")

        location = await self._resolve_location(customer_id, request)

        vehicle = await self._customers.get_vehicle(customer_id, request.vehicle_id)
        if vehicle is None:
            raise ValidationError(
                "Vehicle does not belong to customer",
                details={"vehicle_id": request.vehicle_id},
            )

        scheduled_at = combine_schedule(request.scheduled_date, request.scheduled_time, self._tz)

        services = await self._catalog.get_snapshots(request.service_ids)
        missing = [sid for sid in request.service_ids if sid not in {s.service_id for s in services}]
        if missing:
            raise ValidationError("Unknown services", details={"service_ids": missing})

        pricing = calculate_pricing(services)
        applied: Optional[AppliedCoupon] = None
        if request.coupon_code:
            applied = await self._coupons.resolve(
                request.coupon_code,
                order_amount=pricing.total,
                pincode=location.pincode,
            )
            pricing = calculate_pricing(services, extra_discount=applied.discount)

        proof = request.online_payment
        if proof is not None:
            if request.payment_type != PaymentType.PAY_ONLINE:
                raise ValidationError("Online payment proof requires payment type 'pay online'")
            if not self._gateway.verify_signature(proof.order_id, proof.payment_id, proof.signature):
                raise ValidationError("Invalid payment signature")

        async with self._db.transaction() as conn:
            if applied is not None:
                await self._coupons.redeem(applied.coupon, customer_id, conn=conn)

            number = await self._bookings.next_booking_number(conn=conn)
            now = utc_now()
            booking = Booking(
                booking_id=format_booking_id(number, self._id_prefix, self._id_pad),
                customer_id=customer_id,
                vehicle_id=vehicle.id,
                services=services,
                location=location,
                scheduled_date=request.scheduled_date,
                scheduled_time=scheduled_at.strftime("%H:%M"),
                scheduled_at=scheduled_at,
                estimated_completion=estimate_completion(scheduled_at, services),
                otp=generate_otp(),
                pricing=pricing,
                coupon_code=applied.coupon.code if applied else None,
                payment_type=request.payment_type,
                payment_mode=request.payment_mode,
                notes=request.notes,
                created_at=now,
                updated_at=now,
            )
            await self._bookings.create(booking, conn=conn)

            split = PaymentSplit(booking_id=booking.booking_id)
            if proof is not None:
                split.online_amount = pricing.total
                split.online_transaction_ref = proof.payment_id
                split.online_collected_at = now
            split.status = resolve_status(split.online_amount, split.cash_amount, pricing.total)
            await self._payments.save(split, conn=conn)

        await log_info(
            f"[Booking] Создано {booking.booking_id} клиентом {customer_id}: "
            f"{len(services)} услуг, итог {pricing.total}, индекс {location.pincode}",
            type_msg=TypeMsg.INFO,
        )
        await self._after_create(booking)
        return booking

    async def _resolve_location(self, customer_id: str, request: CreateBookingRequest) -> ServiceLocation:
        """Сохранённый адрес клиента либо свободный адрес с координатами."""
        if request.delivery_address_id:
            saved = await self._customers.get_delivery_address(customer_id, request.delivery_address_id)
            if saved is None:
                raise ValidationError(
                    "Delivery address not found",
                    details={"delivery_address_id": request.delivery_address_id},
                )
            pincode = saved.postal_code or extract_pincode(saved.address)
            if not pincode or not pincode.isdigit() or len(pincode) != 6:
                raise ValidationError("Saved address has no valid 6-digit pincode")
            return ServiceLocation(
                address=saved.address,
                pincode=pincode,
                latitude=saved.latitude if saved.latitude is not None else request.latitude,
                longitude=saved.longitude if saved.longitude is not None else request.longitude,
                delivery_address_id=saved.id,
            )

        if not request.address or request.latitude is None or request.longitude is None:
            raise ValidationError("Either a saved address or an address with coordinates is required")

        pincode = extract_pincode(request.address)
        if pincode is None:
            raise ValidationError("Address must contain a valid 6-digit pincode")
        try:
            return ServiceLocation(
                address=request.address,
                pincode=pincode,
                latitude=request.latitude,
                longitude=request.longitude,
            )
        except ValueError as e:
            raise ValidationError("Invalid coordinates") from e

    async def _after_create(self, booking: Booking) -> None:
        """Побочные эффекты после коммита: ни один из них не отменяет бронирование."""
        await self._cache.set(booking)

        if self._event_bus is not None:
            await self._event_bus.publish(DomainEvent(
                event_type=EventTypes.BOOKING_CREATED,
                payload={
                    "booking_id": booking.booking_id,
                    "customer_id": booking.customer_id,
                    "pincode": booking.location.pincode,
                    "total": booking.pricing.total,
                },
            ))

        try:
            await self._dispatch.offer(booking)
        except Exception as e:
            await log_error(f"[Booking] Ошибка рассылки {booking.booking_id}: {e}", exc_info=True)

        if self._push is not None:
            try:
                customer = await self._customers.get(booking.customer_id)
                if customer is not None and customer.push_token:
                    await self._push.send(
                        customer.push_token,
                        "Booking Created",
                        f"Your booking {booking.booking_id} has been placed",
                        {"bookingId": booking.booking_id, "type": RealtimeEvent.BOOKING_STATUS_UPDATE},
                    )
            except Exception as e:
                await log_error(f"[Booking] Ошибка push клиенту по {booking.booking_id}: {e}")

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_booking(self, booking_id: str, actor: Actor) -> Booking:
        """
        Бронирование с проверкой доступа: владелец, назначенный партнёр,
        админ или франшиза филиала.
        """
        booking = await self._cache.get(booking_id)
        if booking is None:
            booking = await self._bookings.get(booking_id)
            if booking is None:
                raise NotFoundError("Booking not found", details={"booking_id": booking_id})
            await self._cache.set(booking)

        if not self.can_view(booking, actor):
            raise UnauthorizedError("Not allowed to view this booking")
        return booking

    @staticmethod
    def can_view(booking: Booking, actor: Actor) -> bool:
        match actor.role:
            case ActorRole.ADMIN:
                return True
            case ActorRole.CUSTOMER:
                return booking.customer_id == actor.user_id
            case ActorRole.PARTNER:
                return booking.partner_id == actor.user_id
            case ActorRole.FRANCHISE:
                return booking.branch_id is None or booking.branch_id == actor.franchise_id
        return False

    async def list_customer_bookings(self, actor: Actor, limit: int = 20, offset: int = 0) -> list[Booking]:
        if actor.role != ActorRole.CUSTOMER:
            raise UnauthorizedError("Only customers have customer bookings")
        return await self._bookings.list_by_customer(actor.user_id, limit=limit, offset=offset)

    async def list_partner_bookings(self, actor: Actor, limit: int = 20, offset: int = 0) -> list[Booking]:
        if actor.role != ActorRole.PARTNER:
            raise UnauthorizedError("Only partners have partner bookings")
        return await self._bookings.list_by_partner(actor.user_id, limit=limit, offset=offset)

    # =========================================================================
    # ИЗМЕНЕНИЕ
    # =========================================================================

    async def cancel_booking(self, booking_id: str, actor: Actor, reason: str | None = None) -> Booking:
        """Отменяет бронирование и отзывает активное предложение партнёрам."""
        booking = await self._lifecycle.cancel(booking_id, actor, reason)
        await self._dispatch.withdraw(booking_id)
        return booking

    async def verify_otp(self, booking_id: str, otp: str, actor: Actor) -> Booking:
        """Альтернативное подтверждение по OTP; активное предложение больше не нужно."""
        booking = await self._lifecycle.verify_otp(booking_id, otp, actor)
        await self._dispatch.withdraw(booking_id)
        return booking

    async def assign_partner(self, booking_id: str, partner_id: str, actor: Actor) -> Booking:
        booking = await self._lifecycle.assign_partner(booking_id, partner_id, actor)
        await self._dispatch.withdraw(booking_id, except_partner=partner_id)
        return booking

    async def reoffer(self, booking_id: str, actor: Actor) -> int:
        """
        Повторная рассылка ожидающего бронирования (админ или франшиза).

        Returns:
            Число партнёров, которым предложен заказ
        """
        if not actor.is_privileged:
            raise UnauthorizedError("Only admin or franchise can re-offer bookings")

        booking = await self._bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", details={"booking_id": booking_id})
        if booking.status != BookingStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot re-offer a booking in status '{booking.status.value}'",
                details={"booking_id": booking_id, "status": booking.status.value},
            )

        offer = await self._dispatch.offer(booking)
        return len(offer.offered_to) if offer else 0
