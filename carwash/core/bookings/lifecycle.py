# carwash/core/bookings/lifecycle.py
"""
Переходы статусов бронирования с побочными эффектами.

Единственное место, где меняются booking.status и пара полей партнёра
(is_available, current_booking_id). Каждый переход:

1. проверяется по таблице BookingStateMachine;
2. применяется условным UPDATE в транзакции вместе с захватом или
   освобождением партнёра;
3. после коммита инвалидирует кэш, уведомляет канал бронирования,
   публикует доменное событие и (для части статусов) шлёт push клиенту.

Ошибки шага 3 логируются и не откатывают переход.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Optional

from carwash.common.constants import (
    ActorRole,
    BookingStatus,
    PaymentSplitStatus,
    RealtimeEvent,
    TypeMsg,
)
from carwash.common.exceptions import (
    CancellationWindowExpiredError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from carwash.common.logger import log_error, log_info, log_warning
from carwash.core.auth.tokens import Actor
from carwash.core.bookings.cache import BookingCache
from carwash.core.bookings.models import Booking, LiveLocation, utc_now
from carwash.core.bookings.repository import BookingRepository
from carwash.core.bookings.state_machine import BookingEvent, BookingStateMachine
from carwash.core.customers.repository import CustomerRepository
from carwash.core.notifications.push import PushNotificationSender
from carwash.core.notifications.realtime import RealtimeNotifier
from carwash.core.partners.repository import PartnerRepository
from carwash.core.payments.repository import PaymentSplitRepository
from carwash.infra.database import DatabaseManager
from carwash.infra.event_bus import DomainEvent, EventBus, EventTypes

# Статусы, в которых партнёр работает по заказу
ACTIVE_STATUSES = (
    BookingStatus.CONFIRMED,
    BookingStatus.ENROUTE,
    BookingStatus.ARRIVED,
    BookingStatus.IN_PROGRESS,
)

STATUS_MESSAGES: dict[BookingStatus, str] = {
    BookingStatus.CONFIRMED: "Your booking has been confirmed",
    BookingStatus.ENROUTE: "Your partner is on the way",
    BookingStatus.ARRIVED: "Your partner has arrived",
    BookingStatus.IN_PROGRESS: "Your service has started",
    BookingStatus.COMPLETED: "Your service is completed",
    BookingStatus.CANCELLED: "Your booking has been cancelled",
    BookingStatus.EXPIRED: "No partner accepted your booking in time",
    BookingStatus.FAILED: "Payment for your booking failed",
}

# Статусы, о которых клиент получает push
CUSTOMER_PUSH_TITLES: dict[BookingStatus, str] = {
    BookingStatus.CONFIRMED: "Booking Confirmed",
    BookingStatus.ARRIVED: "Partner Arrived",
    BookingStatus.COMPLETED: "Service Completed",
    BookingStatus.CANCELLED: "Booking Cancelled",
    BookingStatus.EXPIRED: "Booking Expired",
}


class BookingLifecycle:
    """Применение переходов машины состояний."""

    def __init__(
        self,
        db: DatabaseManager,
        bookings: BookingRepository,
        partners: PartnerRepository,
        payments: PaymentSplitRepository,
        customers: CustomerRepository,
        notifier: RealtimeNotifier,
        *,
        cache: BookingCache | None = None,
        event_bus: EventBus | None = None,
        push: PushNotificationSender | None = None,
        cancellation_grace_minutes: int = 10,
    ) -> None:
        self._db = db
        self._bookings = bookings
        self._partners = partners
        self._payments = payments
        self._customers = customers
        self._notifier = notifier
        self._cache = cache or BookingCache(None)
        self._event_bus = event_bus
        self._push = push
        self._grace = timedelta(minutes=cancellation_grace_minutes)

    # =========================================================================
    # ПОДТВЕРЖДЕНИЕ
    # =========================================================================

    async def confirm_by_partner(
        self,
        booking_id: str,
        partner_id: str,
        *,
        latitude: float | None = None,
        longitude: float | None = None,
    ) -> Booking:
        """
        Партнёр принял предложение: pending -> confirmed и захват партнёра.

        Raises:
            NotFoundError: нет бронирования или партнёра
            InvalidTransitionError: бронирование уже не pending
            ConflictError: у партнёра уже есть текущий заказ
        """
        partner = await self._partners.get(partner_id)
        if partner is None:
            raise NotFoundError("Partner not found", details={"partner_id": partner_id})
        booking = await self._require(booking_id)

        now = utc_now()
        fields: dict[str, Any] = {
            "partner_id": partner.id,
            "branch_id": partner.franchise_id or booking.branch_id,
            "confirmed_at": now,
        }
        if latitude is not None and longitude is not None:
            fields.update(
                partner_live_latitude=latitude,
                partner_live_longitude=longitude,
                partner_live_updated_at=now,
            )
        return await self._transition(booking, BookingEvent.ACCEPT, fields=fields, claim=partner.id)

    async def verify_otp(self, booking_id: str, otp: str, actor: Actor) -> Booking:
        """Альтернативное подтверждение по OTP: pending -> confirmed."""
        booking = await self._require(booking_id)
        if not (actor.is_privileged or (actor.role == ActorRole.CUSTOMER and actor.user_id == booking.customer_id)):
            raise UnauthorizedError("Not allowed to verify OTP for this booking")

        BookingStateMachine.resolve(booking.status, BookingEvent.VERIFY_OTP)
        self._check_otp(booking, otp)

        now = utc_now()
        return await self._transition(
            booking,
            BookingEvent.VERIFY_OTP,
            fields={"otp": None, "otp_verified_at": now, "confirmed_at": now},
            actor=actor,
        )

    async def assign_partner(self, booking_id: str, partner_id: str, actor: Actor) -> Booking:
        """
        Ручное назначение партнёра админом или франшизой.

        Допустимо для pending и для confirmed без партнёра (после OTP-подтверждения).
        """
        if not actor.is_privileged:
            raise UnauthorizedError("Only admin or franchise can assign partners")

        partner = await self._partners.get(partner_id)
        if partner is None:
            raise NotFoundError("Partner not found", details={"partner_id": partner_id})
        if actor.role == ActorRole.FRANCHISE and partner.franchise_id != actor.franchise_id:
            raise UnauthorizedError("Partner does not belong to your franchise")

        booking = await self._require(booking_id)
        if booking.partner_id is not None:
            raise InvalidTransitionError(
                "Booking already has a partner",
                details={"booking_id": booking_id, "partner_id": booking.partner_id},
            )

        return await self._transition(
            booking,
            BookingEvent.ASSIGN,
            fields={
                "partner_id": partner.id,
                "branch_id": partner.franchise_id or booking.branch_id,
                "confirmed_at": booking.confirmed_at or utc_now(),
            },
            claim=partner.id,
            require_no_partner=True,
            actor=actor,
        )

    # =========================================================================
    # ВЫПОЛНЕНИЕ ЗАКАЗА
    # =========================================================================

    async def start_travel(self, booking_id: str, partner_id: str) -> Booking:
        booking = await self._require(booking_id)
        self._ensure_assigned(booking, partner_id)
        return await self._transition(
            booking, BookingEvent.START_TRAVEL, fields={"travel_started_at": utc_now()}
        )

    async def mark_arrived(self, booking_id: str, partner_id: str) -> Booking:
        booking = await self._require(booking_id)
        self._ensure_assigned(booking, partner_id)
        return await self._transition(
            booking, BookingEvent.MARK_ARRIVED, fields={"arrived_at": utc_now()}
        )

    async def start_service(self, booking_id: str, partner_id: str, otp: str | None) -> Booking:
        """
        Начало работ на месте: arrived -> in-progress по OTP клиента.

        Если OTP уже погашен альтернативным подтверждением, повторный ввод
        не требуется.
        """
        booking = await self._require(booking_id)
        self._ensure_assigned(booking, partner_id)
        BookingStateMachine.resolve(booking.status, BookingEvent.START_SERVICE)

        now = utc_now()
        fields: dict[str, Any] = {"service_started_at": now}
        if booking.otp is not None:
            self._check_otp(booking, otp)
            fields.update(otp=None, otp_verified_at=now)

        return await self._transition(booking, BookingEvent.START_SERVICE, fields=fields)

    async def complete(self, booking_id: str, partner_id: str | None = None) -> Booking:
        """
        in-progress -> completed, только при полностью собранной оплате.
        Освобождает партнёра.

        Args:
            partner_id: Партнёр-инициатор; None, если завершение вызвано учётом оплаты
        """
        booking = await self._require(booking_id)
        if partner_id is not None:
            self._ensure_assigned(booking, partner_id)
        BookingStateMachine.resolve(booking.status, BookingEvent.COMPLETE)

        split = await self._payments.get(booking_id)
        if split is None or split.status != PaymentSplitStatus.COMPLETED:
            raise InvalidTransitionError(
                "Payment is not completed for this booking",
                details={
                    "booking_id": booking_id,
                    "payment_status": split.status.value if split else PaymentSplitStatus.PENDING.value,
                },
            )

        return await self._transition(
            booking, BookingEvent.COMPLETE, fields={"completed_at": utc_now()}, release=True
        )

    async def update_status_by_partner(
        self,
        booking_id: str,
        partner_id: str,
        status: str,
        otp: str | None = None,
    ) -> Booking:
        """Маршрутизация события updateBookingStatus от партнёра."""
        try:
            target = BookingStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown booking status '{status}'") from None

        match target:
            case BookingStatus.ENROUTE:
                return await self.start_travel(booking_id, partner_id)
            case BookingStatus.ARRIVED:
                return await self.mark_arrived(booking_id, partner_id)
            case BookingStatus.IN_PROGRESS:
                return await self.start_service(booking_id, partner_id, otp)
            case BookingStatus.COMPLETED:
                return await self.complete(booking_id, partner_id)
            case BookingStatus.CANCELLED:
                raise UnauthorizedError("Partners cannot cancel bookings")
            case _:
                raise ValidationError(f"Status '{status}' cannot be set by a partner")

    async def update_live_location(
        self,
        booking_id: str,
        partner_id: str,
        latitude: float,
        longitude: float,
    ) -> Booking:
        """Обновляет позицию партнёра по активному заказу и рассылает liveTracking."""
        location = LiveLocation(latitude=latitude, longitude=longitude)
        updated = await self._bookings.update_live_location(
            booking_id, partner_id, location, active_statuses=ACTIVE_STATUSES
        )
        if updated is None:
            booking = await self._require(booking_id)
            self._ensure_assigned(booking, partner_id)
            raise InvalidTransitionError(
                f"Cannot track location of a booking in status '{booking.status.value}'",
                details={"booking_id": booking_id, "status": booking.status.value},
            )

        await self._partners.update_live_location(partner_id, latitude, longitude)
        await self._cache.invalidate(booking_id)
        await self._safe_to_booking(
            booking_id,
            RealtimeEvent.LIVE_TRACKING,
            {
                "bookingId": booking_id,
                "partnerId": partner_id,
                "latitude": latitude,
                "longitude": longitude,
                "updatedAt": location.updated_at.isoformat(),
            },
        )
        return updated

    # =========================================================================
    # ОТМЕНА, ИСТЕЧЕНИЕ, ОШИБКА ОПЛАТЫ
    # =========================================================================

    async def cancel(self, booking_id: str, actor: Actor, reason: str | None = None) -> Booking:
        """
        Отмена бронирования.

        Клиент может отменить своё бронирование в течение окна после
        создания; админ в любое время; франшиза в любое время, но только
        заказы своего филиала или ещё не назначенные. Партнёр отменять не может.
        """
        booking = await self._require(booking_id)
        if booking.is_terminal:
            raise InvalidTransitionError(
                f"Cannot cancel a booking in status '{booking.status.value}'",
                details={"booking_id": booking_id, "status": booking.status.value},
            )

        match actor.role:
            case ActorRole.CUSTOMER:
                if actor.user_id != booking.customer_id:
                    raise UnauthorizedError("Not allowed to cancel this booking")
                if utc_now() - booking.created_at > self._grace:
                    raise CancellationWindowExpiredError(
                        "Cancellation window has expired",
                        details={
                            "booking_id": booking_id,
                            "grace_minutes": int(self._grace.total_seconds() // 60),
                        },
                    )
            case ActorRole.FRANCHISE:
                if booking.branch_id is not None and booking.branch_id != actor.franchise_id:
                    raise UnauthorizedError("Booking belongs to another franchise")
            case ActorRole.ADMIN:
                pass
            case _:
                raise UnauthorizedError("Not allowed to cancel this booking")

        return await self._transition(
            booking,
            BookingEvent.CANCEL,
            fields={
                "cancelled_by": actor.user_id,
                "cancelled_by_role": actor.role.value,
                "cancellation_reason": reason,
                "cancelled_at": utc_now(),
            },
            release=True,
            actor=actor,
        )

    async def expire(self, booking_id: str) -> Optional[Booking]:
        """
        Истечение предложения: pending -> expired.

        Returns:
            Обновлённое бронирование или None, если оно уже не pending
        """
        booking = await self._bookings.get(booking_id)
        if booking is None or booking.status != BookingStatus.PENDING:
            return None
        try:
            return await self._transition(booking, BookingEvent.EXPIRE)
        except InvalidTransitionError:
            # Успели принять или отменить между чтением и записью
            return None

    async def mark_failed(self, booking_id: str, reason: str | None = None) -> Booking:
        """Ошибка оплаты: pending -> failed."""
        booking = await self._require(booking_id)
        return await self._transition(booking, BookingEvent.FAIL, extra_payload={"reason": reason})

    # =========================================================================
    # ВНУТРЕННЕЕ
    # =========================================================================

    async def _require(self, booking_id: str) -> Booking:
        booking = await self._bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", details={"booking_id": booking_id})
        return booking

    @staticmethod
    def _ensure_assigned(booking: Booking, partner_id: str) -> None:
        if booking.partner_id is None or booking.partner_id != partner_id:
            raise UnauthorizedError(
                "Only the assigned partner can update this booking",
                details={"booking_id": booking.booking_id},
            )

    @staticmethod
    def _check_otp(booking: Booking, otp: str | None) -> None:
        if booking.otp is None:
            raise ValidationError("OTP already used", details={"booking_id": booking.booking_id})
        if not otp or otp.strip() != booking.otp:
            raise ValidationError("Invalid OTP", details={"booking_id": booking.booking_id})

    async def _transition(
        self,
        booking: Booking,
        event: BookingEvent,
        *,
        fields: dict[str, Any] | None = None,
        claim: str | None = None,
        release: bool = False,
        require_no_partner: bool = False,
        actor: Actor | None = None,
        extra_payload: dict[str, Any] | None = None,
    ) -> Booking:
        target = BookingStateMachine.resolve(booking.status, event)

        async with self._db.transaction() as conn:
            updated = await self._bookings.update_status(
                booking.booking_id,
                expected=[booking.status],
                new_status=target,
                fields=fields,
                require_no_partner=require_no_partner,
                conn=conn,
            )
            if updated is None:
                raise InvalidTransitionError(
                    "Booking was modified concurrently",
                    details={"booking_id": booking.booking_id, "expected_status": booking.status.value},
                )

            if claim is not None:
                if not await self._partners.claim(claim, booking.booking_id, conn=conn):
                    raise ConflictError(
                        "Partner already has an active booking",
                        details={"partner_id": claim, "booking_id": booking.booking_id},
                    )

            if release and booking.partner_id:
                released = await self._partners.release(booking.partner_id, booking.booking_id, conn=conn)
                if not released:
                    await log_warning(
                        f"[Lifecycle] Партнёр {booking.partner_id} уже не привязан к {booking.booking_id}, "
                        f"освобождение пропущено"
                    )

        await log_info(
            f"[Lifecycle] {booking.booking_id}: {booking.status.value} -> {target.value} ({event.value})",
            type_msg=TypeMsg.INFO,
        )
        await self._after_transition(booking.status, updated, event, actor, extra_payload)
        return updated

    async def _after_transition(
        self,
        previous: BookingStatus,
        booking: Booking,
        event: BookingEvent,
        actor: Actor | None,
        extra_payload: dict[str, Any] | None,
    ) -> None:
        await self._cache.invalidate(booking.booking_id)

        message = STATUS_MESSAGES.get(booking.status, "")
        await self._safe_to_booking(
            booking.booking_id,
            RealtimeEvent.BOOKING_STATUS_UPDATE,
            {
                "bookingId": booking.booking_id,
                "status": booking.status.value,
                "message": message,
                "timestamp": booking.updated_at.isoformat(),
            },
        )
        if booking.status == BookingStatus.CONFIRMED:
            await self._safe_to_booking(
                booking.booking_id,
                RealtimeEvent.BOOKING_CONFIRMED,
                {"bookingId": booking.booking_id, "partnerId": booking.partner_id, "message": message},
            )
        if event == BookingEvent.ASSIGN and booking.partner_id:
            # Назначенный вручную партнёр не подписан на канал бронирования
            try:
                await self._notifier.to_partner(
                    booking.partner_id,
                    RealtimeEvent.BOOKING_STATUS_UPDATE,
                    {
                        "bookingId": booking.booking_id,
                        "status": booking.status.value,
                        "message": "A booking has been assigned to you",
                    },
                )
            except Exception as e:
                await log_error(f"[Lifecycle] Ошибка уведомления партнёра {booking.partner_id}: {e}")

        if self._event_bus is not None:
            await self._event_bus.publish(DomainEvent(
                event_type=EventTypes.BOOKING_STATUS_CHANGED,
                payload={
                    "booking_id": booking.booking_id,
                    "customer_id": booking.customer_id,
                    "partner_id": booking.partner_id,
                    "from_status": previous.value,
                    "to_status": booking.status.value,
                    "event": event.value,
                    "actor_id": actor.user_id if actor else None,
                    "actor_role": actor.role.value if actor else None,
                    **(extra_payload or {}),
                },
            ))

        title = CUSTOMER_PUSH_TITLES.get(booking.status)
        if title is not None:
            await self._push_customer(booking, title, message)

    async def _safe_to_booking(self, booking_id: str, event: str, data: dict[str, Any]) -> None:
        try:
            await self._notifier.to_booking(booking_id, event, data)
        except Exception as e:
            await log_error(f"[Lifecycle] Ошибка realtime-уведомления {event} для {booking_id}: {e}")

    async def _push_customer(self, booking: Booking, title: str, body: str) -> None:
        if self._push is None:
            return
        try:
            customer = await self._customers.get(booking.customer_id)
            if customer is None or not customer.push_token:
                return
            await self._push.send(
                customer.push_token,
                title,
                body,
                {"bookingId": booking.booking_id, "status": booking.status.value},
            )
        except Exception as e:
            await log_error(f"[Lifecycle] Ошибка push клиенту по {booking.booking_id}: {e}")
