# carwash/core/payments/service.py
"""
Учёт оплаты бронирования (PaymentSplit).

Суммы только накапливаются. Все изменения одной записи выполняются под
блокировкой строки бронирования (SELECT ... FOR UPDATE), поэтому
параллельные приёмы оплаты по одному заказу применяются по очереди.
"""

from __future__ import annotations

from typing import Optional

from carwash.common.constants import (
    BookingStatus,
    CollectionMode,
    PaymentSplitStatus,
    TypeMsg,
)
from carwash.common.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    OverpaymentError,
    UnauthorizedError,
    ValidationError,
)
from carwash.common.logger import log_info, log_warning
from carwash.core.bookings.lifecycle import BookingLifecycle
from carwash.core.bookings.models import MONEY_EPSILON, Booking, utc_now
from carwash.core.bookings.repository import BookingRepository
from carwash.core.partners.repository import PartnerRepository
from carwash.core.payments.gateway import PaymentGateway
from carwash.core.payments.models import PaymentSplit, resolve_status
from carwash.core.payments.repository import PaymentSplitRepository
from carwash.infra.database import DatabaseManager
from carwash.infra.event_bus import DomainEvent, EventBus, EventTypes


class PaymentLedgerService:
    """Сервис учёта оплаты."""

    def __init__(
        self,
        db: DatabaseManager,
        bookings: BookingRepository,
        payments: PaymentSplitRepository,
        partners: PartnerRepository,
        lifecycle: BookingLifecycle,
        gateway: PaymentGateway,
        *,
        event_bus: EventBus | None = None,
    ) -> None:
        self._db = db
        self._bookings = bookings
        self._payments = payments
        self._partners = partners
        self._lifecycle = lifecycle
        self._gateway = gateway
        self._event_bus = event_bus

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def get_split(self, booking_id: str) -> PaymentSplit:
        split = await self._payments.get(booking_id)
        if split is None:
            if await self._bookings.get(booking_id) is None:
                raise NotFoundError("Booking not found", details={"booking_id": booking_id})
            raise NotFoundError("Payment record not found", details={"booking_id": booking_id})
        return split

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def record_online_payment(
        self,
        booking_id: str,
        amount: float,
        transaction_ref: str | None = None,
    ) -> PaymentSplit:
        """Добавляет онлайн-платёж к записи бронирования."""
        return await self._record(booking_id, online=amount, transaction_ref=transaction_ref)

    async def record_cash_collection(
        self,
        booking_id: str,
        amount: float,
        collecting_partner_id: str,
    ) -> PaymentSplit:
        """
        Добавляет наличные, принятые партнёром.

        Raises:
            OverpaymentError: сумма превысила бы итог бронирования
        """
        return await self._record(booking_id, cash=amount, partner_id=collecting_partner_id)

    async def collect_payment(
        self,
        booking_id: str,
        partner_id: str,
        mode: CollectionMode,
        *,
        online_amount: float | None = None,
        cash_amount: float | None = None,
        transaction_ref: str | None = None,
    ) -> PaymentSplit:
        """
        Приём оплаты назначенным партнёром по заказу в работе.

        Режимы:
            full-online: остаток оплачен онлайн
            full-cash: остаток принят наличными
            split: онлайн-часть (может быть 0) + наличные (> 0)
        """
        booking = await self._bookings.get(booking_id)
        if booking is None:
            raise NotFoundError("Booking not found", details={"booking_id": booking_id})
        if booking.partner_id != partner_id:
            raise UnauthorizedError("Only the assigned partner can collect payment")
        if booking.status != BookingStatus.IN_PROGRESS:
            raise InvalidTransitionError(
                f"Cannot collect payment for a booking in status '{booking.status.value}'",
                details={"booking_id": booking_id, "status": booking.status.value},
            )

        current = await self._payments.get(booking_id)
        remaining = current.remaining(booking.pricing.total) if current else booking.pricing.total

        match mode:
            case CollectionMode.FULL_ONLINE:
                online, cash = remaining, 0.0
            case CollectionMode.FULL_CASH:
                online, cash = 0.0, remaining
            case CollectionMode.SPLIT:
                if cash_amount is None or cash_amount <= 0:
                    raise ValidationError("Cash amount is required for split payment")
                online, cash = online_amount or 0.0, cash_amount
            case _:
                raise ValidationError(f"Unknown payment mode '{mode}'")

        if online <= 0 and cash <= 0:
            raise ConflictError("Payment is already completed", details={"booking_id": booking_id})

        return await self._record(
            booking_id,
            online=online,
            cash=cash,
            transaction_ref=transaction_ref,
            partner_id=partner_id,
        )

    async def verify_online_payment(
        self,
        booking_id: str,
        order_id: str,
        payment_id: str,
        signature: str,
        amount: float,
    ) -> PaymentSplit:
        """
        Проверяет подпись шлюза и записывает онлайн-платёж.

        Raises:
            ValidationError: подпись не совпала
        """
        if not self._gateway.verify_signature(order_id, payment_id, signature):
            await log_warning(f"[Payments] Неверная подпись платежа {payment_id} по {booking_id}")
            raise ValidationError("Invalid payment signature", details={"booking_id": booking_id})
        return await self.record_online_payment(booking_id, amount, transaction_ref=payment_id)

    async def mark_payment_failed(self, booking_id: str, reason: str | None = None) -> Booking:
        """Онлайн-оплата не прошла: pending -> failed."""
        booking = await self._lifecycle.mark_failed(booking_id, reason)
        await self._publish(EventTypes.PAYMENT_FAILED, {"booking_id": booking_id, "reason": reason})
        return booking

    # =========================================================================
    # ВНУТРЕННЕЕ
    # =========================================================================

    async def _record(
        self,
        booking_id: str,
        *,
        online: float = 0.0,
        cash: float = 0.0,
        transaction_ref: str | None = None,
        partner_id: str | None = None,
    ) -> PaymentSplit:
        if online < 0 or cash < 0 or (online == 0 and cash == 0):
            raise ValidationError("Payment amount must be positive", details={"booking_id": booking_id})

        async with self._db.transaction() as conn:
            booking = await self._bookings.get(booking_id, for_update=True, conn=conn)
            if booking is None:
                raise NotFoundError("Booking not found", details={"booking_id": booking_id})

            split = await self._payments.get(booking_id, conn=conn) or PaymentSplit(booking_id=booking_id)
            total = booking.pricing.total

            if cash > 0 and split.collected + online + cash > total + MONEY_EPSILON:
                raise OverpaymentError(
                    "Payment exceeds booking total",
                    details={
                        "booking_id": booking_id,
                        "total": total,
                        "collected": split.collected,
                        "amount": round(online + cash, 2),
                    },
                )

            now = utc_now()
            if online > 0:
                split.online_amount = round(split.online_amount + online, 2)
                split.online_collected_at = now
                if transaction_ref:
                    split.online_transaction_ref = transaction_ref
            if cash > 0:
                split.cash_amount = round(split.cash_amount + cash, 2)
                split.cash_collected_at = now
                split.collected_by = partner_id

            previous_status = split.status
            split.status = resolve_status(split.online_amount, split.cash_amount, total)
            split.updated_at = now
            await self._payments.save(split, conn=conn)

            if cash > 0 and partner_id:
                await self._partners.add_cash_collected(partner_id, cash, conn=conn)

        await log_info(
            f"[Payments] {booking_id}: онлайн {split.online_amount}, наличные {split.cash_amount} "
            f"из {total} -> {split.status.value}",
            type_msg=TypeMsg.INFO,
        )
        await self._publish(EventTypes.PAYMENT_RECORDED, {
            "booking_id": booking_id,
            "online_amount": online,
            "cash_amount": cash,
            "status": split.status.value,
        })

        if split.status == PaymentSplitStatus.COMPLETED and previous_status != PaymentSplitStatus.COMPLETED:
            await self._publish(EventTypes.PAYMENT_COMPLETED, {"booking_id": booking_id, "total": total})
            await self._complete_booking(booking)

        return split

    async def _complete_booking(self, booking: Booking) -> Optional[Booking]:
        """
        Завершает заказ в работе после полной оплаты. Для заказов в других
        статусах завершение произойдёт позже, при обновлении статуса партнёром.
        """
        if booking.status != BookingStatus.IN_PROGRESS:
            return None
        try:
            return await self._lifecycle.complete(booking.booking_id)
        except InvalidTransitionError as e:
            await log_warning(f"[Payments] Не удалось завершить {booking.booking_id} после оплаты: {e.message}")
            return None

    async def _publish(self, event_type: str, payload: dict) -> None:
        if self._event_bus is not None:
            await self._event_bus.publish(DomainEvent(event_type=event_type, payload=payload))
