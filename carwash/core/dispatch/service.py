# carwash/core/dispatch/service.py
"""
Движок диспетчеризации заказов.

Новое бронирование рассылается одновременно всем онлайн-партнёрам,
обслуживающим его индекс. Первый принявший получает заказ, остальным
уходит bookingCancelled. Если никто не принял за OFFER_TIMEOUT_SECONDS,
бронирование переходит в expired.

Гонки разрешаются в два слоя:
- asyncio.Lock на предложение сериализует accept и истечение;
- условный UPDATE (pending -> confirmed, только если ещё pending)
  защищает от всего, что обходит движок.

Проигравший гонку получает no-op (False), а не исключение.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

from carwash.common.constants import BookingStatus, RealtimeEvent, TypeMsg
from carwash.common.exceptions import (
    CarWashError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
)
from carwash.common.logger import log_error, log_info, log_warning
from carwash.core.bookings.lifecycle import BookingLifecycle
from carwash.core.bookings.models import Booking
from carwash.core.bookings.repository import BookingRepository
from carwash.core.dispatch.offers import BookingOffer, OfferStore
from carwash.core.dispatch.registry import PartnerPresence, PartnerRegistry
from carwash.core.notifications.push import PushNotificationSender
from carwash.core.notifications.realtime import RealtimeNotifier
from carwash.core.partners.repository import PartnerRepository

ACCEPTED_MESSAGE = "Your partner is on the way!"


class DispatchService:
    """
    Рассылка предложений и разрешение гонки за заказ.

    Состояние (реестр и предложения) передаётся через интерфейсы
    PartnerRegistry и OfferStore.
    """

    def __init__(
        self,
        registry: PartnerRegistry,
        offers: OfferStore,
        lifecycle: BookingLifecycle,
        bookings: BookingRepository,
        partners: PartnerRepository,
        notifier: RealtimeNotifier,
        *,
        push: PushNotificationSender | None = None,
        offer_timeout_seconds: float = 60.0,
        push_offered_partners: bool = True,
        requeue_on_partner_online: bool = False,
        default_service_name: str = "Car Wash",
    ) -> None:
        self._registry = registry
        self._offers = offers
        self._lifecycle = lifecycle
        self._bookings = bookings
        self._partners = partners
        self._notifier = notifier
        self._push = push
        self._timeout = offer_timeout_seconds
        self._push_offered = push_offered_partners
        self._requeue = requeue_on_partner_online
        self._default_service_name = default_service_name

    @property
    def offer_timeout_seconds(self) -> float:
        return self._timeout

    async def close(self) -> None:
        """Отменяет все таймеры истечения (при остановке процесса)."""
        for offer in await self._offers.all():
            offer.closed = True
            self._cancel_timer(offer)

    # =========================================================================
    # РАССЫЛКА
    # =========================================================================

    async def offer(self, booking: Booking) -> Optional[BookingOffer]:
        """
        Рассылает бронирование подходящим партнёрам.

        Returns:
            Созданное (или уже активное) предложение, либо None, если
            подходящих партнёров онлайн нет
        """
        if booking.status != BookingStatus.PENDING:
            await log_warning(
                f"[Dispatch] {booking.booking_id} в статусе {booking.status.value}, рассылка пропущена"
            )
            return None

        existing = await self._offers.get(booking.booking_id)
        if existing is not None and existing.is_open:
            await log_info(f"[Dispatch] {booking.booking_id} уже разослан", type_msg=TypeMsg.DEBUG)
            return existing

        pincode = booking.location.pincode
        eligible = await self._registry.find_eligible(pincode)
        if not eligible:
            await log_warning(
                f"[Dispatch] Нет партнёров онлайн для индекса {pincode}, "
                f"{booking.booking_id} остаётся pending"
            )
            return None

        now = datetime.now(timezone.utc)
        offer = BookingOffer(
            booking_id=booking.booking_id,
            offered_to={p.partner_id for p in eligible},
            expires_at=now + timedelta(seconds=self._timeout),
        )
        await self._offers.add(offer)
        offer.timer = asyncio.create_task(self._expire_after(booking.booking_id, self._timeout))

        payload = self._offer_payload(booking)
        await asyncio.gather(*(self._send(p, RealtimeEvent.NEW_BOOKING, payload) for p in eligible))

        await log_info(
            f"[Dispatch] {booking.booking_id} разослан {len(eligible)} партнёрам (индекс {pincode})",
            type_msg=TypeMsg.INFO,
        )
        await self._push_partners(offer.offered_to, booking)
        return offer

    async def requeue_for_partner(self, presence: PartnerPresence) -> int:
        """
        Повторная рассылка ожидающих заказов партнёру, вышедшему онлайн.

        Активные предложения дополняются этим партнёром, для заказов без
        предложения создаётся новая рассылка.

        Returns:
            Сколько заказов предложено партнёру
        """
        if not self._requeue or not presence.pincodes:
            return 0

        pending = await self._bookings.list_pending_by_pincodes(presence.pincodes)
        offered = 0
        for booking in pending:
            existing = await self._offers.get(booking.booking_id)
            if existing is not None and existing.is_open:
                if presence.partner_id not in existing.offered_to:
                    existing.offered_to.add(presence.partner_id)
                    await self._send(presence, RealtimeEvent.NEW_BOOKING, self._offer_payload(booking))
                offered += 1
            elif await self.offer(booking) is not None:
                offered += 1

        if offered:
            await log_info(
                f"[Dispatch] Партнёру {presence.partner_id} повторно предложено заказов: {offered}",
                type_msg=TypeMsg.INFO,
            )
        return offered

    # =========================================================================
    # ОТВЕТЫ ПАРТНЁРОВ
    # =========================================================================

    async def accept(self, booking_id: str, partner_id: str) -> bool:
        """
        Партнёр принимает предложение. Побеждает первый.

        Returns:
            True, если этот партнёр получил заказ
        """
        offer = await self._offers.get(booking_id)
        if offer is None:
            await log_info(
                f"[Dispatch] accept {booking_id} от {partner_id}: предложения нет (принято или истекло)",
                type_msg=TypeMsg.DEBUG,
            )
            return False
        if partner_id not in offer.offered_to:
            await log_warning(f"[Dispatch] accept {booking_id} от {partner_id}: заказ ему не предлагался")
            return False

        async with offer.lock:
            if not offer.is_open:
                return False

            presence = await self._registry.get(partner_id)
            location = presence.location if presence else None
            try:
                await self._lifecycle.confirm_by_partner(
                    booking_id,
                    partner_id,
                    latitude=location.latitude if location else None,
                    longitude=location.longitude if location else None,
                )
            except ConflictError as e:
                # Партнёр занят другим заказом; предложение остаётся открытым для остальных
                await log_warning(f"[Dispatch] accept {booking_id} от {partner_id} отклонён: {e.message}")
                return False
            except (InvalidTransitionError, NotFoundError) as e:
                await log_warning(f"[Dispatch] {booking_id} больше нельзя принять: {e.message}")
                await self._close(offer)
                return False

            offer.accepted = True
            offer.accepted_by = partner_id
            await self._close(offer)

        losers = offer.offered_to - {partner_id}
        await self._notify_partners(losers, RealtimeEvent.BOOKING_CANCELLED, {"bookingId": booking_id})

        await self._safe_to_booking(
            booking_id,
            RealtimeEvent.BOOKING_ACCEPTED,
            {
                "partnerId": partner_id,
                "partnerName": presence.name if presence and presence.name else "Partner",
                "message": ACCEPTED_MESSAGE,
            },
        )

        await log_info(f"[Dispatch] {booking_id} принят партнёром {partner_id}", type_msg=TypeMsg.INFO)
        return True

    async def decline(self, booking_id: str, partner_id: str) -> None:
        """Партнёр отказывается; остальные по-прежнему могут принять."""
        offer = await self._offers.get(booking_id)
        if offer is None or not offer.is_open:
            return
        offer.offered_to.discard(partner_id)
        await log_info(f"[Dispatch] {partner_id} отказался от {booking_id}", type_msg=TypeMsg.DEBUG)

    async def withdraw(self, booking_id: str, *, except_partner: str | None = None) -> bool:
        """
        Отзывает предложение (бронирование отменено или подтверждено иначе).
        Партнёрам, которым оно рассылалось, уходит bookingCancelled.

        Returns:
            True, если активное предложение было
        """
        offer = await self._offers.remove(booking_id)
        if offer is None:
            return False
        if not offer.closed:
            offer.closed = True
            self._cancel_timer(offer)

        recipients = offer.offered_to - {offer.accepted_by, except_partner}
        await self._notify_partners(recipients, RealtimeEvent.BOOKING_CANCELLED, {"bookingId": booking_id})
        return True

    # =========================================================================
    # ИСТЕЧЕНИЕ
    # =========================================================================

    async def _expire_after(self, booking_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._expire(booking_id)

    async def _expire(self, booking_id: str) -> None:
        offer = await self._offers.get(booking_id)
        if offer is None:
            return

        async with offer.lock:
            if not offer.is_open:
                return
            # С этого момента таймер не отменяется: истечение доводится до конца
            offer.closed = True
            await self._offers.remove(booking_id)

            try:
                booking = await self._lifecycle.expire(booking_id)
            except CarWashError as e:
                await log_warning(f"[Dispatch] Не удалось перевести {booking_id} в expired: {e.message}")
                return
            except Exception as e:
                await log_error(f"[Dispatch] Ошибка истечения {booking_id}: {e}", exc_info=True)
                return

        if booking is None:
            return

        data = {"bookingId": booking_id}
        await self._safe_to_booking(booking_id, RealtimeEvent.BOOKING_EXPIRED, data)
        await self._notify_partners(offer.offered_to, RealtimeEvent.BOOKING_EXPIRED, data)
        await log_info(f"[Dispatch] Предложение {booking_id} истекло без ответа", type_msg=TypeMsg.INFO)

    # =========================================================================
    # ВНУТРЕННЕЕ
    # =========================================================================

    async def _close(self, offer: BookingOffer) -> None:
        offer.closed = True
        await self._offers.remove(offer.booking_id)
        self._cancel_timer(offer)

    @staticmethod
    def _cancel_timer(offer: BookingOffer) -> None:
        timer = offer.timer
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    def _offer_payload(self, booking: Booking) -> dict[str, Any]:
        return {
            "bookingId": booking.booking_id,
            "address": booking.location.address,
            "pincode": booking.location.pincode,
            "service": booking.service_summary(self._default_service_name),
            "total": booking.pricing.total,
            "scheduledDate": booking.scheduled_date.isoformat(),
            "scheduledTime": booking.scheduled_time,
            "playRingtone": True,
        }

    async def _send(self, presence: PartnerPresence, event: str, data: dict[str, Any]) -> bool:
        try:
            await presence.connection.send_json({"event": event, "data": data})
            return True
        except Exception as e:
            await log_warning(f"[Dispatch] Не удалось отправить {event} партнёру {presence.partner_id}: {e}")
            return False

    async def _notify_partners(self, partner_ids: Iterable[str], event: str, data: dict[str, Any]) -> None:
        sends = []
        for partner_id in partner_ids:
            presence = await self._registry.get(partner_id)
            if presence is not None:
                sends.append(self._send(presence, event, data))
        if sends:
            await asyncio.gather(*sends)

    async def _safe_to_booking(self, booking_id: str, event: str, data: dict[str, Any]) -> None:
        try:
            await self._notifier.to_booking(booking_id, event, data)
        except Exception as e:
            await log_error(f"[Dispatch] Ошибка realtime-уведомления {event} для {booking_id}: {e}")

    async def _push_partners(self, partner_ids: Iterable[str], booking: Booking) -> None:
        if self._push is None or not self._push_offered:
            return
        try:
            tokens = await self._partners.get_push_tokens(partner_ids)
            await self._push.send(
                tokens,
                "New Booking",
                f"{booking.service_summary(self._default_service_name)} at {booking.location.address}",
                {"bookingId": booking.booking_id, "type": RealtimeEvent.NEW_BOOKING},
            )
        except Exception as e:
            await log_error(f"[Dispatch] Ошибка push партнёрам по {booking.booking_id}: {e}")
