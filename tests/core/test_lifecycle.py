# tests/core/test_lifecycle.py
"""
Тесты переходов статусов бронирования.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from carwash.common.constants import BookingStatus, PaymentSplitStatus
from carwash.common.exceptions import (
    CancellationWindowExpiredError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from carwash.core.bookings.models import utc_now
from carwash.core.notifications.realtime import NullNotifier
from carwash.infra.event_bus import EventTypes
from tests.fakes import (
    ADMIN,
    CUSTOMER,
    FRANCHISE,
    OTHER_CUSTOMER,
    OTHER_FRANCHISE,
    Stack,
    make_booking,
    make_stack,
    partner_actor,
)


class TestConfirmByPartner:
    """pending -> confirmed партнёром."""

    @pytest.mark.asyncio
    async def test_confirm_claims_partner(self, stack: Stack) -> None:
        stack.seed(make_booking())

        booking = await stack.lifecycle.confirm_by_partner("MWG00001", "partner-a", latitude=18.9, longitude=72.8)

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.partner_id == "partner-a"
        assert booking.branch_id == "fr-1"
        assert booking.confirmed_at is not None
        assert booking.partner_live_location.latitude == 18.9
        partner = stack.partners.items["partner-a"]
        assert partner.is_available is False
        assert partner.current_booking_id == "MWG00001"

    @pytest.mark.asyncio
    async def test_notifies_booking_channel(self, stack: Stack) -> None:
        stack.seed(make_booking())

        await stack.lifecycle.confirm_by_partner("MWG00001", "partner-b")

        assert stack.notifier.events_for("MWG00001") == ["bookingStatusUpdate", "bookingConfirmed"]
        assert stack.notifier.statuses_for("MWG00001") == ["confirmed"]
        assert "Booking Confirmed" in stack.push.titles()

    @pytest.mark.asyncio
    async def test_busy_partner_rolls_back(self, stack: Stack) -> None:
        stack.seed(make_booking("MWG00001", status=BookingStatus.CONFIRMED, partner_id="partner-a"))
        stack.seed(make_booking("MWG00002"))

        with pytest.raises(ConflictError):
            await stack.lifecycle.confirm_by_partner("MWG00002", "partner-a")

        assert stack.bookings.items["MWG00002"].status == BookingStatus.PENDING
        assert stack.bookings.items["MWG00002"].partner_id is None
        assert stack.db.rollbacks == 1

    @pytest.mark.asyncio
    async def test_not_pending(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.CANCELLED))

        with pytest.raises(InvalidTransitionError):
            await stack.lifecycle.confirm_by_partner("MWG00001", "partner-a")

    @pytest.mark.asyncio
    async def test_unknown_partner(self, stack: Stack) -> None:
        stack.seed(make_booking())

        with pytest.raises(NotFoundError):
            await stack.lifecycle.confirm_by_partner("MWG00001", "partner-x")


class TestServiceFlow:
    """Путь партнёра: в пути, на месте, начало работ."""

    @pytest.mark.asyncio
    async def test_full_flow_up_to_in_progress(self, stack: Stack) -> None:
        stack.seed(make_booking())

        booking = await stack.advance("MWG00001", "partner-a", BookingStatus.IN_PROGRESS)

        assert booking.status == BookingStatus.IN_PROGRESS
        assert booking.otp is None
        assert booking.otp_verified_at is not None
        assert booking.travel_started_at is not None
        assert booking.arrived_at is not None
        assert stack.notifier.statuses_for("MWG00001") == ["confirmed", "enroute", "arrived", "in-progress"]

    @pytest.mark.asyncio
    async def test_other_partner_cannot_update(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.CONFIRMED, partner_id="partner-a"))

        with pytest.raises(UnauthorizedError):
            await stack.lifecycle.start_travel("MWG00001", "partner-b")

    @pytest.mark.asyncio
    async def test_cannot_skip_arrival(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.ENROUTE, partner_id="partner-a"))

        with pytest.raises(InvalidTransitionError):
            await stack.lifecycle.start_service("MWG00001", "partner-a", "4321")

    @pytest.mark.asyncio
    async def test_wrong_otp(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.ARRIVED, partner_id="partner-a"))

        with pytest.raises(ValidationError, match="Invalid OTP"):
            await stack.lifecycle.start_service("MWG00001", "partner-a", "0000")

        assert stack.bookings.items["MWG00001"].status == BookingStatus.ARRIVED

    @pytest.mark.asyncio
    async def test_otp_already_consumed(self, stack: Stack) -> None:
        """После подтверждения по OTP код на месте не спрашивается."""
        stack.seed(make_booking(status=BookingStatus.ARRIVED, partner_id="partner-a", otp=None))

        booking = await stack.lifecycle.start_service("MWG00001", "partner-a", None)

        assert booking.status == BookingStatus.IN_PROGRESS


class TestComplete:
    """in-progress -> completed."""

    @pytest.mark.asyncio
    async def test_requires_completed_payment(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.IN_PROGRESS, partner_id="partner-a"))

        with pytest.raises(InvalidTransitionError, match="Payment is not completed"):
            await stack.lifecycle.complete("MWG00001", "partner-a")

    @pytest.mark.asyncio
    async def test_completes_and_releases_partner(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.IN_PROGRESS, partner_id="partner-a"))
        stack.payments.items["MWG00001"] = stack.payments.items["MWG00001"].model_copy(
            update={"cash_amount": 535.0, "status": PaymentSplitStatus.COMPLETED}
        )

        booking = await stack.lifecycle.complete("MWG00001", "partner-a")

        assert booking.status == BookingStatus.COMPLETED
        assert booking.completed_at is not None
        partner = stack.partners.items["partner-a"]
        assert partner.is_available is True
        assert partner.current_booking_id is None
        assert "Service Completed" in stack.push.titles()


class TestUpdateStatusByPartner:
    @pytest.mark.asyncio
    async def test_routes_to_transition(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.CONFIRMED, partner_id="partner-a"))

        booking = await stack.lifecycle.update_status_by_partner("MWG00001", "partner-a", "enroute")

        assert booking.status == BookingStatus.ENROUTE

    @pytest.mark.asyncio
    async def test_in_progress_checks_otp(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.ARRIVED, partner_id="partner-a"))

        booking = await stack.lifecycle.update_status_by_partner("MWG00001", "partner-a", "in-progress", "4321")

        assert booking.status == BookingStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_partner_cannot_cancel(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.CONFIRMED, partner_id="partner-a"))

        with pytest.raises(UnauthorizedError):
            await stack.lifecycle.update_status_by_partner("MWG00001", "partner-a", "cancelled")

    @pytest.mark.parametrize("status", ["pending", "confirmed", "bogus"])
    @pytest.mark.asyncio
    async def test_rejected_statuses(self, stack: Stack, status: str) -> None:
        stack.seed(make_booking(status=BookingStatus.CONFIRMED, partner_id="partner-a"))

        with pytest.raises(ValidationError):
            await stack.lifecycle.update_status_by_partner("MWG00001", "partner-a", status)


class TestCancel:
    """Отмена бронирования."""

    @pytest.mark.asyncio
    async def test_customer_within_window(self, stack: Stack, mock_event_bus) -> None:
        stack.seed(make_booking())

        booking = await stack.lifecycle.cancel("MWG00001", CUSTOMER, "Changed plans")

        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancellation.actor_id == "cust-1"
        assert booking.cancellation.reason == "Changed plans"
        event = mock_event_bus.publish.await_args.args[0]
        assert event.event_type == EventTypes.BOOKING_STATUS_CHANGED
        assert event.payload["from_status"] == "pending"
        assert event.payload["to_status"] == "cancelled"
        assert event.payload["actor_role"] == "customer"

    @pytest.mark.asyncio
    async def test_customer_after_window(self, stack: Stack) -> None:
        stack.seed(make_booking(created_at=utc_now() - timedelta(minutes=20)))

        with pytest.raises(CancellationWindowExpiredError):
            await stack.lifecycle.cancel("MWG00001", CUSTOMER)

        assert stack.bookings.items["MWG00001"].status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_other_customer(self, stack: Stack) -> None:
        stack.seed(make_booking())

        with pytest.raises(UnauthorizedError):
            await stack.lifecycle.cancel("MWG00001", OTHER_CUSTOMER)

    @pytest.mark.asyncio
    async def test_admin_any_time_releases_partner(self, stack: Stack) -> None:
        stack.seed(make_booking(
            status=BookingStatus.ENROUTE,
            partner_id="partner-a",
            created_at=utc_now() - timedelta(hours=2),
        ))

        booking = await stack.lifecycle.cancel("MWG00001", ADMIN)

        assert booking.status == BookingStatus.CANCELLED
        assert stack.partners.items["partner-a"].current_booking_id is None
        assert stack.partners.items["partner-a"].is_available is True

    @pytest.mark.asyncio
    async def test_franchise_own_branch(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.CONFIRMED, partner_id="partner-a", branch_id="fr-1"))

        with pytest.raises(UnauthorizedError):
            await stack.lifecycle.cancel("MWG00001", OTHER_FRANCHISE)

        booking = await stack.lifecycle.cancel("MWG00001", FRANCHISE)
        assert booking.status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_partner_cannot_cancel(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.CONFIRMED, partner_id="partner-a"))

        with pytest.raises(UnauthorizedError):
            await stack.lifecycle.cancel("MWG00001", partner_actor("partner-a"))

    @pytest.mark.parametrize("status", [BookingStatus.COMPLETED, BookingStatus.EXPIRED, BookingStatus.CANCELLED])
    @pytest.mark.asyncio
    async def test_terminal(self, stack: Stack, status: BookingStatus) -> None:
        stack.seed(make_booking(status=status))

        with pytest.raises(InvalidTransitionError):
            await stack.lifecycle.cancel("MWG00001", ADMIN)


class TestVerifyOtp:
    @pytest.mark.asyncio
    async def test_owner_confirms(self, stack: Stack) -> None:
        stack.seed(make_booking())

        booking = await stack.lifecycle.verify_otp("MWG00001", "4321", CUSTOMER)

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.partner_id is None
        assert booking.otp is None

    @pytest.mark.asyncio
    async def test_wrong_code(self, stack: Stack) -> None:
        stack.seed(make_booking())

        with pytest.raises(ValidationError):
            await stack.lifecycle.verify_otp("MWG00001", "1111", ADMIN)

    @pytest.mark.asyncio
    async def test_stranger(self, stack: Stack) -> None:
        stack.seed(make_booking())

        with pytest.raises(UnauthorizedError):
            await stack.lifecycle.verify_otp("MWG00001", "4321", OTHER_CUSTOMER)


class TestAssignPartner:
    """Ручное назначение партнёра."""

    @pytest.mark.asyncio
    async def test_admin_assigns(self, stack: Stack) -> None:
        stack.seed(make_booking())

        booking = await stack.lifecycle.assign_partner("MWG00001", "partner-b", ADMIN)

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.partner_id == "partner-b"
        assert stack.partners.items["partner-b"].current_booking_id == "MWG00001"
        assert stack.notifier.partner_events[0][:2] == ("partner-b", "bookingStatusUpdate")

    @pytest.mark.asyncio
    async def test_assign_after_otp_confirmation(self, stack: Stack) -> None:
        stack.seed(make_booking())
        await stack.lifecycle.verify_otp("MWG00001", "4321", CUSTOMER)

        booking = await stack.lifecycle.assign_partner("MWG00001", "partner-a", FRANCHISE)

        assert booking.status == BookingStatus.CONFIRMED
        assert booking.partner_id == "partner-a"

    @pytest.mark.asyncio
    async def test_franchise_foreign_partner(self, stack: Stack) -> None:
        stack.seed(make_booking())

        with pytest.raises(UnauthorizedError):
            await stack.lifecycle.assign_partner("MWG00001", "partner-d", FRANCHISE)

    @pytest.mark.asyncio
    async def test_already_assigned(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.CONFIRMED, partner_id="partner-a"))

        with pytest.raises(InvalidTransitionError, match="already has a partner"):
            await stack.lifecycle.assign_partner("MWG00001", "partner-b", ADMIN)

    @pytest.mark.asyncio
    async def test_customer_cannot_assign(self, stack: Stack) -> None:
        stack.seed(make_booking())

        with pytest.raises(UnauthorizedError):
            await stack.lifecycle.assign_partner("MWG00001", "partner-a", CUSTOMER)


class TestLiveLocation:
    @pytest.mark.asyncio
    async def test_updates_and_broadcasts(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.ENROUTE, partner_id="partner-a"))

        booking = await stack.lifecycle.update_live_location("MWG00001", "partner-a", 19.0, 72.9)

        assert booking.partner_live_location.latitude == 19.0
        assert stack.partners.items["partner-a"].live_latitude == 19.0
        booking_id, event, data = stack.notifier.booking_events[-1]
        assert event == "liveTracking"
        assert data["longitude"] == 72.9

    @pytest.mark.asyncio
    async def test_inactive_booking(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.COMPLETED, partner_id="partner-a"))

        with pytest.raises(InvalidTransitionError):
            await stack.lifecycle.update_live_location("MWG00001", "partner-a", 19.0, 72.9)

    @pytest.mark.asyncio
    async def test_foreign_partner(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.ENROUTE, partner_id="partner-a"))

        with pytest.raises(UnauthorizedError):
            await stack.lifecycle.update_live_location("MWG00001", "partner-b", 19.0, 72.9)


class TestExpireAndFail:
    @pytest.mark.asyncio
    async def test_expire_pending(self, stack: Stack) -> None:
        stack.seed(make_booking())

        booking = await stack.lifecycle.expire("MWG00001")

        assert booking.status == BookingStatus.EXPIRED
        assert "Booking Expired" in stack.push.titles()

    @pytest.mark.asyncio
    async def test_expire_is_noop_after_confirm(self, stack: Stack) -> None:
        stack.seed(make_booking(status=BookingStatus.CONFIRMED, partner_id="partner-a"))

        assert await stack.lifecycle.expire("MWG00001") is None
        assert stack.bookings.items["MWG00001"].status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_mark_failed(self, stack: Stack) -> None:
        stack.seed(make_booking())

        booking = await stack.lifecycle.mark_failed("MWG00001", "card declined")

        assert booking.status == BookingStatus.FAILED


class TestWithoutRealtime:
    """Переходы не зависят от наличия realtime-подписчиков."""

    @pytest.mark.asyncio
    async def test_flow_with_null_notifier(self) -> None:
        stack = make_stack(notifier=NullNotifier())
        stack.seed(make_booking())

        booking = await stack.advance("MWG00001", "partner-a", BookingStatus.IN_PROGRESS)

        assert booking.status == BookingStatus.IN_PROGRESS
        assert stack.partners.items["partner-a"].current_booking_id == "MWG00001"
        await stack.dispatch.close()
