# carwash/services/gateway/dependencies.py
"""
Сборка сервисов и зависимости FastAPI.

Все компоненты создаются один раз при старте (lifespan) и хранятся в
app.state.container: реестр партнёров и предложения живут в памяти
процесса и должны быть общими для HTTP и WebSocket.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request

from carwash.common.constants import ActorRole
from carwash.common.exceptions import UnauthorizedError
from carwash.config.loader import Settings
from carwash.core.auth.tokens import Actor, TokenVerifier
from carwash.core.bookings.cache import BookingCache
from carwash.core.bookings.lifecycle import BookingLifecycle
from carwash.core.bookings.repository import BookingRepository
from carwash.core.bookings.service import BookingService
from carwash.core.catalog.repository import CatalogRepository
from carwash.core.coupons.repository import CouponRepository
from carwash.core.coupons.service import CouponService
from carwash.core.customers.repository import CustomerRepository
from carwash.core.dispatch.offers import InMemoryOfferStore, OfferStore
from carwash.core.dispatch.registry import InMemoryPartnerRegistry, PartnerRegistry
from carwash.core.dispatch.service import DispatchService
from carwash.core.notifications.push import PushNotificationSender
from carwash.core.partners.repository import PartnerRepository
from carwash.core.partners.service import PartnerService
from carwash.core.payments.gateway import RazorpaySignatureVerifier
from carwash.core.payments.repository import PaymentSplitRepository
from carwash.core.payments.service import PaymentLedgerService
from carwash.core.profiles.repository import AdminRepository
from carwash.core.profiles.service import (
    AdminProfileUpdater,
    CustomerProfileUpdater,
    PartnerProfileUpdater,
    ProfileService,
)
from carwash.infra.database import DatabaseManager
from carwash.infra.event_bus import EventBus
from carwash.infra.redis_client import RedisClient
from carwash.services.gateway.connection_manager import ConnectionManager, ConnectionManagerNotifier


@dataclass
class Container:
    """Собранные сервисы приложения."""
    manager: ConnectionManager
    registry: PartnerRegistry
    offers: OfferStore
    tokens: TokenVerifier
    partners: PartnerRepository
    partner_service: PartnerService
    bookings: BookingService
    lifecycle: BookingLifecycle
    dispatch: DispatchService
    payments: PaymentLedgerService
    coupons: CouponService
    profiles: ProfileService
    event_bus: Optional[EventBus] = None
    push: Optional[PushNotificationSender] = None

    async def close(self) -> None:
        await self.dispatch.close()
        if self.push is not None:
            await self.push.close()


def build_container(
    settings: Settings,
    db: DatabaseManager,
    redis: RedisClient | None,
    event_bus: EventBus | None,
) -> Container:
    """Создаёт все репозитории и сервисы поверх подключённой инфраструктуры."""
    manager = ConnectionManager()
    notifier = ConnectionManagerNotifier(manager)
    registry = InMemoryPartnerRegistry()
    offers = InMemoryOfferStore()

    push = PushNotificationSender(
        settings.push.EXPO_PUSH_URL,
        chunk_size=settings.push.PUSH_CHUNK_SIZE,
        timeout=settings.push.PUSH_TIMEOUT_SECONDS,
        enabled=settings.push.PUSH_ENABLED,
    )
    gateway = RazorpaySignatureVerifier(settings.payments.RAZORPAY_KEY_SECRET)
    cache = BookingCache(redis, ttl=settings.redis_ttl.BOOKING_TTL)

    booking_repo = BookingRepository(db)
    partner_repo = PartnerRepository(db)
    payment_repo = PaymentSplitRepository(db)
    customer_repo = CustomerRepository(db)
    coupons = CouponService(CouponRepository(db))

    lifecycle = BookingLifecycle(
        db,
        booking_repo,
        partner_repo,
        payment_repo,
        customer_repo,
        notifier,
        cache=cache,
        event_bus=event_bus,
        push=push,
        cancellation_grace_minutes=settings.bookings.CANCELLATION_GRACE_MINUTES,
    )
    dispatch = DispatchService(
        registry,
        offers,
        lifecycle,
        booking_repo,
        partner_repo,
        notifier,
        push=push,
        offer_timeout_seconds=settings.dispatch.OFFER_TIMEOUT_SECONDS,
        push_offered_partners=settings.dispatch.PUSH_OFFERED_PARTNERS,
        requeue_on_partner_online=settings.dispatch.REQUEUE_ON_PARTNER_ONLINE,
        default_service_name=settings.bookings.DEFAULT_SERVICE_NAME,
    )
    bookings = BookingService(
        db,
        booking_repo,
        CatalogRepository(db),
        customer_repo,
        payment_repo,
        coupons,
        lifecycle,
        dispatch,
        gateway,
        cache=cache,
        event_bus=event_bus,
        push=push,
        id_prefix=settings.bookings.BOOKING_ID_PREFIX,
        id_pad=settings.bookings.BOOKING_ID_PAD,
        timezone_name=settings.bookings.TIMEZONE,
    )
    payments = PaymentLedgerService(
        db,
        booking_repo,
        payment_repo,
        partner_repo,
        lifecycle,
        gateway,
        event_bus=event_bus,
    )
    profiles = ProfileService({
        ActorRole.CUSTOMER: CustomerProfileUpdater(customer_repo),
        ActorRole.PARTNER: PartnerProfileUpdater(partner_repo),
        ActorRole.ADMIN: AdminProfileUpdater(AdminRepository(db)),
    })

    return Container(
        manager=manager,
        registry=registry,
        offers=offers,
        tokens=TokenVerifier(settings.auth.AUTH_TOKEN_SECRET, settings.auth.AUTH_TOKEN_TTL),
        partners=partner_repo,
        partner_service=PartnerService(booking_repo, partner_repo, timezone_name=settings.bookings.TIMEZONE),
        bookings=bookings,
        lifecycle=lifecycle,
        dispatch=dispatch,
        payments=payments,
        coupons=coupons,
        profiles=profiles,
        event_bus=event_bus,
        push=push,
    )


# =============================================================================
# ЗАВИСИМОСТИ FASTAPI
# =============================================================================

def extract_token(authorization: str | None, query_token: str | None = None) -> str | None:
    """Токен из заголовка 'Authorization: Bearer ...' или из параметра ?token=."""
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return query_token or None


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_current_actor(request: Request, container: Container = Depends(get_container)) -> Actor:
    token = extract_token(request.headers.get("Authorization"), request.query_params.get("token"))
    if token is None:
        raise UnauthorizedError("Authentication required")
    return container.tokens.verify(token)


def get_booking_service(container: Container = Depends(get_container)) -> BookingService:
    return container.bookings


def get_lifecycle(container: Container = Depends(get_container)) -> BookingLifecycle:
    return container.lifecycle


def get_ledger(container: Container = Depends(get_container)) -> PaymentLedgerService:
    return container.payments


def get_coupon_service(container: Container = Depends(get_container)) -> CouponService:
    return container.coupons


def get_profile_service(container: Container = Depends(get_container)) -> ProfileService:
    return container.profiles


def get_partner_service(container: Container = Depends(get_container)) -> PartnerService:
    return container.partner_service


def require_role(actor: Actor, *roles: ActorRole) -> None:
    if actor.role not in roles:
        raise UnauthorizedError(
            "This action is not available for your role",
            details={"role": actor.role.value},
        )
