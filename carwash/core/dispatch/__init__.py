"""
Диспетчеризация заказов: реестр онлайн-партнёров, предложения, движок.
"""

from carwash.core.dispatch.offers import BookingOffer, InMemoryOfferStore, OfferStore
from carwash.core.dispatch.registry import (
    GeoPoint,
    InMemoryPartnerRegistry,
    PartnerConnection,
    PartnerPresence,
    PartnerRegistry,
)
from carwash.core.dispatch.service import DispatchService

__all__ = [
    "BookingOffer",
    "InMemoryOfferStore",
    "OfferStore",
    "GeoPoint",
    "InMemoryPartnerRegistry",
    "PartnerConnection",
    "PartnerPresence",
    "PartnerRegistry",
    "DispatchService",
]
