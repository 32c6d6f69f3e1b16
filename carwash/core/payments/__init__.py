"""
Модуль учёта оплаты бронирований (онлайн + наличные).
"""

from carwash.core.payments.gateway import PaymentGateway, RazorpaySignatureVerifier
from carwash.core.payments.models import PaymentSplit, resolve_status
from carwash.core.payments.repository import PaymentSplitRepository

__all__ = [
    "PaymentGateway",
    "RazorpaySignatureVerifier",
    "PaymentSplit",
    "resolve_status",
    "PaymentSplitRepository",
]
