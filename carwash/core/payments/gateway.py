# carwash/core/payments/gateway.py
"""
Контракт платёжного шлюза.

Код бронирований и учёта оплаты доверяет только булевому результату
verify_signature.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Protocol

from carwash.common.exceptions import ExternalServiceError


class PaymentGateway(Protocol):
    """Проверка подписи платежа."""

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...


class RazorpaySignatureVerifier:
    """
    Проверка подписи Razorpay: HMAC-SHA256 от "order_id|payment_id"
    на секретном ключе, в hex.
    """

    def __init__(self, key_secret: str) -> None:
        self._key_secret = key_secret

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self._key_secret:
            raise ExternalServiceError("Payment gateway is not configured")
        if not order_id or not payment_id or not signature:
            return False

        expected = hmac.new(
            self._key_secret.encode(),
            f"{order_id}|{payment_id}".encode(),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)
