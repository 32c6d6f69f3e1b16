# tests/core/test_razorpay.py
"""
Тесты проверки подписи Razorpay.
"""

from __future__ import annotations

import hashlib
import hmac

import pytest

from carwash.common.exceptions import ExternalServiceError
from carwash.core.payments.gateway import RazorpaySignatureVerifier


def _signature(secret: str, order_id: str, payment_id: str) -> str:
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class TestRazorpaySignatureVerifier:
    @pytest.fixture
    def verifier(self) -> RazorpaySignatureVerifier:
        return RazorpaySignatureVerifier("rzp_secret")

    def test_valid(self, verifier: RazorpaySignatureVerifier) -> None:
        signature = _signature("rzp_secret", "order_1", "pay_1")

        assert verifier.verify_signature("order_1", "pay_1", signature) is True

    def test_wrong_payment(self, verifier: RazorpaySignatureVerifier) -> None:
        signature = _signature("rzp_secret", "order_1", "pay_1")

        assert verifier.verify_signature("order_1", "pay_2", signature) is False

    def test_wrong_secret(self, verifier: RazorpaySignatureVerifier) -> None:
        signature = _signature("other", "order_1", "pay_1")

        assert verifier.verify_signature("order_1", "pay_1", signature) is False

    @pytest.mark.parametrize(("order_id", "payment_id", "signature"), [("", "p", "s"), ("o", "", "s"), ("o", "p", "")])
    def test_missing_parts(
        self, verifier: RazorpaySignatureVerifier, order_id: str, payment_id: str, signature: str
    ) -> None:
        assert verifier.verify_signature(order_id, payment_id, signature) is False

    def test_not_configured(self) -> None:
        with pytest.raises(ExternalServiceError):
            RazorpaySignatureVerifier("").verify_signature("order_1", "pay_1", "sig")
