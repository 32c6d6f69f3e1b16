# carwash/common/exceptions.py
"""
Доменные исключения.

Каждое исключение несёт машинный код, по которому HTTP- и realtime-граница
выбирают ответ клиенту.
"""

from __future__ import annotations

from typing import Any


class CarWashError(Exception):
    """Базовое доменное исключение."""

    code: str = "error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Сериализует ошибку для ответа клиенту."""
        data: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data


class ValidationError(CarWashError):
    """Некорректные или отсутствующие входные данные."""
    code = "validation_error"


class NotFoundError(CarWashError):
    """Запрошенная сущность не найдена."""
    code = "not_found"


class UnauthorizedError(CarWashError):
    """У участника нет прав на операцию."""
    code = "unauthorized"


class InvalidTransitionError(CarWashError):
    """Переход статуса не разрешён машиной состояний."""
    code = "invalid_transition"


class CancellationWindowExpiredError(InvalidTransitionError):
    """Окно бесплатной отмены для клиента истекло."""
    code = "cancellation_window_expired"


class ConflictError(CarWashError):
    """Операция проиграла гонку (заказ уже принят, лимит купона исчерпан)."""
    code = "conflict"


class OverpaymentError(CarWashError):
    """Сумма оплаты превышает итог бронирования."""
    code = "overpayment"


class ExternalServiceError(CarWashError):
    """Сбой внешнего сервиса (платёжный шлюз, push-провайдер)."""
    code = "external_service_error"
