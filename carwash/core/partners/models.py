# carwash/core/partners/models.py
"""
Модели данных партнёров.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Partner(BaseModel):
    """Партнёр: независимый или в составе франшизы."""

    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    franchise_id: Optional[str] = Field(None, description="ID франшизы (None для независимых)")
    pincodes: list[str] = Field(default_factory=list, description="Обслуживаемые индексы")
    push_token: Optional[str] = None

    # Изменяются только вместе со статусом бронирования
    is_available: bool = True
    current_booking_id: Optional[str] = None

    current_cash_in_hand: float = 0.0
    all_time_cash_collected: float = 0.0

    live_latitude: Optional[float] = None
    live_longitude: Optional[float] = None
    live_updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class PartnerEarnings(BaseModel):
    """Сводка заработка партнёра по завершённым заказам."""

    total: float = Field(0.0, description="Сумма за всё время")
    today: float = Field(0.0, description="С начала текущих суток")
    week: float = Field(0.0, description="За последние 7 дней, включая сегодня")
    completed_count: int = 0
    cash_in_hand: float = Field(0.0, description="Наличные на руках")
    all_time_cash_collected: float = 0.0
