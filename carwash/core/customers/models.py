# carwash/core/customers/models.py
"""
Модели данных клиентов.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict


class Customer(BaseModel):
    """Клиент."""

    id: str
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    push_token: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class Vehicle(BaseModel):
    """Автомобиль клиента."""

    id: str
    customer_id: str
    make: Optional[str] = None
    model: Optional[str] = None
    number_plate: Optional[str] = None
    vehicle_type: Optional[str] = None


class DeliveryAddress(BaseModel):
    """Сохранённый адрес клиента."""

    id: str
    customer_id: str
    address: str
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
