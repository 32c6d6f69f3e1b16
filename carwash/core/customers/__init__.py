"""
Модуль клиентов: профиль, автомобили, сохранённые адреса.
"""

from carwash.core.customers.models import Customer, DeliveryAddress, Vehicle
from carwash.core.customers.repository import CustomerRepository

__all__ = ["Customer", "DeliveryAddress", "Vehicle", "CustomerRepository"]
