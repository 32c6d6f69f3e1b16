"""
Бэкенд маркетплейса автомоек: бронирования, диспетчеризация партнёров,
учёт оплат (онлайн + наличные), купоны и уведомления.
"""

__version__ = "1.0.0"
