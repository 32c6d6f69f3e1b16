"""
Доменное ядро: бронирования, оплата, диспетчеризация, уведомления.
"""
