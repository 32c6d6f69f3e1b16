"""
Уведомления: realtime-каналы и push.
"""

from carwash.core.notifications.push import PushNotificationSender
from carwash.core.notifications.realtime import NullNotifier, RealtimeNotifier, booking_topic, partner_topic

__all__ = [
    "PushNotificationSender",
    "NullNotifier",
    "RealtimeNotifier",
    "booking_topic",
    "partner_topic",
]
