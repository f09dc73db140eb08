"""
Push notifications.

Usage:
    from matchday.notifications import NotificationDispatcher, LoggingPushProvider

    dispatcher = NotificationDispatcher(session_factory, LoggingPushProvider())
    await dispatcher.send_to_users(user_ids, notification)
"""

from matchday.notifications.dispatcher import DispatchMetrics, NotificationDispatcher
from matchday.notifications.payloads import (
    Notification,
    NotificationPriority,
    NotificationType,
    build_event_notification,
    build_platform_payload,
)
from matchday.notifications.providers import (
    LoggingPushProvider,
    MulticastResult,
    PushProvider,
    TokenResult,
)

__all__ = [
    "DispatchMetrics",
    "NotificationDispatcher",
    "Notification",
    "NotificationPriority",
    "NotificationType",
    "build_event_notification",
    "build_platform_payload",
    "LoggingPushProvider",
    "MulticastResult",
    "PushProvider",
    "TokenResult",
]
