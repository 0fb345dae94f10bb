"""Outbound lifecycle events for the notification subsystem."""

from support_chat.infra.notifications.events import NotificationEvent
from support_chat.infra.notifications.sink import (
    LoggingNotificationSink,
    NoopNotificationSink,
    NotificationSink,
)

__all__ = [
    "LoggingNotificationSink",
    "NoopNotificationSink",
    "NotificationEvent",
    "NotificationSink",
]
