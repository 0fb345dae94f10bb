import logging
from typing import Protocol

from support_chat.infra.notifications.events import NotificationEvent

logger = logging.getLogger(__name__)


class NotificationSink(Protocol):
    async def deliver(self, event: NotificationEvent) -> None: ...


class NoopNotificationSink:
    async def deliver(self, event: NotificationEvent) -> None:
        _ = event
        return None


class LoggingNotificationSink:
    """Sink used when no downstream consumer is wired in."""

    async def deliver(self, event: NotificationEvent) -> None:
        logger.info("Chat notification %s", event.type.value, extra=event.as_dict())
