import logging
from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from support_chat.core.clock import Clock, SystemClock
from support_chat.domain.enums import NotificationEventType
from support_chat.infra.db.models import Conversation, Message, NotificationOutbox
from support_chat.infra.db.repositories import OutboxRepository
from support_chat.infra.notifications import (
    NoopNotificationSink,
    NotificationEvent,
    NotificationSink,
)

logger = logging.getLogger(__name__)


class OutboxNotifier:
    """Transactional outbox in front of the notification sink.

    ``enqueue_*`` writes rows inside the caller's transaction. ``flush`` runs
    after the chat mutation committed and never raises; rows it could not
    deliver stay pending for ``relay``.
    """

    def __init__(
        self,
        session: AsyncSession,
        outbox: OutboxRepository | None = None,
        sink: NotificationSink | None = None,
        clock: Clock | None = None,
        max_attempts: int = 10,
    ) -> None:
        self.session = session
        self.outbox = outbox or OutboxRepository(session)
        self.sink = sink or NoopNotificationSink()
        self.clock = clock or SystemClock()
        self.max_attempts = max_attempts

    async def enqueue_message_sent(
        self, message: Message, actor_id: str
    ) -> NotificationOutbox:
        return await self.outbox.add(
            event_type=NotificationEventType.MESSAGE_SENT,
            conversation_id=message.conversation_id,
            actor_id=actor_id,
            payload={"message": self._message_payload(message)},
            created_at=self.clock.now(),
        )

    async def enqueue_status_changed(
        self,
        conversation: Conversation,
        previous_status: str,
        actor_id: str,
    ) -> NotificationOutbox:
        return await self.outbox.add(
            event_type=NotificationEventType.STATUS_CHANGED,
            conversation_id=conversation.id,
            actor_id=actor_id,
            payload={
                "previous_status": previous_status,
                "conversation": self._conversation_payload(conversation),
            },
            created_at=self.clock.now(),
        )

    async def flush(self, rows: Sequence[NotificationOutbox]) -> int:
        if not rows:
            return 0
        return await self._deliver_pending(
            ids=[row.id for row in rows], limit=len(rows)
        )

    async def relay(self, batch_size: int = 100) -> int:
        return await self._deliver_pending(ids=None, limit=batch_size)

    async def _deliver_pending(self, ids: Sequence[UUID] | None, limit: int) -> int:
        delivered = 0
        try:
            pending = await self.outbox.list_pending(
                limit=limit, max_attempts=self.max_attempts, ids=ids
            )
            for row in pending:
                try:
                    await self.sink.deliver(self._to_event(row))
                except Exception as exc:
                    logger.warning(
                        "Notification delivery failed",
                        exc_info=True,
                        extra={"outbox_id": str(row.id), "attempts": row.attempts + 1},
                    )
                    await self.outbox.mark_failed(row, repr(exc))
                else:
                    await self.outbox.mark_delivered(row, self.clock.now())
                    delivered += 1
            await self.session.commit()
        except Exception:
            logger.warning("Notification outbox flush failed", exc_info=True)
            await self.session.rollback()
        return delivered

    @staticmethod
    def _to_event(row: NotificationOutbox) -> NotificationEvent:
        return NotificationEvent(
            type=row.event_type,
            conversation_id=row.conversation_id,
            actor_id=row.actor_id,
            payload=dict(row.payload or {}),
            event_id=row.id,
        )

    @staticmethod
    def _conversation_payload(conversation: Conversation) -> dict[str, Any]:
        return {
            "id": str(conversation.id),
            "customer_id": conversation.customer_id,
            "agent_id": conversation.agent_id,
            "status": conversation.status.value,
            "last_activity": conversation.last_activity.isoformat(),
        }

    @staticmethod
    def _message_payload(message: Message) -> dict[str, Any]:
        return {
            "id": str(message.id),
            "conversation_id": str(message.conversation_id),
            "sequence": message.sequence,
            "author_id": message.author_id,
            "kind": message.kind.value,
            "body": message.body,
            "is_agent_authored": message.is_agent_authored,
            "created_at": message.created_at.isoformat(),
        }
