from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from support_chat.domain.enums import NotificationEventType


@dataclass(frozen=True, slots=True)
class NotificationEvent:
    type: NotificationEventType
    conversation_id: UUID
    actor_id: str
    payload: dict[str, Any] = field(default_factory=dict, hash=False)
    # Outbox row id; sinks may use it to drop duplicate deliveries.
    event_id: UUID | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "event_id": str(self.event_id) if self.event_id is not None else None,
            "type": self.type.value,
            "conversation_id": str(self.conversation_id),
            "actor_id": self.actor_id,
            "payload": dict(self.payload),
        }
