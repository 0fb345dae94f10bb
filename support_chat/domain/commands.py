"""Mutating requests against a single conversation.

Each command is executed in one transaction that reads the current row under
lock, validates, and writes the complete next state.
"""

from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from support_chat.domain.enums import ConversationStatus, MessageKind


@dataclass(frozen=True, slots=True)
class ClaimCommand:
    conversation_id: UUID


@dataclass(frozen=True, slots=True)
class CloseCommand:
    conversation_id: UUID


@dataclass(frozen=True, slots=True)
class UpdateStatusCommand:
    conversation_id: UUID
    status: ConversationStatus


@dataclass(frozen=True, slots=True)
class SendMessageCommand:
    body: str
    kind: MessageKind = MessageKind.TEXT
    metadata: dict[str, Any] | None = field(default=None, hash=False)
    # None routes a customer's message to their open conversation.
    conversation_id: UUID | None = None


@dataclass(frozen=True, slots=True)
class ListMessagesCommand:
    conversation_id: UUID
    page: int = 1
    limit: int = 50
