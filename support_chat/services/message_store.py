import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from support_chat.core.clock import Clock, SystemClock
from support_chat.domain.enums import CLIENT_MESSAGE_KINDS, ConversationStatus, MessageKind
from support_chat.domain.exceptions import ConversationClosedError
from support_chat.domain.state_machine import ASSIGNMENT_ANNOUNCEMENT, ConversationLifecycle
from support_chat.infra.db.models import Conversation, Message
from support_chat.infra.db.repositories import MessageRepository
from support_chat.services.errors import MessageBodyError, MessageKindError

logger = logging.getLogger(__name__)

DEFAULT_MAX_LENGTH = 1000


class MessageStore:
    """Append-only, ordered message log of each conversation.

    Messages are ordered oldest-first by ``(created_at, sequence)``. Every
    write happens while the caller holds the owning conversation's row lock,
    so ``sequence`` is gap-free and ``created_at`` never goes backwards.
    """

    def __init__(
        self,
        messages: MessageRepository,
        clock: Clock | None = None,
        max_length: int = DEFAULT_MAX_LENGTH,
    ) -> None:
        self.messages = messages
        self.clock = clock or SystemClock()
        self.max_length = max_length

    def validate(self, body: str, kind: MessageKind | str) -> tuple[str, MessageKind]:
        try:
            resolved_kind = MessageKind(kind)
        except ValueError as exc:
            raise MessageKindError(kind) from exc
        if resolved_kind not in CLIENT_MESSAGE_KINDS:
            raise MessageKindError(resolved_kind)

        cleaned_body = (body or "").strip()
        if not cleaned_body or len(cleaned_body) > self.max_length:
            raise MessageBodyError(self.max_length)
        return cleaned_body, resolved_kind

    def next_timestamp(self, conversation: Conversation) -> datetime:
        now = self.clock.now()
        last_activity = conversation.last_activity
        if last_activity is not None and now < last_activity:
            return last_activity
        return now

    async def append(
        self,
        conversation: Conversation,
        author_id: str,
        body: str,
        kind: MessageKind | str = MessageKind.TEXT,
        metadata: dict[str, Any] | None = None,
        is_agent: bool = False,
    ) -> Message:
        if ConversationLifecycle.is_read_only(conversation.status):
            raise ConversationClosedError(conversation.id, ConversationStatus.ACTIVE)

        cleaned_body, resolved_kind = self.validate(body, kind)

        # An agent replying into the queue engages the conversation.
        if is_agent and conversation.status == ConversationStatus.WAITING:
            conversation.status = ConversationLifecycle.transition(
                conversation.status, ConversationStatus.ACTIVE
            )
            if conversation.agent_id is None:
                conversation.agent_id = author_id
            await self.append_system(
                conversation,
                author_id=author_id,
                body=ASSIGNMENT_ANNOUNCEMENT,
                is_agent=True,
                metadata={"status": ConversationStatus.ACTIVE.value, "agent_id": author_id},
            )

        message = await self._write(
            conversation,
            author_id=author_id,
            body=cleaned_body,
            kind=resolved_kind,
            is_agent=is_agent,
            metadata=metadata,
        )
        logger.info(
            "Message appended",
            extra={
                "conversation_id": str(conversation.id),
                "message_id": str(message.id),
                "sequence": message.sequence,
                "message_length": len(cleaned_body),
            },
        )
        return message

    async def append_system(
        self,
        conversation: Conversation,
        author_id: str,
        body: str,
        is_agent: bool,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        return await self._write(
            conversation,
            author_id=author_id,
            body=body,
            kind=MessageKind.SYSTEM,
            is_agent=is_agent,
            metadata=metadata,
        )

    async def list(
        self,
        conversation_id: UUID,
        page: int = 1,
        limit: int = 50,
    ) -> list[Message]:
        offset = (max(page, 1) - 1) * limit
        return await self.messages.list_by_conversation(
            conversation_id, limit=limit, offset=offset
        )

    async def mark_read(self, conversation_id: UUID, reader_id: str) -> int:
        return await self.messages.mark_read(
            conversation_id, reader_id, read_at=self.clock.now()
        )

    async def _write(
        self,
        conversation: Conversation,
        author_id: str,
        body: str,
        kind: MessageKind,
        is_agent: bool,
        metadata: dict[str, Any] | None,
    ) -> Message:
        created_at = self.next_timestamp(conversation)
        sequence = await self.messages.next_sequence(conversation.id)
        message = await self.messages.create(
            conversation_id=conversation.id,
            sequence=sequence,
            author_id=author_id,
            body=body,
            kind=kind,
            is_agent_authored=is_agent,
            created_at=created_at,
            metadata_json=metadata,
        )
        conversation.last_activity = created_at
        return message
