from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Select, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from support_chat.domain.enums import (
    OPEN_STATUSES,
    ConversationStatus,
    MessageKind,
    NotificationEventType,
)
from support_chat.infra.db.models import Conversation, Message, NotificationOutbox


class ConversationRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, conversation_id: UUID) -> Conversation | None:
        return await self.session.get(Conversation, conversation_id)

    async def get_by_id_for_update(self, conversation_id: UUID) -> Conversation | None:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_open_for_customer(self, customer_id: str) -> Conversation | None:
        stmt: Select[tuple[Conversation]] = (
            select(Conversation)
            .where(
                Conversation.customer_id == customer_id,
                Conversation.status.in_(OPEN_STATUSES),
            )
            .order_by(Conversation.last_activity.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create_open(
        self,
        customer_id: str,
        subject: str | None,
        now: datetime,
    ) -> Conversation | None:
        """Insert a waiting conversation, or return None if the customer already
        has an open one (unique index violation)."""
        conversation = Conversation(
            customer_id=customer_id,
            status=ConversationStatus.WAITING,
            agent_id=None,
            subject=subject,
            last_activity=now,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(conversation)
                await self.session.flush()
        except IntegrityError:
            return None
        return conversation

    async def save(self, conversation: Conversation) -> None:
        await self.session.flush()

    async def list_for_dashboard(
        self,
        statuses: Sequence[ConversationStatus] | None,
        limit: int,
        offset: int,
    ) -> list[Conversation]:
        stmt: Select[tuple[Conversation]] = select(Conversation)
        if statuses is not None:
            stmt = stmt.where(Conversation.status.in_(statuses))
        stmt = (
            stmt.order_by(Conversation.last_activity.desc(), Conversation.id.asc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_by_status(self) -> dict[ConversationStatus, int]:
        stmt = select(Conversation.status, func.count(Conversation.id)).group_by(
            Conversation.status
        )
        result = await self.session.execute(stmt)
        return {status: int(count) for status, count in result.all()}

    async def count_open_by_agent(self) -> dict[str, int]:
        stmt = (
            select(Conversation.agent_id, func.count(Conversation.id))
            .where(
                Conversation.agent_id.is_not(None),
                Conversation.status.in_(OPEN_STATUSES),
            )
            .group_by(Conversation.agent_id)
        )
        result = await self.session.execute(stmt)
        return {agent_id: int(count) for agent_id, count in result.all()}

    async def count_created_since(self, since: datetime) -> int:
        stmt = select(func.count(Conversation.id)).where(Conversation.created_at >= since)
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)


class MessageRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def next_sequence(self, conversation_id: UUID) -> int:
        stmt = select(func.max(Message.sequence)).where(
            Message.conversation_id == conversation_id
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0) + 1

    async def create(
        self,
        conversation_id: UUID,
        sequence: int,
        author_id: str,
        body: str,
        kind: MessageKind,
        is_agent_authored: bool,
        created_at: datetime,
        metadata_json: dict[str, Any] | None = None,
    ) -> Message:
        message = Message(
            conversation_id=conversation_id,
            sequence=sequence,
            author_id=author_id,
            body=body,
            kind=kind,
            is_agent_authored=is_agent_authored,
            metadata_json=metadata_json,
            created_at=created_at,
            read_at=None,
        )
        self.session.add(message)
        await self.session.flush()
        return message

    async def list_by_conversation(
        self,
        conversation_id: UUID,
        limit: int,
        offset: int = 0,
    ) -> list[Message]:
        stmt: Select[tuple[Message]] = (
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.asc(), Message.sequence.asc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_read(
        self,
        conversation_id: UUID,
        reader_id: str,
        read_at: datetime,
    ) -> int:
        stmt = (
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.author_id != reader_id,
                Message.read_at.is_(None),
            )
            .values(read_at=read_at)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)

    async def count_unread(self, conversation_id: UUID, user_id: str) -> int:
        counts = await self.count_unread_by_conversation([conversation_id], user_id)
        return counts.get(conversation_id, 0)

    async def count_by_conversation(
        self, conversation_ids: Sequence[UUID]
    ) -> dict[UUID, int]:
        if not conversation_ids:
            return {}
        stmt = (
            select(Message.conversation_id, func.count(Message.id))
            .where(Message.conversation_id.in_(conversation_ids))
            .group_by(Message.conversation_id)
        )
        result = await self.session.execute(stmt)
        return {conversation_id: int(count) for conversation_id, count in result.all()}

    async def count_unread_by_conversation(
        self,
        conversation_ids: Sequence[UUID],
        user_id: str,
    ) -> dict[UUID, int]:
        if not conversation_ids:
            return {}
        stmt = (
            select(Message.conversation_id, func.count(Message.id))
            .where(
                Message.conversation_id.in_(conversation_ids),
                Message.author_id != user_id,
                Message.kind != MessageKind.SYSTEM,
                Message.read_at.is_(None),
            )
            .group_by(Message.conversation_id)
        )
        result = await self.session.execute(stmt)
        return {conversation_id: int(count) for conversation_id, count in result.all()}

    async def count_non_system(self, since: datetime | None = None) -> int:
        stmt = select(func.count(Message.id)).where(Message.kind != MessageKind.SYSTEM)
        if since is not None:
            stmt = stmt.where(Message.created_at >= since)
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)

    async def count_unread_for_agent(self, agent_id: str) -> int:
        stmt = (
            select(func.count(Message.id))
            .join(Conversation, Conversation.id == Message.conversation_id)
            .where(
                Conversation.agent_id == agent_id,
                Conversation.status.in_(OPEN_STATUSES),
                Message.author_id != agent_id,
                Message.is_agent_authored.is_(False),
                Message.kind != MessageKind.SYSTEM,
                Message.read_at.is_(None),
            )
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)


class OutboxRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def add(
        self,
        event_type: NotificationEventType,
        conversation_id: UUID,
        actor_id: str,
        payload: dict[str, Any],
        created_at: datetime,
    ) -> NotificationOutbox:
        row = NotificationOutbox(
            event_type=event_type,
            conversation_id=conversation_id,
            actor_id=actor_id,
            payload=payload,
            created_at=created_at,
            attempts=0,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def list_pending(
        self,
        limit: int,
        max_attempts: int,
        ids: Sequence[UUID] | None = None,
    ) -> list[NotificationOutbox]:
        stmt: Select[tuple[NotificationOutbox]] = select(NotificationOutbox).where(
            NotificationOutbox.delivered_at.is_(None),
            NotificationOutbox.attempts < max_attempts,
        )
        if ids is not None:
            stmt = stmt.where(NotificationOutbox.id.in_(ids))
        stmt = (
            stmt.order_by(NotificationOutbox.created_at.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def mark_delivered(self, row: NotificationOutbox, delivered_at: datetime) -> None:
        row.delivered_at = delivered_at
        row.attempts += 1
        row.last_error = None
        await self.session.flush()

    async def mark_failed(self, row: NotificationOutbox, error: str) -> None:
        row.attempts += 1
        row.last_error = error[:2000]
        await self.session.flush()
