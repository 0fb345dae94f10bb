import base64
import hashlib
import hmac
import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest

from support_chat.core.config import Settings
from support_chat.core.locks import ConversationLocks
from support_chat.domain.enums import (
    OPEN_STATUSES,
    ConversationStatus,
    MessageKind,
    NotificationEventType,
)
from support_chat.domain.principal import Principal
from support_chat.infra.notifications import NotificationEvent
from support_chat.services.coordinator import AssignmentCoordinator

BASE_TIME = datetime(2026, 3, 14, 9, 30, tzinfo=UTC)


class FakeClock:
    def __init__(self, start: datetime = BASE_TIME) -> None:
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 1.0) -> datetime:
        self.current = self.current + timedelta(seconds=seconds)
        return self.current


class DummySession:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    async def commit(self) -> None:
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def refresh(self, _: object) -> None:
        return None


@dataclass(slots=True)
class FakeConversation:
    id: UUID
    customer_id: str
    status: ConversationStatus
    last_activity: datetime
    agent_id: str | None = None
    subject: str | None = None
    created_at: datetime = BASE_TIME
    updated_at: datetime = BASE_TIME


@dataclass(slots=True)
class FakeMessage:
    id: UUID
    conversation_id: UUID
    sequence: int
    author_id: str
    body: str
    kind: MessageKind
    is_agent_authored: bool
    created_at: datetime
    metadata_json: dict | None = None
    read_at: datetime | None = None


@dataclass(slots=True)
class FakeOutboxRow:
    id: UUID
    event_type: NotificationEventType
    conversation_id: UUID
    actor_id: str
    payload: dict
    created_at: datetime
    delivered_at: datetime | None = None
    attempts: int = 0
    last_error: str | None = None


class FakeConversationRepository:
    def __init__(self) -> None:
        self.conversations: dict[UUID, FakeConversation] = {}
        # Number of create_open calls that lose a simulated insert race.
        self.races_to_lose = 0
        self.create_attempts = 0

    def add(
        self,
        customer_id: str,
        status: ConversationStatus,
        agent_id: str | None = None,
        created_at: datetime = BASE_TIME,
    ) -> FakeConversation:
        conversation = FakeConversation(
            id=uuid4(),
            customer_id=customer_id,
            status=status,
            agent_id=agent_id,
            last_activity=created_at,
            created_at=created_at,
            updated_at=created_at,
        )
        self.conversations[conversation.id] = conversation
        return conversation

    async def get_by_id(self, conversation_id: UUID) -> FakeConversation | None:
        return self.conversations.get(conversation_id)

    async def get_by_id_for_update(self, conversation_id: UUID) -> FakeConversation | None:
        return self.conversations.get(conversation_id)

    async def get_open_for_customer(self, customer_id: str) -> FakeConversation | None:
        for conversation in self.conversations.values():
            if conversation.customer_id == customer_id and conversation.status in OPEN_STATUSES:
                return conversation
        return None

    async def create_open(
        self,
        customer_id: str,
        subject: str | None,
        now: datetime,
    ) -> FakeConversation | None:
        self.create_attempts += 1
        if self.races_to_lose > 0:
            self.races_to_lose -= 1
            self.add(customer_id, ConversationStatus.WAITING, created_at=now)
            return None
        if await self.get_open_for_customer(customer_id) is not None:
            return None
        conversation = self.add(customer_id, ConversationStatus.WAITING, created_at=now)
        conversation.subject = subject
        return conversation

    async def save(self, conversation: FakeConversation) -> None:
        conversation.updated_at = conversation.last_activity

    async def list_for_dashboard(
        self,
        statuses: Sequence[ConversationStatus] | None,
        limit: int,
        offset: int,
    ) -> list[FakeConversation]:
        candidates = [
            conversation
            for conversation in self.conversations.values()
            if statuses is None or conversation.status in statuses
        ]
        ordered = sorted(candidates, key=lambda item: item.last_activity, reverse=True)
        return ordered[offset : offset + limit]

    async def count_by_status(self) -> dict[ConversationStatus, int]:
        counts: dict[ConversationStatus, int] = {}
        for conversation in self.conversations.values():
            counts[conversation.status] = counts.get(conversation.status, 0) + 1
        return counts

    async def count_open_by_agent(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for conversation in self.conversations.values():
            if conversation.agent_id is not None and conversation.status in OPEN_STATUSES:
                counts[conversation.agent_id] = counts.get(conversation.agent_id, 0) + 1
        return counts

    async def count_created_since(self, since: datetime) -> int:
        return sum(
            1 for conversation in self.conversations.values() if conversation.created_at >= since
        )


class FakeMessageRepository:
    def __init__(self, conversations: FakeConversationRepository) -> None:
        self.conversations = conversations
        self.messages: list[FakeMessage] = []

    async def next_sequence(self, conversation_id: UUID) -> int:
        sequences = [
            message.sequence
            for message in self.messages
            if message.conversation_id == conversation_id
        ]
        return max(sequences, default=0) + 1

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
    ) -> FakeMessage:
        message = FakeMessage(
            id=uuid4(),
            conversation_id=conversation_id,
            sequence=sequence,
            author_id=author_id,
            body=body,
            kind=kind,
            is_agent_authored=is_agent_authored,
            created_at=created_at,
            metadata_json=metadata_json,
        )
        self.messages.append(message)
        return message

    def for_conversation(self, conversation_id: UUID) -> list[FakeMessage]:
        return sorted(
            (message for message in self.messages if message.conversation_id == conversation_id),
            key=lambda message: (message.created_at, message.sequence),
        )

    async def list_by_conversation(
        self,
        conversation_id: UUID,
        limit: int,
        offset: int = 0,
    ) -> list[FakeMessage]:
        return self.for_conversation(conversation_id)[offset : offset + limit]

    async def mark_read(self, conversation_id: UUID, reader_id: str, read_at: datetime) -> int:
        marked = 0
        for message in self.for_conversation(conversation_id):
            if message.author_id != reader_id and message.read_at is None:
                message.read_at = read_at
                marked += 1
        return marked

    def _is_unread_for(self, message: FakeMessage, user_id: str) -> bool:
        return (
            message.author_id != user_id
            and message.kind != MessageKind.SYSTEM
            and message.read_at is None
        )

    async def count_unread(self, conversation_id: UUID, user_id: str) -> int:
        return sum(
            1
            for message in self.for_conversation(conversation_id)
            if self._is_unread_for(message, user_id)
        )

    async def count_by_conversation(self, conversation_ids: Sequence[UUID]) -> dict[UUID, int]:
        return {
            conversation_id: len(self.for_conversation(conversation_id))
            for conversation_id in conversation_ids
            if self.for_conversation(conversation_id)
        }

    async def count_unread_by_conversation(
        self,
        conversation_ids: Sequence[UUID],
        user_id: str,
    ) -> dict[UUID, int]:
        counts = {
            conversation_id: await self.count_unread(conversation_id, user_id)
            for conversation_id in conversation_ids
        }
        return {key: value for key, value in counts.items() if value}

    async def count_non_system(self, since: datetime | None = None) -> int:
        return sum(
            1
            for message in self.messages
            if message.kind != MessageKind.SYSTEM
            and (since is None or message.created_at >= since)
        )

    async def count_unread_for_agent(self, agent_id: str) -> int:
        total = 0
        for message in self.messages:
            conversation = self.conversations.conversations[message.conversation_id]
            if (
                conversation.agent_id == agent_id
                and conversation.status in OPEN_STATUSES
                and not message.is_agent_authored
                and self._is_unread_for(message, agent_id)
            ):
                total += 1
        return total


class FakeOutboxRepository:
    def __init__(self) -> None:
        self.rows: list[FakeOutboxRow] = []

    async def add(
        self,
        event_type: NotificationEventType,
        conversation_id: UUID,
        actor_id: str,
        payload: dict[str, Any],
        created_at: datetime,
    ) -> FakeOutboxRow:
        row = FakeOutboxRow(
            id=uuid4(),
            event_type=event_type,
            conversation_id=conversation_id,
            actor_id=actor_id,
            payload=payload,
            created_at=created_at,
        )
        self.rows.append(row)
        return row

    async def list_pending(
        self,
        limit: int,
        max_attempts: int,
        ids: Sequence[UUID] | None = None,
    ) -> list[FakeOutboxRow]:
        pending = [
            row
            for row in self.rows
            if row.delivered_at is None
            and row.attempts < max_attempts
            and (ids is None or row.id in ids)
        ]
        return pending[:limit]

    async def mark_delivered(self, row: FakeOutboxRow, delivered_at: datetime) -> None:
        row.delivered_at = delivered_at
        row.attempts += 1
        row.last_error = None

    async def mark_failed(self, row: FakeOutboxRow, error: str) -> None:
        row.attempts += 1
        row.last_error = error


class RecordingSink:
    def __init__(self) -> None:
        self.events: list[NotificationEvent] = []
        self.fail = False

    async def deliver(self, event: NotificationEvent) -> None:
        if self.fail:
            raise ConnectionError("notification service unavailable")
        self.events.append(event)


@dataclass(slots=True)
class ChatFixture:
    coordinator: AssignmentCoordinator
    session: DummySession
    clock: FakeClock
    conversations: FakeConversationRepository
    messages: FakeMessageRepository
    outbox: FakeOutboxRepository
    sink: RecordingSink
    customer: Principal = field(default_factory=lambda: Principal(user_id="customer-1"))
    other_customer: Principal = field(default_factory=lambda: Principal(user_id="customer-2"))
    agent: Principal = field(
        default_factory=lambda: Principal(user_id="agent-1", is_elevated=True, display_name="Maya")
    )
    second_agent: Principal = field(
        default_factory=lambda: Principal(user_id="agent-2", is_elevated=True, display_name="Alex")
    )


@pytest.fixture
def chat() -> ChatFixture:
    session = DummySession()
    clock = FakeClock()
    conversations = FakeConversationRepository()
    messages = FakeMessageRepository(conversations)
    outbox = FakeOutboxRepository()
    sink = RecordingSink()
    coordinator = AssignmentCoordinator(
        session=session,
        conversations=conversations,
        messages=messages,
        outbox=outbox,
        sink=sink,
        locks=ConversationLocks(),
        clock=clock,
        settings=Settings(_env_file=None),
    )
    return ChatFixture(
        coordinator=coordinator,
        session=session,
        clock=clock,
        conversations=conversations,
        messages=messages,
        outbox=outbox,
        sink=sink,
    )


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def sign_token(
    payload: dict[str, Any],
    secret: str,
) -> str:
    payload_segment = _b64url(
        json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    )
    signature = hmac.new(
        secret.encode("utf-8"), payload_segment.encode("utf-8"), hashlib.sha256
    ).digest()
    return f"{payload_segment}.{_b64url(signature)}"


@pytest.fixture
def issue_token() -> Callable[..., str]:
    """Mint tokens the way the identity subsystem does."""

    def issue(
        principal: Principal,
        secret: str,
        issued_at: datetime = BASE_TIME,
        ttl_minutes: int = 30,
    ) -> str:
        payload = {
            "v": 1,
            "uid": principal.user_id,
            "elv": principal.is_elevated,
            "name": principal.display_name,
            "exp": int((issued_at + timedelta(minutes=ttl_minutes)).timestamp()),
            "iat": int(issued_at.timestamp()),
        }
        return sign_token(payload, secret)

    return issue
