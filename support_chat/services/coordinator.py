import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from support_chat.core.clock import Clock, SystemClock
from support_chat.core.config import Settings, get_settings
from support_chat.core.locks import ConversationLocks
from support_chat.domain.commands import (
    ClaimCommand,
    CloseCommand,
    ListMessagesCommand,
    SendMessageCommand,
    UpdateStatusCommand,
)
from support_chat.domain.enums import ConversationFilter, ConversationStatus
from support_chat.domain.principal import Principal
from support_chat.domain.state_machine import ConversationLifecycle
from support_chat.infra.db.models import Conversation, Message, NotificationOutbox
from support_chat.infra.db.repositories import (
    ConversationRepository,
    MessageRepository,
    OutboxRepository,
)
from support_chat.infra.notifications import NotificationSink
from support_chat.services.errors import (
    ConversationAccessDeniedError,
    CustomerCapabilityRequiredError,
    ElevatedCapabilityRequiredError,
    MessageValidationError,
)
from support_chat.services.message_store import MessageStore
from support_chat.services.notifier import OutboxNotifier
from support_chat.services.registry import ConversationRegistry, StatusChange
from support_chat.services.stats import (
    ConversationSummary,
    DashboardStats,
    UnreadStatAggregator,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ConversationView:
    conversation: Conversation
    unread_count: int


@dataclass(slots=True)
class MessageResult:
    conversation: Conversation
    message: Message
    activated: bool


@dataclass(slots=True)
class ConversationMessages:
    conversation: Conversation
    messages: list[Message]
    marked_read: int


class AssignmentCoordinator:
    """Entry point for every chat action.

    Checks the caller against the conversation, then runs the mutation as one
    transaction while holding the conversation lock. Notifications are
    flushed only after the transaction committed.
    """

    def __init__(
        self,
        session: AsyncSession,
        conversations: ConversationRepository | None = None,
        messages: MessageRepository | None = None,
        outbox: OutboxRepository | None = None,
        sink: NotificationSink | None = None,
        locks: ConversationLocks | None = None,
        clock: Clock | None = None,
        settings: Settings | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.session = session
        self.clock = clock or SystemClock()
        self.conversations = conversations or ConversationRepository(session)
        self.messages = messages or MessageRepository(session)
        self.locks = locks or ConversationLocks()
        self.page_size_max = settings.messages_page_size_max

        self.store = MessageStore(
            self.messages, clock=self.clock, max_length=settings.message_max_length
        )
        self.registry = ConversationRegistry(
            self.conversations,
            self.store,
            clock=self.clock,
            open_retries=settings.open_conversation_retries,
        )
        self.stats = UnreadStatAggregator(self.conversations, self.messages, self.clock)
        self.notifier = OutboxNotifier(
            session,
            outbox=outbox,
            sink=sink,
            clock=self.clock,
            max_attempts=settings.outbox_max_attempts,
        )

    async def open_conversation(self, principal: Principal) -> ConversationView:
        self._ensure_customer(principal)
        try:
            conversation = await self.registry.get_or_create_open(principal.user_id)
            unread_count = await self.stats.unread_count(conversation.id, principal.user_id)
            await self.session.commit()
        except BaseException:
            await self.session.rollback()
            raise
        return ConversationView(conversation=conversation, unread_count=unread_count)

    async def send_message(
        self,
        principal: Principal,
        command: SendMessageCommand,
    ) -> MessageResult:
        # Reject bad input before anything is written.
        self.store.validate(command.body, command.kind)

        implicit = command.conversation_id is None
        if implicit and principal.is_elevated:
            raise MessageValidationError("Agents must address a conversation.")

        retried = False
        while True:
            conversation_id = command.conversation_id
            if conversation_id is None:
                conversation_id = await self._own_open_conversation_id(principal)

            async with self._unit_of_work(conversation_id):
                conversation = await self._load_for_update(principal, conversation_id)
                # Closed between the lookup and the row lock: open a fresh one.
                reopen = (
                    implicit
                    and not retried
                    and not ConversationLifecycle.is_open(conversation.status)
                )
                if not reopen:
                    previous_status = conversation.status
                    message = await self.store.append(
                        conversation,
                        author_id=principal.user_id,
                        body=command.body,
                        kind=command.kind,
                        metadata=command.metadata,
                        is_agent=principal.is_elevated,
                    )
                    await self.conversations.save(conversation)

                    pending = [
                        await self.notifier.enqueue_message_sent(message, principal.user_id)
                    ]
                    activated = conversation.status != previous_status
                    if activated:
                        pending.append(
                            await self.notifier.enqueue_status_changed(
                                conversation, previous_status.value, principal.user_id
                            )
                        )
            if not reopen:
                break
            retried = True
            logger.info(
                "Conversation closed before send, reopening",
                extra={"conversation_id": str(conversation_id), "user_id": principal.user_id},
            )

        logger.info(
            "Message sent",
            extra={
                "conversation_id": str(conversation.id),
                "user_id": principal.user_id,
                "message_id": str(message.id),
            },
        )
        await self.notifier.flush(pending)
        return MessageResult(conversation=conversation, message=message, activated=activated)

    async def list_messages(
        self,
        principal: Principal,
        command: ListMessagesCommand,
    ) -> ConversationMessages:
        page = max(command.page, 1)
        limit = min(max(command.limit, 1), self.page_size_max)

        try:
            conversation = await self.registry.find(command.conversation_id)
            self._ensure_access(principal, conversation)
            messages = await self.store.list(conversation.id, page=page, limit=limit)
            marked_read = await self.store.mark_read(conversation.id, principal.user_id)
            await self.session.commit()
        except BaseException:
            await self.session.rollback()
            raise

        return ConversationMessages(
            conversation=conversation, messages=messages, marked_read=marked_read
        )

    async def unread_count(self, principal: Principal, conversation_id: UUID) -> int:
        conversation = await self.registry.find(conversation_id)
        self._ensure_access(principal, conversation)
        return await self.stats.unread_count(conversation.id, principal.user_id)

    async def claim(self, principal: Principal, command: ClaimCommand) -> StatusChange:
        self._ensure_elevated(principal)
        async with self._unit_of_work(command.conversation_id):
            conversation = await self._load_for_update(principal, command.conversation_id)
            change = await self.registry.assign(conversation, principal.user_id, principal)
            pending = await self._enqueue_status_change(change, principal)

        await self.notifier.flush(pending)
        return change

    async def close(self, principal: Principal, command: CloseCommand) -> StatusChange:
        async with self._unit_of_work(command.conversation_id):
            conversation = await self._load_for_update(principal, command.conversation_id)
            # An agent closing the chat is recorded as its holder.
            agent_id = principal.user_id if principal.is_elevated else conversation.agent_id
            change = await self.registry.set_status(
                conversation, ConversationStatus.CLOSED, principal, agent_id=agent_id
            )
            pending = await self._enqueue_status_change(change, principal)

        await self.notifier.flush(pending)
        return change

    async def update_status(
        self,
        principal: Principal,
        command: UpdateStatusCommand,
    ) -> StatusChange:
        self._ensure_elevated(principal)
        async with self._unit_of_work(command.conversation_id):
            conversation = await self._load_for_update(principal, command.conversation_id)
            agent_id: str | None = principal.user_id
            if command.status == ConversationStatus.WAITING:
                agent_id = None
            change = await self.registry.set_status(
                conversation, command.status, principal, agent_id=agent_id
            )
            pending = await self._enqueue_status_change(change, principal)

        await self.notifier.flush(pending)
        return change

    async def list_conversations(
        self,
        principal: Principal,
        status_filter: ConversationFilter = ConversationFilter.OPEN,
        page: int = 1,
        limit: int = 20,
    ) -> list[ConversationSummary]:
        self._ensure_elevated(principal)
        return await self.stats.summaries(
            viewer_id=principal.user_id,
            status_filter=status_filter,
            page=max(page, 1),
            limit=min(max(limit, 1), self.page_size_max),
        )

    async def dashboard(self, principal: Principal) -> DashboardStats:
        self._ensure_elevated(principal)
        return await self.stats.dashboard(principal.user_id)

    @asynccontextmanager
    async def _unit_of_work(self, conversation_id: UUID) -> AsyncIterator[None]:
        async with self.locks.hold(conversation_id):
            try:
                yield
                await self.session.commit()
            except BaseException:
                await self.session.rollback()
                raise

    async def _own_open_conversation_id(self, principal: Principal) -> UUID:
        try:
            conversation = await self.registry.get_or_create_open(principal.user_id)
        except BaseException:
            await self.session.rollback()
            raise
        return conversation.id

    async def _load_for_update(
        self, principal: Principal, conversation_id: UUID
    ) -> Conversation:
        conversation = await self.registry.find(conversation_id, for_update=True)
        self._ensure_access(principal, conversation)
        return conversation

    async def _enqueue_status_change(
        self, change: StatusChange, principal: Principal
    ) -> list[NotificationOutbox]:
        if not change.changed:
            return []
        return [
            await self.notifier.enqueue_status_changed(
                change.conversation, change.previous_status.value, principal.user_id
            )
        ]

    @staticmethod
    def _ensure_access(principal: Principal, conversation: Conversation) -> None:
        if not principal.can_access(conversation.customer_id):
            logger.warning(
                "Conversation access denied",
                extra={
                    "conversation_id": str(conversation.id),
                    "user_id": principal.user_id,
                },
            )
            raise ConversationAccessDeniedError(conversation.id, principal.user_id)

    @staticmethod
    def _ensure_elevated(principal: Principal) -> None:
        if not principal.is_elevated:
            raise ElevatedCapabilityRequiredError(principal.user_id)

    @staticmethod
    def _ensure_customer(principal: Principal) -> None:
        if principal.is_elevated:
            raise CustomerCapabilityRequiredError(principal.user_id)
