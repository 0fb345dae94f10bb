import logging
from dataclasses import dataclass
from uuid import UUID

from support_chat.core.clock import Clock, SystemClock
from support_chat.domain.enums import ConversationStatus
from support_chat.domain.exceptions import ConversationClosedError
from support_chat.domain.principal import Principal
from support_chat.domain.state_machine import ASSIGNMENT_ANNOUNCEMENT, ConversationLifecycle
from support_chat.infra.db.models import Conversation, Message
from support_chat.infra.db.repositories import ConversationRepository
from support_chat.services.errors import ConversationConflictError, ConversationNotFoundError
from support_chat.services.message_store import MessageStore

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "General Inquiry"


@dataclass(slots=True)
class StatusChange:
    conversation: Conversation
    previous_status: ConversationStatus
    system_message: Message | None

    @property
    def changed(self) -> bool:
        return self.previous_status != self.conversation.status


class ConversationRegistry:
    def __init__(
        self,
        conversations: ConversationRepository,
        store: MessageStore,
        clock: Clock | None = None,
        open_retries: int = 1,
    ) -> None:
        self.conversations = conversations
        self.store = store
        self.clock = clock or SystemClock()
        self.open_retries = open_retries

    async def get_or_create_open(
        self,
        customer_id: str,
        subject: str | None = None,
    ) -> Conversation:
        attempts = 0
        while True:
            conversation = await self.conversations.get_open_for_customer(customer_id)
            if conversation is not None:
                return conversation

            conversation = await self.conversations.create_open(
                customer_id=customer_id,
                subject=subject or DEFAULT_SUBJECT,
                now=self.clock.now(),
            )
            if conversation is not None:
                logger.info(
                    "Conversation opened",
                    extra={
                        "conversation_id": str(conversation.id),
                        "customer_id": customer_id,
                    },
                )
                return conversation

            # Lost the race on the open-conversation unique index.
            attempts += 1
            logger.warning(
                "Open conversation conflict",
                extra={"customer_id": customer_id, "attempt": attempts},
            )
            if attempts > self.open_retries:
                raise ConversationConflictError(customer_id, attempts)

    async def find(self, conversation_id: UUID, for_update: bool = False) -> Conversation:
        if for_update:
            conversation = await self.conversations.get_by_id_for_update(conversation_id)
        else:
            conversation = await self.conversations.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)
        return conversation

    async def set_status(
        self,
        conversation: Conversation,
        new_status: ConversationStatus,
        actor: Principal,
        *,
        agent_id: str | None,
    ) -> StatusChange:
        """Write the complete next (status, agent_id) state of a locked row."""
        previous_status = conversation.status
        if ConversationLifecycle.is_read_only(previous_status):
            if new_status != previous_status:
                raise ConversationClosedError(conversation.id, new_status)
            return StatusChange(conversation, previous_status, None)

        conversation.status = ConversationLifecycle.transition(previous_status, new_status)
        conversation.agent_id = agent_id
        conversation.last_activity = self.store.next_timestamp(conversation)

        system_message: Message | None = None
        if conversation.status != previous_status:
            system_message = await self.store.append_system(
                conversation,
                author_id=actor.user_id,
                body=ConversationLifecycle.announcement(conversation.status, actor.is_elevated),
                is_agent=actor.is_elevated,
                metadata={
                    "previous_status": previous_status.value,
                    "status": conversation.status.value,
                },
            )
            logger.info(
                "Conversation status changed",
                extra={
                    "conversation_id": str(conversation.id),
                    "actor_id": actor.user_id,
                    "old_status": previous_status.value,
                    "new_status": conversation.status.value,
                },
            )

        await self.conversations.save(conversation)
        return StatusChange(conversation, previous_status, system_message)

    async def assign(
        self,
        conversation: Conversation,
        agent_id: str,
        actor: Principal,
    ) -> StatusChange:
        previous_status = conversation.status
        if ConversationLifecycle.is_read_only(previous_status):
            raise ConversationClosedError(conversation.id, ConversationStatus.ACTIVE)

        if conversation.agent_id == agent_id and previous_status == ConversationStatus.ACTIVE:
            return StatusChange(conversation, previous_status, None)

        conversation.status = ConversationLifecycle.transition(
            previous_status, ConversationStatus.ACTIVE
        )
        conversation.agent_id = agent_id
        conversation.last_activity = self.store.next_timestamp(conversation)

        system_message: Message | None = None
        if previous_status != ConversationStatus.ACTIVE:
            system_message = await self.store.append_system(
                conversation,
                author_id=actor.user_id,
                body=ASSIGNMENT_ANNOUNCEMENT,
                is_agent=actor.is_elevated,
                metadata={
                    "previous_status": previous_status.value,
                    "status": ConversationStatus.ACTIVE.value,
                    "agent_id": agent_id,
                },
            )

        logger.info(
            "Conversation assigned",
            extra={
                "conversation_id": str(conversation.id),
                "agent_id": agent_id,
                "actor_id": actor.user_id,
            },
        )
        await self.conversations.save(conversation)
        return StatusChange(conversation, previous_status, system_message)
