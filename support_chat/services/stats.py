from dataclasses import dataclass, field
from uuid import UUID

from support_chat.core.clock import Clock, SystemClock, start_of_day
from support_chat.domain.enums import OPEN_STATUSES, ConversationFilter, ConversationStatus
from support_chat.infra.db.models import Conversation
from support_chat.infra.db.repositories import ConversationRepository, MessageRepository


@dataclass(slots=True)
class DashboardStats:
    total_conversations: int
    active_conversations: int
    waiting_conversations: int
    closed_conversations: int
    open_conversations: int
    my_conversations: int
    total_messages: int
    unread_messages: int
    today_conversations: int
    today_messages: int
    open_by_agent: dict[str, int] = field(default_factory=dict)


@dataclass(slots=True)
class ConversationSummary:
    conversation: Conversation
    messages_count: int
    unread_count: int


def statuses_for_filter(
    status_filter: ConversationFilter,
) -> tuple[ConversationStatus, ...] | None:
    if status_filter == ConversationFilter.ALL:
        return None
    if status_filter == ConversationFilter.OPEN:
        return OPEN_STATUSES
    return (ConversationStatus(status_filter.value),)


class UnreadStatAggregator:
    """Read-side counters derived from the conversation and message tables.

    Nothing here is cached, so every figure reflects the last commit.
    System messages never count as unread.
    """

    def __init__(
        self,
        conversations: ConversationRepository,
        messages: MessageRepository,
        clock: Clock | None = None,
    ) -> None:
        self.conversations = conversations
        self.messages = messages
        self.clock = clock or SystemClock()

    async def unread_count(self, conversation_id: UUID, user_id: str) -> int:
        return await self.messages.count_unread(conversation_id, user_id)

    async def dashboard(self, agent_id: str) -> DashboardStats:
        by_status = await self.conversations.count_by_status()
        open_by_agent = await self.conversations.count_open_by_agent()
        today = start_of_day(self.clock.now())

        active = by_status.get(ConversationStatus.ACTIVE, 0)
        waiting = by_status.get(ConversationStatus.WAITING, 0)
        closed = by_status.get(ConversationStatus.CLOSED, 0)
        return DashboardStats(
            total_conversations=active + waiting + closed,
            active_conversations=active,
            waiting_conversations=waiting,
            closed_conversations=closed,
            open_conversations=active + waiting,
            my_conversations=open_by_agent.get(agent_id, 0),
            total_messages=await self.messages.count_non_system(),
            unread_messages=await self.messages.count_unread_for_agent(agent_id),
            today_conversations=await self.conversations.count_created_since(today),
            today_messages=await self.messages.count_non_system(since=today),
            open_by_agent=open_by_agent,
        )

    async def summaries(
        self,
        viewer_id: str,
        status_filter: ConversationFilter = ConversationFilter.OPEN,
        page: int = 1,
        limit: int = 20,
    ) -> list[ConversationSummary]:
        conversations = await self.conversations.list_for_dashboard(
            statuses=statuses_for_filter(status_filter),
            limit=limit,
            offset=(max(page, 1) - 1) * limit,
        )
        ids = [conversation.id for conversation in conversations]
        message_counts = await self.messages.count_by_conversation(ids)
        unread_counts = await self.messages.count_unread_by_conversation(ids, viewer_id)
        return [
            ConversationSummary(
                conversation=conversation,
                messages_count=message_counts.get(conversation.id, 0),
                unread_count=unread_counts.get(conversation.id, 0),
            )
            for conversation in conversations
        ]
