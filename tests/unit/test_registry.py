from uuid import uuid4

import pytest

from support_chat.domain.enums import ConversationStatus, MessageKind
from support_chat.domain.exceptions import ConversationClosedError
from support_chat.domain.principal import Principal
from support_chat.domain.state_machine import ASSIGNMENT_ANNOUNCEMENT
from support_chat.services.errors import ConversationConflictError, ConversationNotFoundError
from support_chat.services.message_store import MessageStore
from support_chat.services.registry import DEFAULT_SUBJECT, ConversationRegistry

AGENT = Principal(user_id="agent-1", is_elevated=True)
CUSTOMER = Principal(user_id="customer-1")


@pytest.fixture
def registry(chat) -> ConversationRegistry:
    store = MessageStore(chat.messages, clock=chat.clock)
    return ConversationRegistry(chat.conversations, store, clock=chat.clock, open_retries=1)


@pytest.mark.asyncio
async def test_get_or_create_open_creates_waiting_conversation(
    chat, registry: ConversationRegistry
) -> None:
    conversation = await registry.get_or_create_open("customer-1")

    assert conversation.status == ConversationStatus.WAITING
    assert conversation.agent_id is None
    assert conversation.subject == DEFAULT_SUBJECT
    assert chat.messages.messages == []


@pytest.mark.asyncio
async def test_get_or_create_open_returns_existing(chat, registry: ConversationRegistry) -> None:
    existing = chat.conversations.add("customer-1", ConversationStatus.ACTIVE, "agent-1")

    conversation = await registry.get_or_create_open("customer-1")

    assert conversation is existing
    assert chat.conversations.create_attempts == 0


@pytest.mark.asyncio
async def test_closed_conversation_is_not_reused(chat, registry: ConversationRegistry) -> None:
    closed = chat.conversations.add("customer-1", ConversationStatus.CLOSED, "agent-1")

    conversation = await registry.get_or_create_open("customer-1")

    assert conversation.id != closed.id
    assert conversation.status == ConversationStatus.WAITING


@pytest.mark.asyncio
async def test_lost_insert_race_returns_winner(chat, registry: ConversationRegistry) -> None:
    chat.conversations.races_to_lose = 1

    conversation = await registry.get_or_create_open("customer-1")

    open_rows = [
        row
        for row in chat.conversations.conversations.values()
        if row.status in (ConversationStatus.WAITING, ConversationStatus.ACTIVE)
    ]
    assert open_rows == [conversation]


@pytest.mark.asyncio
async def test_persistent_conflict_raises(chat, registry: ConversationRegistry) -> None:
    async def always_missing(customer_id: str):
        return None

    chat.conversations.get_open_for_customer = always_missing
    chat.conversations.races_to_lose = 5

    with pytest.raises(ConversationConflictError) as exc_info:
        await registry.get_or_create_open("customer-1")
    assert exc_info.value.attempts == 2


@pytest.mark.asyncio
async def test_find_missing_conversation_raises(registry: ConversationRegistry) -> None:
    with pytest.raises(ConversationNotFoundError):
        await registry.find(uuid4())


@pytest.mark.asyncio
async def test_assign_waiting_conversation(chat, registry: ConversationRegistry) -> None:
    conversation = chat.conversations.add("customer-1", ConversationStatus.WAITING)

    change = await registry.assign(conversation, "agent-1", AGENT)

    assert change.changed
    assert change.previous_status == ConversationStatus.WAITING
    assert conversation.status == ConversationStatus.ACTIVE
    assert conversation.agent_id == "agent-1"
    assert change.system_message is not None
    assert change.system_message.kind == MessageKind.SYSTEM
    assert change.system_message.body == ASSIGNMENT_ANNOUNCEMENT


@pytest.mark.asyncio
async def test_reassign_active_conversation_is_silent(chat, registry: ConversationRegistry) -> None:
    conversation = chat.conversations.add("customer-1", ConversationStatus.ACTIVE, "agent-2")

    change = await registry.assign(conversation, "agent-1", AGENT)

    assert not change.changed
    assert change.system_message is None
    assert conversation.agent_id == "agent-1"
    assert chat.messages.messages == []


@pytest.mark.asyncio
async def test_assign_same_agent_is_noop(chat, registry: ConversationRegistry) -> None:
    conversation = chat.conversations.add("customer-1", ConversationStatus.ACTIVE, "agent-1")
    before = conversation.last_activity
    chat.clock.advance(60)

    change = await registry.assign(conversation, "agent-1", AGENT)

    assert not change.changed
    assert conversation.last_activity == before


@pytest.mark.asyncio
async def test_assign_closed_conversation_raises(chat, registry: ConversationRegistry) -> None:
    conversation = chat.conversations.add("customer-1", ConversationStatus.CLOSED, "agent-2")

    with pytest.raises(ConversationClosedError):
        await registry.assign(conversation, "agent-1", AGENT)
    assert conversation.agent_id == "agent-2"


@pytest.mark.asyncio
async def test_set_status_writes_system_message(chat, registry: ConversationRegistry) -> None:
    conversation = chat.conversations.add("customer-1", ConversationStatus.ACTIVE, "agent-1")
    chat.clock.advance(5)

    change = await registry.set_status(
        conversation, ConversationStatus.CLOSED, CUSTOMER, agent_id="agent-1"
    )

    assert change.changed
    assert conversation.status == ConversationStatus.CLOSED
    assert conversation.last_activity == chat.clock.now()
    assert change.system_message.body == "Chat closed by customer."
    assert change.system_message.metadata_json == {
        "previous_status": "active",
        "status": "closed",
    }


@pytest.mark.asyncio
async def test_set_status_back_to_waiting_clears_agent(chat, registry: ConversationRegistry) -> None:
    conversation = chat.conversations.add("customer-1", ConversationStatus.ACTIVE, "agent-1")

    change = await registry.set_status(
        conversation, ConversationStatus.WAITING, AGENT, agent_id=None
    )

    assert change.changed
    assert conversation.agent_id is None
    assert change.system_message.body == "Chat moved to waiting queue."


@pytest.mark.asyncio
async def test_closing_closed_conversation_is_noop(chat, registry: ConversationRegistry) -> None:
    conversation = chat.conversations.add("customer-1", ConversationStatus.CLOSED, "agent-1")

    change = await registry.set_status(
        conversation, ConversationStatus.CLOSED, AGENT, agent_id="agent-9"
    )

    assert not change.changed
    assert conversation.agent_id == "agent-1"
    assert chat.messages.messages == []


@pytest.mark.asyncio
async def test_reopening_closed_conversation_raises(chat, registry: ConversationRegistry) -> None:
    conversation = chat.conversations.add("customer-1", ConversationStatus.CLOSED, "agent-1")

    with pytest.raises(ConversationClosedError):
        await registry.set_status(
            conversation, ConversationStatus.ACTIVE, AGENT, agent_id="agent-1"
        )
    assert conversation.status == ConversationStatus.CLOSED
