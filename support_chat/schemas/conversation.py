from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from support_chat.domain.enums import ConversationStatus
from support_chat.schemas.message import MessageResponse


class ConversationResponse(BaseModel):
    id: UUID
    customer_id: str
    agent_id: str | None
    status: ConversationStatus
    subject: str | None
    last_activity: datetime
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ConversationViewResponse(BaseModel):
    conversation: ConversationResponse
    unread_count: int


class ConversationMessagesResponse(BaseModel):
    conversation: ConversationResponse
    messages: list[MessageResponse]
    page: int
    limit: int
    marked_read: int


class MessageExchangeResponse(BaseModel):
    conversation: ConversationResponse
    message: MessageResponse
    activated: bool


class UpdateStatusRequest(BaseModel):
    status: ConversationStatus


class StatusChangeResponse(BaseModel):
    conversation: ConversationResponse
    previous_status: ConversationStatus
    changed: bool
    system_message: MessageResponse | None


class UnreadCountResponse(BaseModel):
    conversation_id: UUID
    unread_count: int


class ConversationSummaryResponse(BaseModel):
    conversation: ConversationResponse
    messages_count: int
    unread_count: int


class ConversationListResponse(BaseModel):
    items: list[ConversationSummaryResponse]
    page: int
    limit: int
