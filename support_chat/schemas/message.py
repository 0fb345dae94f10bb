from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from support_chat.domain.enums import MessageKind


class SendMessageRequest(BaseModel):
    body: str = Field(min_length=1)
    kind: MessageKind = MessageKind.TEXT
    metadata: dict[str, Any] | None = None
    conversation_id: UUID | None = None


class MessageResponse(BaseModel):
    id: UUID
    conversation_id: UUID
    sequence: int
    author_id: str
    body: str
    kind: MessageKind
    is_agent_authored: bool
    metadata: dict | None = Field(default=None, validation_alias="metadata_json")
    created_at: datetime
    read_at: datetime | None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)
