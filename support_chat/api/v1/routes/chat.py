from uuid import UUID

from fastapi import APIRouter, Depends, Query

from support_chat.api.deps import (
    SERVICE_ERRORS,
    get_coordinator,
    get_principal,
    raise_for_service_error,
)
from support_chat.domain.commands import CloseCommand, ListMessagesCommand, SendMessageCommand
from support_chat.domain.principal import Principal
from support_chat.schemas.conversation import (
    ConversationMessagesResponse,
    ConversationResponse,
    ConversationViewResponse,
    MessageExchangeResponse,
    StatusChangeResponse,
    UnreadCountResponse,
)
from support_chat.schemas.message import MessageResponse, SendMessageRequest
from support_chat.services.coordinator import AssignmentCoordinator
from support_chat.services.registry import StatusChange

router = APIRouter()


def to_status_change_response(change: StatusChange) -> StatusChangeResponse:
    return StatusChangeResponse(
        conversation=ConversationResponse.model_validate(change.conversation),
        previous_status=change.previous_status,
        changed=change.changed,
        system_message=(
            MessageResponse.model_validate(change.system_message)
            if change.system_message is not None
            else None
        ),
    )


@router.get("/conversation", response_model=ConversationViewResponse)
async def open_conversation(
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    principal: Principal = Depends(get_principal),
) -> ConversationViewResponse:
    try:
        view = await coordinator.open_conversation(principal)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationViewResponse(
        conversation=ConversationResponse.model_validate(view.conversation),
        unread_count=view.unread_count,
    )


@router.post("/messages", response_model=MessageExchangeResponse)
async def send_message(
    payload: SendMessageRequest,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    principal: Principal = Depends(get_principal),
) -> MessageExchangeResponse:
    command = SendMessageCommand(
        body=payload.body,
        kind=payload.kind,
        metadata=payload.metadata,
        conversation_id=payload.conversation_id,
    )
    try:
        result = await coordinator.send_message(principal, command)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return MessageExchangeResponse(
        conversation=ConversationResponse.model_validate(result.conversation),
        message=MessageResponse.model_validate(result.message),
        activated=result.activated,
    )


@router.get(
    "/conversations/{conversation_id}/messages",
    response_model=ConversationMessagesResponse,
)
async def list_messages(
    conversation_id: UUID,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    principal: Principal = Depends(get_principal),
) -> ConversationMessagesResponse:
    command = ListMessagesCommand(conversation_id=conversation_id, page=page, limit=limit)
    try:
        result = await coordinator.list_messages(principal, command)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationMessagesResponse(
        conversation=ConversationResponse.model_validate(result.conversation),
        messages=[MessageResponse.model_validate(message) for message in result.messages],
        page=page,
        limit=limit,
        marked_read=result.marked_read,
    )


@router.get(
    "/conversations/{conversation_id}/unread",
    response_model=UnreadCountResponse,
)
async def get_unread_count(
    conversation_id: UUID,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    principal: Principal = Depends(get_principal),
) -> UnreadCountResponse:
    try:
        unread_count = await coordinator.unread_count(principal, conversation_id)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return UnreadCountResponse(conversation_id=conversation_id, unread_count=unread_count)


@router.post(
    "/conversations/{conversation_id}/close",
    response_model=StatusChangeResponse,
)
async def close_conversation(
    conversation_id: UUID,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    principal: Principal = Depends(get_principal),
) -> StatusChangeResponse:
    try:
        change = await coordinator.close(principal, CloseCommand(conversation_id))
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return to_status_change_response(change)
