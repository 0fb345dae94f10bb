from uuid import UUID

from fastapi import APIRouter, Depends, Query

from support_chat.api.deps import (
    SERVICE_ERRORS,
    get_agent_principal,
    get_coordinator,
    raise_for_service_error,
)
from support_chat.api.v1.routes.chat import to_status_change_response
from support_chat.domain.commands import ClaimCommand, UpdateStatusCommand
from support_chat.domain.enums import ConversationFilter
from support_chat.domain.principal import Principal
from support_chat.schemas.conversation import (
    ConversationListResponse,
    ConversationResponse,
    ConversationSummaryResponse,
    StatusChangeResponse,
    UpdateStatusRequest,
)
from support_chat.schemas.stats import DashboardStatsResponse
from support_chat.services.coordinator import AssignmentCoordinator

router = APIRouter()


@router.get("/conversations", response_model=ConversationListResponse)
async def list_conversations(
    status_filter: ConversationFilter = Query(default=ConversationFilter.OPEN, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    principal: Principal = Depends(get_agent_principal),
) -> ConversationListResponse:
    try:
        summaries = await coordinator.list_conversations(
            principal, status_filter=status_filter, page=page, limit=limit
        )
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return ConversationListResponse(
        items=[
            ConversationSummaryResponse(
                conversation=ConversationResponse.model_validate(summary.conversation),
                messages_count=summary.messages_count,
                unread_count=summary.unread_count,
            )
            for summary in summaries
        ],
        page=page,
        limit=limit,
    )


@router.post(
    "/conversations/{conversation_id}/claim",
    response_model=StatusChangeResponse,
)
async def claim_conversation(
    conversation_id: UUID,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    principal: Principal = Depends(get_agent_principal),
) -> StatusChangeResponse:
    try:
        change = await coordinator.claim(principal, ClaimCommand(conversation_id))
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return to_status_change_response(change)


@router.post(
    "/conversations/{conversation_id}/status",
    response_model=StatusChangeResponse,
)
async def update_conversation_status(
    conversation_id: UUID,
    payload: UpdateStatusRequest,
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    principal: Principal = Depends(get_agent_principal),
) -> StatusChangeResponse:
    command = UpdateStatusCommand(conversation_id=conversation_id, status=payload.status)
    try:
        change = await coordinator.update_status(principal, command)
    except SERVICE_ERRORS as exc:
        raise_for_service_error(exc)
    return to_status_change_response(change)


@router.get("/stats", response_model=DashboardStatsResponse)
async def get_dashboard_stats(
    coordinator: AssignmentCoordinator = Depends(get_coordinator),
    principal: Principal = Depends(get_agent_principal),
) -> DashboardStatsResponse:
    stats = await coordinator.dashboard(principal)
    return DashboardStatsResponse.model_validate(stats)
