from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from support_chat.core.config import get_settings
from support_chat.core.db import get_db_session
from support_chat.core.security import decode_access_token
from support_chat.domain.exceptions import InvalidConversationTransition
from support_chat.domain.principal import Principal
from support_chat.services.coordinator import AssignmentCoordinator
from support_chat.services.errors import (
    ConversationAccessDeniedError,
    ConversationConflictError,
    ConversationNotFoundError,
    CustomerCapabilityRequiredError,
    ElevatedCapabilityRequiredError,
    MessageValidationError,
)

bearer_scheme = HTTPBearer(auto_error=False)

SERVICE_ERRORS: tuple[type[Exception], ...] = (
    ConversationNotFoundError,
    ConversationAccessDeniedError,
    ElevatedCapabilityRequiredError,
    CustomerCapabilityRequiredError,
    InvalidConversationTransition,
    MessageValidationError,
    ConversationConflictError,
)


async def get_coordinator(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> AssignmentCoordinator:
    return AssignmentCoordinator(
        session=session,
        sink=getattr(request.app.state, "notification_sink", None),
        locks=getattr(request.app.state, "conversation_locks", None),
    )


async def get_principal(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization credentials",
        )

    try:
        return decode_access_token(credentials.credentials, get_settings().chat_auth_secret)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired session",
        ) from exc


async def get_agent_principal(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_elevated:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Support agent access required",
        )
    return principal


def raise_for_service_error(exc: Exception) -> None:
    # Access failures look like a missing conversation so ids cannot be enumerated.
    if isinstance(exc, (ConversationNotFoundError, ConversationAccessDeniedError)):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found"
        ) from exc
    if isinstance(
        exc, (ElevatedCapabilityRequiredError, CustomerCapabilityRequiredError)
    ):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
    if isinstance(exc, InvalidConversationTransition):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if isinstance(exc, MessageValidationError):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=str(exc)
        ) from exc
    if isinstance(exc, ConversationConflictError):
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Conversation is busy, please retry",
        ) from exc
    raise exc
