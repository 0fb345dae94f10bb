from uuid import UUID

from support_chat.domain.enums import ConversationStatus


class InvalidConversationTransition(ValueError):
    def __init__(
        self,
        current: ConversationStatus,
        target: ConversationStatus,
        message: str | None = None,
    ) -> None:
        super().__init__(
            message
            or f"Cannot move conversation from '{current.value}' to '{target.value}'."
        )
        self.current = current
        self.target = target


class ConversationClosedError(InvalidConversationTransition):
    def __init__(
        self,
        conversation_id: UUID,
        target: ConversationStatus = ConversationStatus.CLOSED,
    ) -> None:
        super().__init__(
            ConversationStatus.CLOSED,
            target,
            f"Conversation '{conversation_id}' is closed and read-only",
        )
        self.conversation_id = conversation_id
