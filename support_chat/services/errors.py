from uuid import UUID

from support_chat.domain.enums import MessageKind


class ConversationNotFoundError(LookupError):
    def __init__(self, conversation_id: UUID) -> None:
        super().__init__(f"Conversation '{conversation_id}' not found")
        self.conversation_id = conversation_id


class ConversationAccessDeniedError(PermissionError):
    def __init__(self, conversation_id: UUID, user_id: str) -> None:
        super().__init__(
            f"Conversation '{conversation_id}' is not accessible by user '{user_id}'"
        )
        self.conversation_id = conversation_id
        self.user_id = user_id


class ElevatedCapabilityRequiredError(PermissionError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User '{user_id}' is not a support agent")
        self.user_id = user_id


class CustomerCapabilityRequiredError(PermissionError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User '{user_id}' is a support agent and has no own conversation")
        self.user_id = user_id


class MessageValidationError(ValueError):
    pass


class MessageBodyError(MessageValidationError):
    def __init__(self, max_length: int) -> None:
        super().__init__(
            f"Message body must be between 1 and {max_length} characters."
        )
        self.max_length = max_length


class MessageKindError(MessageValidationError):
    def __init__(self, kind: MessageKind | str) -> None:
        value = kind.value if isinstance(kind, MessageKind) else kind
        super().__init__(f"Message kind '{value}' cannot be sent by clients.")
        self.kind = kind


class ConversationConflictError(RuntimeError):
    def __init__(self, customer_id: str, attempts: int) -> None:
        super().__init__(
            f"Could not open a conversation for customer '{customer_id}' "
            f"after {attempts} attempts"
        )
        self.customer_id = customer_id
        self.attempts = attempts
