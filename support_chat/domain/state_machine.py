from support_chat.domain.enums import OPEN_STATUSES, ConversationStatus
from support_chat.domain.exceptions import InvalidConversationTransition

ASSIGNMENT_ANNOUNCEMENT = "Chat assigned to an agent."


class ConversationLifecycle:
    """State machine for conversation lifecycle: waiting -> active -> closed."""

    _allowed_transitions: frozenset[tuple[ConversationStatus, ConversationStatus]] = frozenset(
        {
            (ConversationStatus.WAITING, ConversationStatus.ACTIVE),
            (ConversationStatus.WAITING, ConversationStatus.CLOSED),
            (ConversationStatus.ACTIVE, ConversationStatus.WAITING),
            (ConversationStatus.ACTIVE, ConversationStatus.CLOSED),
        }
    )

    @classmethod
    def transition(
        cls, current: ConversationStatus, target: ConversationStatus
    ) -> ConversationStatus:
        # Repeated UI actions land on the same state and are no-ops.
        if current == target:
            return current

        if (current, target) not in cls._allowed_transitions:
            raise InvalidConversationTransition(current=current, target=target)
        return target

    @staticmethod
    def is_read_only(status: ConversationStatus) -> bool:
        return status == ConversationStatus.CLOSED

    @staticmethod
    def is_open(status: ConversationStatus) -> bool:
        return status in OPEN_STATUSES

    @staticmethod
    def announcement(target: ConversationStatus, by_elevated: bool = True) -> str:
        if target == ConversationStatus.ACTIVE:
            return "Chat activated by agent."
        if target == ConversationStatus.WAITING:
            return "Chat moved to waiting queue."
        if by_elevated:
            return "Chat closed by agent."
        return "Chat closed by customer."
