from enum import Enum


class ConversationStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    CLOSED = "closed"


OPEN_STATUSES: tuple[ConversationStatus, ...] = (
    ConversationStatus.WAITING,
    ConversationStatus.ACTIVE,
)


class MessageKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


CLIENT_MESSAGE_KINDS: frozenset[MessageKind] = frozenset(
    {MessageKind.TEXT, MessageKind.IMAGE, MessageKind.FILE}
)


class ConversationFilter(str, Enum):
    OPEN = "open"
    ALL = "all"
    WAITING = "waiting"
    ACTIVE = "active"
    CLOSED = "closed"


class NotificationEventType(str, Enum):
    MESSAGE_SENT = "message_sent"
    STATUS_CHANGED = "status_changed"
