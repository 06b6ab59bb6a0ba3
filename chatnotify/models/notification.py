from enum import Enum
from typing import Optional, TypedDict


class ChatKind(str, Enum):

    DIRECT = "DIRECT"
    GROUP = "GROUP"


class IngestOutcome(str, Enum):

    APPLIED = "applied"
    DUPLICATE = "duplicate"
    DROPPED = "dropped"


class SenderDocument(TypedDict, total=False):
    id: str
    displayName: Optional[str]
    avatarUrl: Optional[str]


class MessageEventDocument(TypedDict, total=False):
    # type: "MESSAGE_ARRIVED" | "NEW_MESSAGE"
    type: str
    chatId: str
    chatKind: str
    chatName: Optional[str]
    chatAvatarUrl: Optional[str]
    messageId: Optional[str]
    sender: SenderDocument
    occurredAt: str


class NotificationsClearedDocument(TypedDict, total=False):
    type: str
    chatId: str
