from datetime import datetime, timezone
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from chatnotify.models.contact_request import MutationStatus, RequestStatus
from chatnotify.models.notification import ChatKind, IngestOutcome


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # naive timestamps from the wire are taken to be UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SenderMeta(CamelModel):

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None


class ChatNotification(CamelModel):

    model_config = ConfigDict(frozen=True)

    chat_id: str = Field(min_length=1)
    chat_kind: ChatKind = ChatKind.DIRECT
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    unread_count: int = Field(default=0, ge=0)
    last_updated_at: datetime

    @field_validator("last_updated_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


class ContactRequest(CamelModel):

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(min_length=1)
    sender_id: str = Field(min_length=1)
    sender_display_name: Optional[str] = None
    sender_avatar_url: Optional[str] = None
    status: RequestStatus = RequestStatus.PENDING
    # opened in the pending list; does not affect the badge counts
    viewed: bool = False
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)


# ---- inbound events ----

class MessageArrived(CamelModel):

    model_config = ConfigDict(frozen=True)

    type: Literal["MESSAGE_ARRIVED", "NEW_MESSAGE"] = "MESSAGE_ARRIVED"
    chat_id: str = Field(min_length=1)
    chat_kind: ChatKind = ChatKind.DIRECT
    chat_name: Optional[str] = None
    chat_avatar_url: Optional[str] = None
    message_id: Optional[str] = None
    sender: Optional[SenderMeta] = None
    occurred_at: datetime = Field(default_factory=utcnow)

    @field_validator("occurred_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def dedup_key(self) -> str:
        return self.message_id or self.occurred_at.isoformat()

    @property
    def display_name(self) -> Optional[str]:
        if self.chat_kind is ChatKind.GROUP:
            return self.chat_name
        return self.sender.display_name if self.sender else self.chat_name

    @property
    def avatar_url(self) -> Optional[str]:
        if self.chat_kind is ChatKind.GROUP:
            return self.chat_avatar_url
        return self.sender.avatar_url if self.sender else self.chat_avatar_url


class ContactRequestCreated(CamelModel):

    model_config = ConfigDict(frozen=True)

    type: Literal["CONTACT_REQUEST_CREATED", "CONTACT_REQUEST"] = "CONTACT_REQUEST_CREATED"
    request_id: str = Field(min_length=1)
    sender: SenderMeta
    occurred_at: datetime = Field(default_factory=utcnow)

    @field_validator("occurred_at")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return as_utc(value)

    def to_request(self) -> ContactRequest:
        return ContactRequest(
            request_id=self.request_id,
            sender_id=self.sender.id,
            sender_display_name=self.sender.display_name,
            sender_avatar_url=self.sender.avatar_url,
            status=RequestStatus.PENDING,
            created_at=self.occurred_at,
        )


class ContactRequestResolvedElsewhere(CamelModel):

    model_config = ConfigDict(frozen=True)

    type: Literal[
        "CONTACT_REQUEST_RESOLVED",
        "CONTACT_REQUEST_ACCEPTED",
        "CONTACT_REQUEST_REJECTED",
    ] = "CONTACT_REQUEST_RESOLVED"
    request_id: str = Field(min_length=1)


class ContactRequestsViewed(CamelModel):
    """The pending list was opened on another device."""

    model_config = ConfigDict(frozen=True)

    type: Literal["CONTACT_REQUESTS_VIEWED"] = "CONTACT_REQUESTS_VIEWED"


class NotificationsCleared(CamelModel):
    """A conversation was read on another device."""

    model_config = ConfigDict(frozen=True)

    type: Literal["NOTIFICATIONS_CLEARED"] = "NOTIFICATIONS_CLEARED"
    chat_id: str = Field(min_length=1)


InboundEvent = Annotated[
    Union[
        MessageArrived,
        ContactRequestCreated,
        ContactRequestResolvedElsewhere,
        ContactRequestsViewed,
        NotificationsCleared,
    ],
    Field(discriminator="type"),
]

INBOUND_EVENT_TYPES = (
    MessageArrived,
    ContactRequestCreated,
    ContactRequestResolvedElsewhere,
    ContactRequestsViewed,
    NotificationsCleared,
)

inbound_event_adapter: TypeAdapter = TypeAdapter(InboundEvent)


# ---- consumer read API ----

class NotificationCounts(CamelModel):

    message_count: int
    unread_message_total: int
    contact_request_count: int
    unviewed_request_count: int
    total_count: int
    message_badge: str
    contact_request_badge: str
    total_badge: str


class NotificationSummary(NotificationCounts):

    notifications: List[ChatNotification]
    pending_requests: List[ContactRequest]


class MutationResult(CamelModel):

    status: MutationStatus
    request_id: Optional[str] = None
    chat_id: Optional[str] = None
    # local view of the request: resolved on commit, restored PENDING on rollback
    request: Optional[ContactRequest] = None
    error: Optional[str] = None
    navigation_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in (MutationStatus.COMMITTED, MutationStatus.CLEARED)


class IngestResponse(CamelModel):

    outcome: IngestOutcome


class ViewedResponse(CamelModel):

    marked: int
