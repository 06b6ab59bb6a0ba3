from enum import Enum
from typing import Optional, TypedDict

from chatnotify.models.notification import SenderDocument


class RequestStatus(str, Enum):

    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class ContactAction(str, Enum):

    ACCEPT = "accept"
    REJECT = "reject"

    @property
    def resolved_status(self) -> RequestStatus:
        return RequestStatus.ACCEPTED if self is ContactAction.ACCEPT else RequestStatus.REJECTED


class TransactionState(str, Enum):

    IN_FLIGHT = "in_flight"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class MutationStatus(str, Enum):

    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    ALREADY_RESOLVED = "already_resolved"
    CLEARED = "cleared"


class ContactRequestDocument(TypedDict, total=False):
    # type: "CONTACT_REQUEST_CREATED" | "CONTACT_REQUEST"
    type: str
    requestId: str
    sender: SenderDocument
    occurredAt: str


class ContactResolvedDocument(TypedDict, total=False):
    type: str
    requestId: str


class ContactRequestsViewedDocument(TypedDict, total=False):
    # type: "CONTACT_REQUESTS_VIEWED"
    type: str
