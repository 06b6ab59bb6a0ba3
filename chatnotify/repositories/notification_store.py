from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from chatnotify.models.contact_request import RequestStatus
from chatnotify.schemas.notification import ChatNotification, ContactRequest


logger = structlog.get_logger()


@dataclass(frozen=True)
class StoreSnapshot:
    """Immutable view of the store at one version."""

    version: int
    notifications: Tuple[ChatNotification, ...] = ()
    pending_requests: Tuple[ContactRequest, ...] = ()


Listener = Callable[[StoreSnapshot], None]


class NotificationStore:
    """
    Session-scoped state for unread conversations and pending contact requests.

    Records are immutable; every mutation swaps whole records, so a reader
    never sees a count without its matching timestamp. Mutations are plain
    synchronous calls and run between awaits on the event loop.
    """

    def __init__(self, tombstone_limit: int = 10000) -> None:
        self._notifications: Dict[str, ChatNotification] = {}
        self._requests: Dict[str, ContactRequest] = {}
        self._by_sender: Dict[str, str] = {}
        # request ids removed from the pending set, oldest first; value is True
        # when the removal came from a remote resolution
        self._resolved: "OrderedDict[str, bool]" = OrderedDict()
        self._tombstone_limit = tombstone_limit
        self._listeners: List[Listener] = []
        self._version = 0
        self._snapshot: Optional[StoreSnapshot] = None

    # ---- chat notifications ----

    def get_chat_notification(self, chat_id: str) -> Optional[ChatNotification]:
        return self._notifications.get(chat_id)

    def upsert_chat_notification(self, notification: ChatNotification) -> None:
        if notification.unread_count == 0:
            self.clear_chat_notification(notification.chat_id)
            return
        if self._notifications.get(notification.chat_id) == notification:
            return
        self._notifications[notification.chat_id] = notification
        self._changed()

    def clear_chat_notification(self, chat_id: str) -> bool:
        if self._notifications.pop(chat_id, None) is None:
            return False
        self._changed()
        return True

    # ---- contact requests ----

    def get_contact_request(self, request_id: str) -> Optional[ContactRequest]:
        return self._requests.get(request_id)

    def find_request_by_sender(self, sender_id: str) -> Optional[ContactRequest]:
        request_id = self._by_sender.get(sender_id)
        return self._requests.get(request_id) if request_id else None

    def upsert_contact_request(self, request: ContactRequest) -> bool:
        """
        Store a pending request, keeping one per sender.

        Returns False when a newer pending request from the same sender is
        already held and the given one was not stored.
        """
        if request.status is not RequestStatus.PENDING:
            raise ValueError(f"Only pending requests can be stored, got {request.status.value}")

        existing = self.find_request_by_sender(request.sender_id)
        if existing is not None and existing.request_id != request.request_id:
            if existing.created_at > request.created_at:
                return False
            self._drop_request(existing.request_id)
            self._tombstone(existing.request_id)
            logger.debug("contact_request_superseded", request_id=existing.request_id, by=request.request_id)

        previous = self._requests.get(request.request_id)
        if previous is not None and previous.sender_id != request.sender_id:
            self._by_sender.pop(previous.sender_id, None)

        self._resolved.pop(request.request_id, None)
        if previous == request:
            return True
        self._requests[request.request_id] = request
        self._by_sender[request.sender_id] = request.request_id
        self._changed()
        return True

    def remove_contact_request(self, request_id: str, resolved_elsewhere: bool = False) -> Optional[ContactRequest]:
        self._tombstone(request_id, resolved_elsewhere)
        removed = self._drop_request(request_id)
        if removed is not None:
            self._changed()
        return removed

    def was_resolved(self, request_id: str) -> bool:
        return request_id in self._resolved

    def was_resolved_elsewhere(self, request_id: str) -> bool:
        return self._resolved.get(request_id, False)

    def mark_contact_requests_viewed(self) -> int:
        unviewed = [r for r in self._requests.values() if not r.viewed]
        for request in unviewed:
            self._requests[request.request_id] = request.model_copy(update={"viewed": True})
        if unviewed:
            self._changed()
        return len(unviewed)

    def _tombstone(self, request_id: str, resolved_elsewhere: bool = False) -> None:
        resolved_elsewhere = self._resolved.pop(request_id, False) or resolved_elsewhere
        self._resolved[request_id] = resolved_elsewhere
        while len(self._resolved) > self._tombstone_limit:
            self._resolved.popitem(last=False)

    def _drop_request(self, request_id: str) -> Optional[ContactRequest]:
        removed = self._requests.pop(request_id, None)
        if removed is not None and self._by_sender.get(removed.sender_id) == request_id:
            del self._by_sender[removed.sender_id]
        return removed

    # ---- reads ----

    def notifications(self) -> Tuple[ChatNotification, ...]:
        return self.snapshot().notifications

    def pending_requests(self) -> Tuple[ContactRequest, ...]:
        return self.snapshot().pending_requests

    def snapshot(self) -> StoreSnapshot:
        if self._snapshot is None:
            notifications = sorted(
                self._notifications.values(),
                key=lambda n: (n.last_updated_at, n.chat_id),
                reverse=True,
            )
            requests = sorted(
                self._requests.values(),
                key=lambda r: (r.created_at, r.request_id),
                reverse=True,
            )
            self._snapshot = StoreSnapshot(
                version=self._version,
                notifications=tuple(notifications),
                pending_requests=tuple(requests),
            )
        return self._snapshot

    # ---- observers ----

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def reset(self) -> None:
        had_state = bool(self._notifications or self._requests)
        self._notifications.clear()
        self._requests.clear()
        self._by_sender.clear()
        self._resolved.clear()
        if had_state:
            self._changed()
        self._listeners.clear()

    def _changed(self) -> None:
        self._version += 1
        self._snapshot = None
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("store_listener_failed", version=snapshot.version)
