import json
from collections import OrderedDict, deque
from typing import Any, Deque, Dict, Iterable, List, Mapping, Set, Union

import structlog
from pydantic import ValidationError

from chatnotify.models.contact_request import (
    ContactRequestDocument,
    ContactRequestsViewedDocument,
    ContactResolvedDocument,
)
from chatnotify.models.notification import IngestOutcome, MessageEventDocument, NotificationsClearedDocument
from chatnotify.repositories.notification_store import NotificationStore
from chatnotify.schemas.notification import (
    INBOUND_EVENT_TYPES,
    ChatNotification,
    ContactRequestCreated,
    ContactRequestResolvedElsewhere,
    ContactRequestsViewed,
    InboundEvent,
    MessageArrived,
    NotificationsCleared,
    inbound_event_adapter,
)
from chatnotify.utils.exceptions import MalformedEvent


logger = structlog.get_logger()

EventDocument = Union[
    MessageEventDocument,
    ContactRequestDocument,
    ContactResolvedDocument,
    ContactRequestsViewedDocument,
    NotificationsClearedDocument,
]
RawEvent = Union[InboundEvent, EventDocument, Mapping[str, Any], str, bytes]


class _SeenKeys:
    """Bounded memory of delivery keys for one chat."""

    def __init__(self, limit: int) -> None:
        self._order: Deque[str] = deque()
        self._keys: Set[str] = set()
        self._limit = limit

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def add(self, key: str) -> None:
        self._keys.add(key)
        self._order.append(key)
        while len(self._order) > self._limit:
            self._keys.discard(self._order.popleft())


class EventIngestor:
    """Folds realtime events into the store. Never raises and never calls out."""

    def __init__(self, store: NotificationStore, seen_limit: int = 1000, chat_limit: int = 1000) -> None:
        self._store = store
        self._seen_limit = seen_limit
        self._chat_limit = chat_limit
        # least recently active chat first
        self._seen: "OrderedDict[str, _SeenKeys]" = OrderedDict()

    def ingest(self, event: RawEvent) -> IngestOutcome:
        try:
            parsed = self._parse(event)
        except MalformedEvent as exc:
            logger.warning("event_dropped", reason=exc.reason, payload=exc.payload)
            return IngestOutcome.DROPPED

        if isinstance(parsed, MessageArrived):
            outcome = self._on_message(parsed)
        elif isinstance(parsed, ContactRequestCreated):
            outcome = self._on_request_created(parsed)
        elif isinstance(parsed, ContactRequestResolvedElsewhere):
            outcome = self._on_request_resolved(parsed)
        elif isinstance(parsed, ContactRequestsViewed):
            outcome = self._on_requests_viewed()
        else:
            outcome = self._on_cleared(parsed)

        if outcome is IngestOutcome.DUPLICATE:
            logger.debug("event_duplicate", type=parsed.type)
        return outcome

    def ingest_many(self, events: Iterable[RawEvent]) -> List[IngestOutcome]:
        return [self.ingest(event) for event in events]

    def _parse(self, event: RawEvent) -> InboundEvent:
        if isinstance(event, INBOUND_EVENT_TYPES):
            return event
        try:
            if isinstance(event, (str, bytes)):
                return inbound_event_adapter.validate_json(event)
            if isinstance(event, Mapping):
                return inbound_event_adapter.validate_python(dict(event))
        except ValidationError as exc:
            reason = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
            raise MalformedEvent(reason, _preview(event)) from exc
        raise MalformedEvent(f"unsupported event payload {type(event).__name__}", _preview(event))

    def _on_message(self, event: MessageArrived) -> IngestOutcome:
        seen = self._seen_keys(event.chat_id)
        key = event.dedup_key
        if key in seen:
            return IngestOutcome.DUPLICATE
        seen.add(key)

        current = self._store.get_chat_notification(event.chat_id)
        if current is None:
            notification = ChatNotification(
                chat_id=event.chat_id,
                chat_kind=event.chat_kind,
                display_name=event.display_name,
                avatar_url=event.avatar_url,
                unread_count=1,
                last_updated_at=event.occurred_at,
            )
        else:
            update: Dict[str, Any] = {"unread_count": current.unread_count + 1}
            if event.occurred_at >= current.last_updated_at:
                update["last_updated_at"] = event.occurred_at
                update["display_name"] = event.display_name or current.display_name
                update["avatar_url"] = event.avatar_url or current.avatar_url
            notification = current.model_copy(update=update)
        self._store.upsert_chat_notification(notification)
        return IngestOutcome.APPLIED

    def _seen_keys(self, chat_id: str) -> _SeenKeys:
        seen = self._seen.get(chat_id)
        if seen is None:
            seen = self._seen[chat_id] = _SeenKeys(self._seen_limit)
            while len(self._seen) > self._chat_limit:
                self._seen.popitem(last=False)
        else:
            self._seen.move_to_end(chat_id)
        return seen

    def _on_request_created(self, event: ContactRequestCreated) -> IngestOutcome:
        if self._store.get_contact_request(event.request_id) is not None:
            return IngestOutcome.DUPLICATE
        # resolved (or in flight) locally, or settled on another device
        if self._store.was_resolved(event.request_id):
            return IngestOutcome.DUPLICATE
        if not self._store.upsert_contact_request(event.to_request()):
            return IngestOutcome.DUPLICATE
        return IngestOutcome.APPLIED

    def _on_request_resolved(self, event: ContactRequestResolvedElsewhere) -> IngestOutcome:
        removed = self._store.remove_contact_request(event.request_id, resolved_elsewhere=True)
        return IngestOutcome.APPLIED if removed is not None else IngestOutcome.DUPLICATE

    def _on_requests_viewed(self) -> IngestOutcome:
        return IngestOutcome.APPLIED if self._store.mark_contact_requests_viewed() else IngestOutcome.DUPLICATE

    def _on_cleared(self, event: NotificationsCleared) -> IngestOutcome:
        cleared = self._store.clear_chat_notification(event.chat_id)
        return IngestOutcome.APPLIED if cleared else IngestOutcome.DUPLICATE


def _preview(event: Any) -> Any:
    if isinstance(event, bytes):
        event = event.decode("utf-8", errors="replace")
    if isinstance(event, str):
        return event[:200]
    if isinstance(event, Mapping):
        try:
            return json.loads(json.dumps(dict(event), default=str))
        except (TypeError, ValueError):
            return repr(event)[:200]
    return repr(event)[:200]
