from typing import Tuple

from chatnotify.repositories.notification_store import StoreSnapshot
from chatnotify.schemas.notification import ChatNotification, ContactRequest, NotificationCounts, NotificationSummary


DEFAULT_BADGE_CAP = 99


def badge(count: int, cap: int = DEFAULT_BADGE_CAP) -> str:
    return f"{cap}+" if count > cap else str(count)


class AggregationView:
    """Derivations over a store snapshot. Stateless apart from the badge cap."""

    def __init__(self, badge_cap: int = DEFAULT_BADGE_CAP) -> None:
        self.badge_cap = badge_cap

    def message_count(self, snapshot: StoreSnapshot) -> int:
        return sum(1 for n in snapshot.notifications if n.unread_count > 0)

    def unread_message_total(self, snapshot: StoreSnapshot) -> int:
        return sum(n.unread_count for n in snapshot.notifications)

    def contact_request_count(self, snapshot: StoreSnapshot) -> int:
        return len(snapshot.pending_requests)

    def unviewed_request_count(self, snapshot: StoreSnapshot) -> int:
        return sum(1 for r in snapshot.pending_requests if not r.viewed)

    def total_count(self, snapshot: StoreSnapshot) -> int:
        return self.message_count(snapshot) + self.contact_request_count(snapshot)

    def ordered_notifications(self, snapshot: StoreSnapshot) -> Tuple[ChatNotification, ...]:
        # the store already orders by last_updated_at desc
        return snapshot.notifications

    def ordered_pending_requests(self, snapshot: StoreSnapshot) -> Tuple[ContactRequest, ...]:
        return snapshot.pending_requests

    def badge(self, count: int) -> str:
        return badge(count, self.badge_cap)

    def counts(self, snapshot: StoreSnapshot) -> NotificationCounts:
        return NotificationCounts(**self._counts(snapshot))

    def summary(self, snapshot: StoreSnapshot) -> NotificationSummary:
        return NotificationSummary(
            notifications=list(self.ordered_notifications(snapshot)),
            pending_requests=list(self.ordered_pending_requests(snapshot)),
            **self._counts(snapshot),
        )

    def _counts(self, snapshot: StoreSnapshot) -> dict:
        messages = self.message_count(snapshot)
        requests = self.contact_request_count(snapshot)
        total = messages + requests
        return {
            "message_count": messages,
            "unread_message_total": self.unread_message_total(snapshot),
            "contact_request_count": requests,
            "unviewed_request_count": self.unviewed_request_count(snapshot),
            "total_count": total,
            "message_badge": self.badge(messages),
            "contact_request_badge": self.badge(requests),
            "total_badge": self.badge(total),
        }
