import asyncio
from typing import Callable, Optional, Union

import structlog

from chatnotify.models.notification import IngestOutcome
from chatnotify.models.contact_request import MutationStatus
from chatnotify.repositories.notification_store import Listener, NotificationStore
from chatnotify.schemas.notification import MutationResult, NotificationCounts, NotificationSummary
from chatnotify.services.aggregation import AggregationView
from chatnotify.services.event_ingestor import EventIngestor, RawEvent
from chatnotify.services.mutation_coordinator import MutationCoordinator, Navigator
from chatnotify.utils.config import SessionConfig
from chatnotify.utils.contact_gateway import ContactGateway, get_gateway
from chatnotify.utils.exceptions import SessionClosedError
from chatnotify.utils.realtime_bus import NoopBus, RedisBus, get_bus


logger = structlog.get_logger()


class NotificationSession:
    """
    Notification state for one authenticated user.

    Owns the store and the components around it. Collaborators (remote
    gateway, realtime bus, navigator) come in explicitly; nothing is read
    from ambient globals. State lives from construction until close().
    """

    def __init__(
        self,
        config: SessionConfig,
        gateway: Optional[ContactGateway] = None,
        bus: Optional[Union[RedisBus, NoopBus]] = None,
        navigator: Optional[Navigator] = None,
    ) -> None:
        self.config = config
        self.store = NotificationStore()
        self.ingestor = EventIngestor(
            self.store,
            seen_limit=config.seen_message_limit,
            chat_limit=config.seen_chat_limit,
        )
        self._gateway = gateway if gateway is not None else get_gateway(config)
        self._bus = bus if bus is not None else get_bus(config)
        self.coordinator = MutationCoordinator(
            self.store,
            self._gateway,
            navigator=navigator,
            sync_read_state=config.sync_read_state,
        )
        self.view = AggregationView(badge_cap=config.badge_cap)
        self._subscription = None
        self._feed_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> None:
        self._ensure_open()
        if not getattr(self._bus, "enabled", False) or self._feed_task is not None:
            return
        self._subscription = await self._bus.subscribe(self.config.channel, self._on_bus_message)
        self._feed_task = asyncio.create_task(self._subscription.run())
        logger.info("session_started", user_id=self.config.user_id, channel=self.config.channel)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.coordinator.close()
        if self._subscription is not None:
            await self._subscription.cancel()
        if self._feed_task is not None:
            self._feed_task.cancel()
            try:
                await self._feed_task
            except asyncio.CancelledError:
                pass
        await self._bus.close()
        await self._gateway.aclose()
        self.store.reset()
        logger.info("session_closed", user_id=self.config.user_id)

    async def _on_bus_message(self, data: str) -> None:
        if not self._closed:
            self.ingestor.ingest(data)

    # ---- read API ----

    def summary(self) -> NotificationSummary:
        return self.view.summary(self.store.snapshot())

    def counts(self) -> NotificationCounts:
        return self.view.counts(self.store.snapshot())

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.store.subscribe(listener)

    # ---- actions ----

    def ingest(self, event: RawEvent) -> IngestOutcome:
        self._ensure_open()
        return self.ingestor.ingest(event)

    async def clear_chat_notifications(self, chat_id: str) -> MutationResult:
        self._ensure_open()
        self.coordinator.clear_chat(chat_id)
        await self.coordinator.sync_read_state(chat_id)
        return MutationResult(status=MutationStatus.CLEARED, chat_id=chat_id)

    async def mark_requests_viewed(self) -> int:
        self._ensure_open()
        marked = self.coordinator.mark_requests_viewed()
        await self.coordinator.sync_requests_viewed()
        return marked

    def open_conversation(self, chat_id: str) -> MutationResult:
        self._ensure_open()
        return self.coordinator.open_conversation(chat_id)

    async def accept_request(self, request_id: str) -> MutationResult:
        self._ensure_open()
        return await self.coordinator.accept_request(request_id)

    async def reject_request(self, request_id: str) -> MutationResult:
        self._ensure_open()
        return await self.coordinator.reject_request(request_id)

    def _ensure_open(self) -> None:
        if self._closed:
            raise SessionClosedError(self.config.user_id)
