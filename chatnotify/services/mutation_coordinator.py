import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog

from chatnotify.models.contact_request import ContactAction, MutationStatus, TransactionState
from chatnotify.repositories.notification_store import NotificationStore
from chatnotify.schemas.notification import ContactRequest, MutationResult
from chatnotify.utils.contact_gateway import ContactGateway
from chatnotify.utils.exceptions import StaleMutation, TransientRemoteFailure


logger = structlog.get_logger()

Navigator = Callable[[str], Any]


@dataclass
class PendingTransaction:
    """Optimistic resolution of one contact request, keyed by request id."""

    request_id: str
    action: ContactAction
    # the request as it was before optimistic removal; restored on rollback
    snapshot: ContactRequest
    state: TransactionState = TransactionState.IN_FLIGHT
    error: Optional[str] = None

    @property
    def local_view(self) -> ContactRequest:
        if self.state is TransactionState.ROLLED_BACK:
            return self.snapshot
        return self.snapshot.model_copy(update={"status": self.action.resolved_status})


class MutationCoordinator:

    def __init__(
        self,
        store: NotificationStore,
        gateway: ContactGateway,
        navigator: Optional[Navigator] = None,
        sync_read_state: bool = False,
        history_limit: int = 256,
    ) -> None:
        self._store = store
        self._gateway = gateway
        self._navigator = navigator
        self._sync_read_state = sync_read_state
        self._history_limit = history_limit
        # in-flight transactions plus the most recent settled ones, oldest first
        self._transactions: Dict[str, PendingTransaction] = {}
        self._closed = False

    def transaction(self, request_id: str) -> Optional[PendingTransaction]:
        return self._transactions.get(request_id)

    def in_flight(self) -> List[str]:
        return [tx.request_id for tx in self._transactions.values() if tx.state is TransactionState.IN_FLIGHT]

    def close(self) -> None:
        """Stop restoring requests into the store; late results are only reported."""
        self._closed = True

    async def accept_request(self, request_id: str) -> MutationResult:
        return await self._resolve(request_id, ContactAction.ACCEPT)

    async def reject_request(self, request_id: str) -> MutationResult:
        return await self._resolve(request_id, ContactAction.REJECT)

    async def _resolve(self, request_id: str, action: ContactAction) -> MutationResult:
        try:
            tx = self._begin(request_id, action)
        except StaleMutation:
            logger.info("contact_request_already_resolved", request_id=request_id, action=action.value)
            return MutationResult(status=MutationStatus.ALREADY_RESOLVED, request_id=request_id)

        logger.info("contact_request_optimistic", request_id=request_id, action=action.value)
        try:
            if action is ContactAction.ACCEPT:
                ok = await self._gateway.accept_contact_request(request_id)
            else:
                ok = await self._gateway.reject_contact_request(request_id)
        except TransientRemoteFailure as exc:
            return self._rollback(tx, exc)
        except (httpx.HTTPError, OSError) as exc:
            return self._rollback(tx, TransientRemoteFailure(action.value, request_id, str(exc)))
        except asyncio.CancelledError:
            self._rollback(tx, TransientRemoteFailure(action.value, request_id, "cancelled"))
            raise
        except Exception as exc:
            logger.exception("contact_request_gateway_error", request_id=request_id, action=action.value)
            return self._rollback(tx, TransientRemoteFailure(action.value, request_id, str(exc) or type(exc).__name__))

        if not ok:
            return self._rollback(tx, TransientRemoteFailure(action.value, request_id, "rejected by remote"))

        tx.state = TransactionState.COMMITTED
        self._prune()
        logger.info("contact_request_committed", request_id=request_id, action=action.value)
        return MutationResult(status=MutationStatus.COMMITTED, request_id=request_id, request=tx.local_view)

    def _begin(self, request_id: str, action: ContactAction) -> PendingTransaction:
        current = self._transactions.get(request_id)
        if current is not None and current.state is TransactionState.IN_FLIGHT:
            raise StaleMutation(request_id)
        request = self._store.remove_contact_request(request_id)
        if request is None:
            raise StaleMutation(request_id)
        tx = PendingTransaction(request_id=request_id, action=action, snapshot=request)
        self._transactions.pop(request_id, None)
        self._transactions[request_id] = tx
        return tx

    def _prune(self) -> None:
        settled = [rid for rid, tx in self._transactions.items() if tx.state is not TransactionState.IN_FLIGHT]
        for request_id in settled[:max(0, len(settled) - self._history_limit)]:
            del self._transactions[request_id]

    def _rollback(self, tx: PendingTransaction, exc: TransientRemoteFailure) -> MutationResult:
        tx.state = TransactionState.ROLLED_BACK
        tx.error = str(exc)
        self._prune()

        if self._closed:
            logger.info("contact_request_rollback_skipped", request_id=tx.request_id, error=tx.error)
            return MutationResult(status=MutationStatus.ROLLED_BACK, request_id=tx.request_id, error=tx.error)

        if self._store.was_resolved_elsewhere(tx.request_id):
            logger.info("contact_request_resolved_during_flight", request_id=tx.request_id, error=tx.error)
            return MutationResult(status=MutationStatus.ALREADY_RESOLVED, request_id=tx.request_id, error=tx.error)

        restored = self._store.upsert_contact_request(tx.snapshot)
        logger.warning(
            "contact_request_rolled_back",
            request_id=tx.request_id,
            action=tx.action.value,
            error=tx.error,
            restored=restored,
        )
        return MutationResult(
            status=MutationStatus.ROLLED_BACK,
            request_id=tx.request_id,
            request=tx.snapshot,
            error=tx.error,
        )

    # ---- conversations ----

    def clear_chat(self, chat_id: str) -> bool:
        return self._store.clear_chat_notification(chat_id)

    def open_conversation(self, chat_id: str) -> MutationResult:
        # the local read state stands even if navigation fails
        self.clear_chat(chat_id)
        navigation_error = None
        if self._navigator is not None:
            try:
                self._navigator(chat_id)
            except Exception as exc:
                navigation_error = str(exc) or type(exc).__name__
                logger.warning("navigation_failed", chat_id=chat_id, error=navigation_error)
        return MutationResult(status=MutationStatus.CLEARED, chat_id=chat_id, navigation_error=navigation_error)

    async def sync_read_state(self, chat_id: str) -> bool:
        if not self._sync_read_state:
            return False
        return await self._sync("mark_read", chat_id, self._gateway.mark_chat_read(chat_id))

    def mark_requests_viewed(self) -> int:
        return self._store.mark_contact_requests_viewed()

    async def sync_requests_viewed(self) -> bool:
        if not self._sync_read_state:
            return False
        return await self._sync("mark_viewed", "contact_requests", self._gateway.mark_contact_requests_viewed())

    async def _sync(self, action: str, subject_id: str, call: Awaitable[bool]) -> bool:
        # the local state already changed; remote failures are only logged
        try:
            return await call
        except TransientRemoteFailure as exc:
            logger.warning("read_state_sync_failed", action=action, subject_id=subject_id, error=str(exc))
        except Exception:
            logger.exception("read_state_sync_failed", action=action, subject_id=subject_id)
        return False
