"""
Tests for MutationCoordinator.

Accept/reject run optimistically against the store and roll back when the
remote call fails. A second resolution of the same request is a no-op.
"""

import asyncio

import httpx
import pytest
from structlog.testing import capture_logs

from chatnotify.models.contact_request import MutationStatus, RequestStatus, TransactionState
from chatnotify.services.mutation_coordinator import MutationCoordinator
from chatnotify.utils.exceptions import TransientRemoteFailure
from tests.factories import FakeGateway, message_event, request_event, resolved_event


class TestAcceptReject:

    async def test_accept_success_removes_request(self, store, ingestor, coordinator, gateway, view):
        ingestor.ingest(request_event("r1", "u1"))

        result = await coordinator.accept_request("r1")

        assert result.status is MutationStatus.COMMITTED
        assert result.ok
        assert result.request.status is RequestStatus.ACCEPTED
        assert view.contact_request_count(store.snapshot()) == 0
        assert gateway.calls == [("accept", "r1")]
        assert coordinator.transaction("r1").state is TransactionState.COMMITTED

    async def test_reject_success_removes_request(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1", "u1"))

        result = await coordinator.reject_request("r1")

        assert result.status is MutationStatus.COMMITTED
        assert result.request.status is RequestStatus.REJECTED
        assert store.pending_requests() == ()
        assert gateway.calls == [("reject", "r1")]

    async def test_failed_accept_rolls_back(self, store, ingestor, coordinator, gateway, view):
        ingestor.ingest(request_event("r1", "u1"))
        before = store.get_contact_request("r1")
        gateway.fail_with = TransientRemoteFailure("accept", "r1", "HTTP 500")

        with capture_logs() as logs:
            result = await coordinator.accept_request("r1")

        assert result.status is MutationStatus.ROLLED_BACK
        assert not result.ok
        assert "HTTP 500" in result.error
        assert view.contact_request_count(store.snapshot()) == 1
        restored = view.ordered_pending_requests(store.snapshot())[0]
        assert restored == before
        assert restored.status is RequestStatus.PENDING
        assert coordinator.transaction("r1").state is TransactionState.ROLLED_BACK
        assert any(entry["event"] == "contact_request_rolled_back" for entry in logs)

    async def test_remote_answering_false_rolls_back(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1"))
        gateway.result = False

        result = await coordinator.reject_request("r1")

        assert result.status is MutationStatus.ROLLED_BACK
        assert store.get_contact_request("r1") is not None

    async def test_transport_error_is_caught_and_rolled_back(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1"))
        gateway.fail_with = httpx.ConnectError("connection refused")

        result = await coordinator.accept_request("r1")

        assert result.status is MutationStatus.ROLLED_BACK
        assert "connection refused" in result.error
        assert store.get_contact_request("r1") is not None

    async def test_unexpected_gateway_error_rolls_back(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1"))
        gateway.fail_with = RuntimeError("boom")

        with capture_logs() as logs:
            result = await coordinator.accept_request("r1")

        assert result.status is MutationStatus.ROLLED_BACK
        assert result.error == "boom"
        assert [r.request_id for r in store.pending_requests()] == ["r1"]
        assert coordinator.in_flight() == []
        assert any(entry["event"] == "contact_request_gateway_error" for entry in logs)

        gateway.fail_with = None
        assert (await coordinator.accept_request("r1")).status is MutationStatus.COMMITTED

    async def test_retry_after_rollback_succeeds(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1"))
        gateway.fail_with = TransientRemoteFailure("accept", "r1")
        await coordinator.accept_request("r1")

        gateway.fail_with = None
        result = await coordinator.accept_request("r1")

        assert result.status is MutationStatus.COMMITTED
        assert store.pending_requests() == ()
        assert gateway.calls == [("accept", "r1"), ("accept", "r1")]


class TestAlreadyResolved:

    async def test_second_accept_is_noop(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1"))
        await coordinator.accept_request("r1")
        version = store.snapshot().version

        result = await coordinator.accept_request("r1")

        assert result.status is MutationStatus.ALREADY_RESOLVED
        assert store.snapshot().version == version
        assert gateway.calls == [("accept", "r1")]

    async def test_unknown_request_is_noop(self, store, coordinator, gateway):
        result = await coordinator.reject_request("ghost")

        assert result.status is MutationStatus.ALREADY_RESOLVED
        assert gateway.calls == []
        assert store.snapshot().version == 0

    async def test_resolution_while_in_flight_is_rejected(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1", "u1"))
        gateway.gate = asyncio.Event()

        first = asyncio.create_task(coordinator.accept_request("r1"))
        await asyncio.sleep(0)
        assert coordinator.in_flight() == ["r1"]
        assert store.pending_requests() == ()

        second = await coordinator.reject_request("r1")
        assert second.status is MutationStatus.ALREADY_RESOLVED

        gateway.gate.set()
        assert (await first).status is MutationStatus.COMMITTED
        assert gateway.calls == [("accept", "r1")]
        assert coordinator.in_flight() == []


class TestInFlightWindow:

    async def test_unrelated_events_apply_during_flight(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1", "u1"))
        gateway.gate = asyncio.Event()

        task = asyncio.create_task(coordinator.accept_request("r1"))
        await asyncio.sleep(0)
        ingestor.ingest(message_event("c1"))
        ingestor.ingest(request_event("r2", "u2"))
        gateway.gate.set()
        await task

        assert store.get_chat_notification("c1").unread_count == 1
        assert [r.request_id for r in store.pending_requests()] == ["r2"]

    async def test_redelivered_creation_during_flight_is_ignored(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1", "u1"))
        gateway.gate = asyncio.Event()

        task = asyncio.create_task(coordinator.accept_request("r1"))
        await asyncio.sleep(0)
        ingestor.ingest(request_event("r1", "u1"))
        gateway.gate.set()
        await task

        assert store.pending_requests() == ()

    async def test_late_failure_after_remote_resolution_does_not_restore(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1", "u1"))
        gateway.gate = asyncio.Event()
        gateway.fail_with = TransientRemoteFailure("accept", "r1", "timeout")

        task = asyncio.create_task(coordinator.accept_request("r1"))
        await asyncio.sleep(0)
        ingestor.ingest(resolved_event("r1"))
        gateway.gate.set()
        result = await task

        assert result.status is MutationStatus.ALREADY_RESOLVED
        assert store.pending_requests() == ()

    async def test_rollback_keeps_newer_request_from_same_sender(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1", "u1", minutes=0))
        gateway.gate = asyncio.Event()
        gateway.fail_with = TransientRemoteFailure("reject", "r1")

        task = asyncio.create_task(coordinator.reject_request("r1"))
        await asyncio.sleep(0)
        ingestor.ingest(request_event("r2", "u1", minutes=5))
        gateway.gate.set()
        result = await task

        assert result.status is MutationStatus.ROLLED_BACK
        assert [r.request_id for r in store.pending_requests()] == ["r2"]

    async def test_local_view_follows_transaction_state(self, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1"))
        gateway.gate = asyncio.Event()
        gateway.fail_with = TransientRemoteFailure("reject", "r1")

        task = asyncio.create_task(coordinator.reject_request("r1"))
        await asyncio.sleep(0)
        assert coordinator.transaction("r1").local_view.status is RequestStatus.REJECTED

        gateway.gate.set()
        await task
        assert coordinator.transaction("r1").local_view.status is RequestStatus.PENDING

    async def test_cancelled_mutation_restores_request(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1"))
        gateway.gate = asyncio.Event()

        task = asyncio.create_task(coordinator.accept_request("r1"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [r.request_id for r in store.pending_requests()] == ["r1"]
        assert coordinator.transaction("r1").state is TransactionState.ROLLED_BACK


class TestConversations:

    def test_open_conversation_clears_then_navigates(self, store, ingestor, gateway):
        visited = []
        coordinator = MutationCoordinator(store, gateway, navigator=visited.append)
        ingestor.ingest(message_event("c1"))

        result = coordinator.open_conversation("c1")

        assert result.status is MutationStatus.CLEARED
        assert result.navigation_error is None
        assert visited == ["c1"]
        assert store.get_chat_notification("c1") is None

    def test_navigation_failure_keeps_clear(self, store, ingestor, gateway):
        def navigator(chat_id):
            raise LookupError("no route for chat")

        coordinator = MutationCoordinator(store, gateway, navigator=navigator)
        ingestor.ingest(message_event("c1"))

        result = coordinator.open_conversation("c1")

        assert result.navigation_error == "no route for chat"
        assert store.get_chat_notification("c1") is None

    def test_open_conversation_twice_is_idempotent(self, store, ingestor, coordinator):
        ingestor.ingest(message_event("c1"))
        coordinator.open_conversation("c1")
        snapshot = store.snapshot()

        coordinator.open_conversation("c1")

        assert store.snapshot() is snapshot

    async def test_read_state_sync_disabled_by_default(self, coordinator, gateway):
        assert await coordinator.sync_read_state("c1") is False
        assert gateway.calls == []

    async def test_read_state_sync_calls_remote(self, store):
        gateway = FakeGateway()
        coordinator = MutationCoordinator(store, gateway, sync_read_state=True)

        assert await coordinator.sync_read_state("c1") is True
        assert gateway.calls == [("mark_read", "c1")]

    async def test_read_state_sync_failure_is_logged_only(self, store):
        gateway = FakeGateway(fail_with=TransientRemoteFailure("mark_read", "c1"))
        coordinator = MutationCoordinator(store, gateway, sync_read_state=True)

        with capture_logs() as logs:
            assert await coordinator.sync_read_state("c1") is False

        assert any(entry["event"] == "read_state_sync_failed" for entry in logs)

    async def test_unexpected_read_state_error_is_logged_only(self, store):
        gateway = FakeGateway(fail_with=RuntimeError("boom"))
        coordinator = MutationCoordinator(store, gateway, sync_read_state=True)

        with capture_logs() as logs:
            assert await coordinator.sync_read_state("c1") is False

        assert any(entry["event"] == "read_state_sync_failed" for entry in logs)


class TestViewedRequests:

    async def test_mark_viewed_is_local_without_sync(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1", "u1"))

        assert coordinator.mark_requests_viewed() == 1
        assert await coordinator.sync_requests_viewed() is False

        assert store.get_contact_request("r1").viewed
        assert gateway.calls == []

    async def test_mark_viewed_syncs_when_enabled(self, store, ingestor):
        gateway = FakeGateway()
        coordinator = MutationCoordinator(store, gateway, sync_read_state=True)
        ingestor.ingest(request_event("r1", "u1"))

        coordinator.mark_requests_viewed()

        assert await coordinator.sync_requests_viewed() is True
        assert gateway.calls == [("mark_viewed", "contact_requests")]


class TestHistory:

    async def test_settled_transactions_are_bounded(self, store, ingestor, gateway):
        coordinator = MutationCoordinator(store, gateway, history_limit=2)
        for n in range(3):
            ingestor.ingest(request_event(f"r{n}", f"u{n}"))

        for n in range(3):
            await coordinator.accept_request(f"r{n}")

        assert coordinator.transaction("r0") is None
        assert coordinator.transaction("r1").state is TransactionState.COMMITTED
        assert coordinator.transaction("r2").state is TransactionState.COMMITTED

    async def test_in_flight_transactions_are_never_pruned(self, store, ingestor, gateway):
        coordinator = MutationCoordinator(store, gateway, history_limit=0)
        ingestor.ingest(request_event("r1", "u1"))
        ingestor.ingest(request_event("r2", "u2"))
        gateway.gate = asyncio.Event()

        first = asyncio.create_task(coordinator.accept_request("r1"))
        await asyncio.sleep(0)
        gateway.gate.set()
        await coordinator.accept_request("r2")
        assert coordinator.transaction("r1").state is TransactionState.IN_FLIGHT
        await first

        assert coordinator.in_flight() == []
        assert coordinator.transaction("r1") is None
        assert coordinator.transaction("r2") is None

    async def test_closed_coordinator_does_not_restore(self, store, ingestor, coordinator, gateway):
        ingestor.ingest(request_event("r1"))
        gateway.gate = asyncio.Event()
        gateway.fail_with = TransientRemoteFailure("accept", "r1")

        task = asyncio.create_task(coordinator.accept_request("r1"))
        await asyncio.sleep(0)
        coordinator.close()
        gateway.gate.set()
        result = await task

        assert result.status is MutationStatus.ROLLED_BACK
        assert store.pending_requests() == ()
