"""Tests for the write-approval coordinator."""

from __future__ import annotations

import asyncio
import threading

import pytest
from fakes import RecordingSink

from sqlgate.errors import ApprovalNotFound, ApprovalRunMismatch, RunNotFound
from sqlgate.events import EventBus
from sqlgate.models.events import (
    APPROVAL_REQUESTED,
    APPROVAL_RESOLVED,
    ApprovalRequestedEvent,
    ApprovalResolvedEvent,
)
from sqlgate.policy.approvals import (
    REQUEST_CANCELLED_REASON,
    RUN_ENDED_REASON,
    ApprovalCoordinator,
    ApprovalDecision,
)
from sqlgate.runs.registry import RunContext, RunRegistry


def _setup(
    run_ids: tuple[str, ...] = ("run-1",),
) -> tuple[RunRegistry, ApprovalCoordinator, RecordingSink]:
    sink = RecordingSink()
    registry = RunRegistry()
    coordinator = ApprovalCoordinator(registry, events=sink)
    for run_id in run_ids:
        registry.register_run(run_id, None)
    return registry, coordinator, sink


def _run(registry: RunRegistry, run_id: str) -> RunContext:
    context = registry.get_run(run_id)
    assert context is not None
    return context


@pytest.mark.asyncio
async def test_approve_settles_waiting_future() -> None:
    registry, coordinator, sink = _setup()
    run = _run(registry, "run-1")

    approval_id, future = coordinator.request_approval(run, "UPDATE t SET x = 1")
    assert not future.done()
    assert run.pending_approval_ids == {approval_id}

    resolution = coordinator.resolve_approval("run-1", approval_id, "approved")

    assert resolution.approved
    assert (await future).approved
    assert run.pending_approval_ids == set()
    assert coordinator.get(approval_id) is None
    assert sink.names() == [APPROVAL_REQUESTED, APPROVAL_RESOLVED]


@pytest.mark.asyncio
async def test_reject_carries_reason() -> None:
    registry, coordinator, sink = _setup()
    run = _run(registry, "run-1")

    approval_id, future = coordinator.request_approval(run, "DELETE FROM t")
    coordinator.resolve_approval("run-1", approval_id, ApprovalDecision.rejected, "  not today  ")

    resolution = await future
    assert not resolution.approved
    assert resolution.reason == "not today"

    resolved = sink.events[-1]
    assert isinstance(resolved, ApprovalResolvedEvent)
    assert resolved.decision == "rejected"
    assert resolved.reason == "not today"


@pytest.mark.asyncio
async def test_blank_reason_becomes_none() -> None:
    registry, coordinator, _ = _setup()
    run = _run(registry, "run-1")

    approval_id, future = coordinator.request_approval(run, "DELETE FROM t")
    coordinator.resolve_approval("run-1", approval_id, "rejected", "   ")

    assert (await future).reason is None


@pytest.mark.asyncio
async def test_requested_event_payload() -> None:
    registry, coordinator, sink = _setup()
    run = _run(registry, "run-1")

    approval_id, _ = coordinator.request_approval(run, "UPDATE t SET x = 1")

    event = sink.events[0]
    assert isinstance(event, ApprovalRequestedEvent)
    assert event.payload() == {
        "runId": "run-1",
        "approvalId": approval_id,
        "query": "UPDATE t SET x = 1",
        "classification": "write",
    }


@pytest.mark.asyncio
async def test_resolve_errors() -> None:
    registry, coordinator, _ = _setup(("run-1", "run-2"))
    run = _run(registry, "run-1")
    approval_id, future = coordinator.request_approval(run, "DELETE FROM t")

    with pytest.raises(RunNotFound):
        coordinator.resolve_approval("missing-run", approval_id, "approved")
    with pytest.raises(ApprovalNotFound):
        coordinator.resolve_approval("run-1", "missing-approval", "approved")
    with pytest.raises(ApprovalRunMismatch):
        coordinator.resolve_approval("run-2", approval_id, "approved")

    # None of the failed calls settled the approval.
    assert not future.done()
    assert coordinator.get(approval_id) is not None


@pytest.mark.asyncio
async def test_double_resolve_is_not_found() -> None:
    registry, coordinator, sink = _setup()
    run = _run(registry, "run-1")
    approval_id, future = coordinator.request_approval(run, "DELETE FROM t")

    coordinator.resolve_approval("run-1", approval_id, "approved")
    with pytest.raises(ApprovalNotFound):
        coordinator.resolve_approval("run-1", approval_id, "rejected")

    assert (await future).approved
    assert sink.names().count(APPROVAL_RESOLVED) == 1


@pytest.mark.asyncio
async def test_revoking_run_rejects_pending_approvals() -> None:
    registry, coordinator, sink = _setup(("run-1", "run-2"))
    run_1 = _run(registry, "run-1")
    run_2 = _run(registry, "run-2")

    _, first = coordinator.request_approval(run_1, "DELETE FROM a")
    _, second = coordinator.request_approval(run_1, "DELETE FROM b")
    other_id, other = coordinator.request_approval(run_2, "DELETE FROM c")

    registry.revoke_run("run-1")

    for future in (first, second):
        resolution = await future
        assert not resolution.approved
        assert resolution.reason == RUN_ENDED_REASON

    assert not other.done()
    assert [p.approval_id for p in coordinator.list_pending("run-2")] == [other_id]
    assert coordinator.list_pending("run-1") == []
    assert sink.names().count(APPROVAL_RESOLVED) == 2


@pytest.mark.asyncio
async def test_resolving_after_revoke_fails() -> None:
    registry, coordinator, sink = _setup(("run-1", "run-2"))
    run_1 = _run(registry, "run-1")
    first_id, first = coordinator.request_approval(run_1, "DELETE FROM a")
    second_id, second = coordinator.request_approval(run_1, "DELETE FROM b")

    registry.revoke_run("run-1")
    await asyncio.gather(first, second)

    for approval_id in (first_id, second_id):
        with pytest.raises(RunNotFound):
            coordinator.resolve_approval("run-1", approval_id, "approved")
        with pytest.raises(ApprovalNotFound):
            coordinator.resolve_approval("run-2", approval_id, "approved")

    assert not (await first).approved
    assert not (await second).approved
    assert sink.names().count(APPROVAL_RESOLVED) == 2


@pytest.mark.asyncio
async def test_request_on_revoked_run_is_rejected_immediately() -> None:
    registry, coordinator, sink = _setup()
    run = _run(registry, "run-1")
    registry.revoke_run("run-1")

    _, future = coordinator.request_approval(run, "DELETE FROM t")

    assert future.done()
    resolution = future.result()
    assert not resolution.approved
    assert resolution.reason == RUN_ENDED_REASON
    assert sink.events == []


@pytest.mark.asyncio
async def test_cancelled_wait_withdraws_approval() -> None:
    registry, coordinator, sink = _setup()
    run = _run(registry, "run-1")

    waiter = asyncio.create_task(coordinator.wait_for_approval(run, "DELETE FROM t"))
    await asyncio.sleep(0)
    [pending] = coordinator.list_pending("run-1")

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    await asyncio.sleep(0)

    assert coordinator.get(pending.approval_id) is None
    assert run.pending_approval_ids == set()
    resolved = sink.events[-1]
    assert isinstance(resolved, ApprovalResolvedEvent)
    assert resolved.reason == REQUEST_CANCELLED_REASON


@pytest.mark.asyncio
async def test_resolution_from_another_thread() -> None:
    registry, coordinator, _ = _setup()
    run = _run(registry, "run-1")
    approval_id, future = coordinator.request_approval(run, "UPDATE t SET x = 1")

    errors: list[BaseException] = []

    def decide() -> None:
        try:
            coordinator.resolve_approval("run-1", approval_id, "approved")
        except BaseException as e:  # surfaced by the assertion below
            errors.append(e)

    thread = threading.Thread(target=decide)
    thread.start()
    resolution = await asyncio.wait_for(future, timeout=5)
    thread.join()

    assert errors == []
    assert resolution.approved


@pytest.mark.asyncio
async def test_list_pending_is_ordered_by_creation() -> None:
    registry, coordinator, _ = _setup()
    run = _run(registry, "run-1")

    first_id, _ = coordinator.request_approval(run, "DELETE FROM a")
    second_id, _ = coordinator.request_approval(run, "DELETE FROM b")

    pending = coordinator.list_pending("run-1")
    assert [p.approval_id for p in pending] == [first_id, second_id]
    assert pending[0].info().model_dump(by_alias=True)["approvalId"] == first_id


@pytest.mark.asyncio
async def test_events_reach_async_subscribers_in_order() -> None:
    bus = EventBus()
    registry = RunRegistry()
    coordinator = ApprovalCoordinator(registry, events=bus)
    registry.register_run("run-1", None)
    run = _run(registry, "run-1")

    queue = bus.subscribe()
    approval_id, _ = coordinator.request_approval(run, "DELETE FROM t")
    coordinator.resolve_approval("run-1", approval_id, "approved")

    first = await asyncio.wait_for(queue.get(), timeout=1)
    second = await asyncio.wait_for(queue.get(), timeout=1)
    assert [first.name, second.name] == [APPROVAL_REQUESTED, APPROVAL_RESOLVED]
    bus.unsubscribe(queue)
