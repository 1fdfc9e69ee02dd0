"""Human-in-the-loop approval of write statements issued by agent runs.

A pending approval holds a future created on the loop serving the agent's
``tools/call``. It settles exactly once: when the user decides (possibly from
another thread) or when the owning run is revoked.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sqlgate.errors import ApprovalNotFound, ApprovalRunMismatch, RunNotFound
from sqlgate.events import EventSink
from sqlgate.models.events import ApprovalRequestedEvent, ApprovalResolvedEvent, BridgeEvent
from sqlgate.runs.registry import RunContext, RunRegistry

logger = logging.getLogger(__name__)

RUN_ENDED_REASON = "agent run ended before approval"
REQUEST_CANCELLED_REASON = "agent request cancelled before approval"

APPROVAL_ID_BYTES = 8


class ApprovalDecision(str, Enum):
    approved = "approved"
    rejected = "rejected"


class ApprovalResolution(BaseModel):
    model_config = ConfigDict(frozen=True)

    decision: ApprovalDecision
    reason: str | None = None

    @field_validator("reason")
    @classmethod
    def _blank_reason_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @property
    def approved(self) -> bool:
        return self.decision == ApprovalDecision.approved


class PendingApprovalInfo(BaseModel):
    """Serializable view of a pending approval (UI hydration)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    approval_id: str = Field(alias="approvalId")
    run_id: str = Field(alias="runId")
    query: str
    created_at: datetime = Field(alias="createdAt")


@dataclass
class PendingApproval:
    approval_id: str
    run_id: str
    query: str
    future: asyncio.Future[ApprovalResolution] = field(repr=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def resolve(self, resolution: ApprovalResolution) -> None:
        """Settle the waiting future from any thread."""
        loop = self.future.get_loop()
        try:
            running: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is loop:
            _set_result(self.future, resolution)
            return
        try:
            loop.call_soon_threadsafe(_set_result, self.future, resolution)
        except RuntimeError:
            logger.debug("Loop for approval %s is closed; nothing to wake", self.approval_id)

    def info(self) -> PendingApprovalInfo:
        return PendingApprovalInfo(
            approval_id=self.approval_id,
            run_id=self.run_id,
            query=self.query,
            created_at=self.created_at,
        )


def _set_result(
    future: asyncio.Future[ApprovalResolution], resolution: ApprovalResolution
) -> None:
    if not future.done():
        future.set_result(resolution)


class ApprovalCoordinator:
    """Tracks pending write approvals, keyed by approval ID.

    Shares the registry's lock: both maps change together and notifications
    are emitted while it is held, so a "requested" event always precedes the
    matching "resolved" event.
    """

    def __init__(self, registry: RunRegistry, *, events: EventSink | None = None) -> None:
        self._registry = registry
        self._events = events
        self._lock = registry.lock
        self._pending: dict[str, PendingApproval] = {}
        registry.add_revoke_hook(self._on_run_revoked)

    def request_approval(
        self, run: RunContext, query: str
    ) -> tuple[str, asyncio.Future[ApprovalResolution]]:
        """Open an approval for ``query`` and return its ID and future.

        Must be called from a running event loop; the future belongs to it.
        A run that has already been revoked gets an immediately rejected future.
        """
        future: asyncio.Future[ApprovalResolution] = asyncio.get_running_loop().create_future()

        with self._lock:
            approval_id = secrets.token_hex(APPROVAL_ID_BYTES)
            while approval_id in self._pending:
                approval_id = secrets.token_hex(APPROVAL_ID_BYTES)

            if not self._registry.is_active(run):
                future.set_result(
                    ApprovalResolution(decision=ApprovalDecision.rejected, reason=RUN_ENDED_REASON)
                )
                return approval_id, future

            pending = PendingApproval(
                approval_id=approval_id, run_id=run.run_id, query=query, future=future
            )
            self._pending[approval_id] = pending
            run.pending_approval_ids.add(approval_id)

            logger.info("Approval %s requested for run %s", approval_id, run.run_id)
            self._emit(
                ApprovalRequestedEvent(
                    run_id=run.run_id,
                    approval_id=approval_id,
                    query=query,
                    classification="write",
                )
            )

        future.add_done_callback(lambda f: self._on_future_done(approval_id, f))
        return approval_id, future

    async def wait_for_approval(self, run: RunContext, query: str) -> ApprovalResolution:
        """Request approval and suspend until it is decided (no timeout)."""
        _, future = self.request_approval(run, query)
        return await future

    def resolve_approval(
        self,
        run_id: str,
        approval_id: str,
        decision: ApprovalDecision | str,
        reason: str | None = None,
    ) -> ApprovalResolution:
        """Deliver the user's decision for ``approval_id``.

        Raises:
            RunNotFound: ``run_id`` is not an active run.
            ApprovalNotFound: unknown, or already resolved.
            ApprovalRunMismatch: the approval belongs to a different run.
        """
        resolution = ApprovalResolution(decision=ApprovalDecision(decision), reason=reason)

        with self._lock:
            context = self._registry.get_run(run_id)
            if context is None:
                raise RunNotFound(run_id)

            pending = self._pending.get(approval_id)
            if pending is None:
                raise ApprovalNotFound(approval_id)

            if pending.run_id != run_id:
                raise ApprovalRunMismatch(run_id, approval_id)

            context.pending_approval_ids.discard(approval_id)
            del self._pending[approval_id]
            pending.resolve(resolution)

            logger.info(
                "Approval %s for run %s resolved: %s",
                approval_id,
                run_id,
                resolution.decision.value,
            )
            self._emit_resolved(pending, resolution)

        return resolution

    def reject_pending_for_run(self, run_id: str, reason: str = RUN_ENDED_REASON) -> int:
        """Force-reject every approval owned by ``run_id``; returns how many were settled."""
        with self._lock:
            context = self._registry.get_run(run_id)
            if context is not None:
                approval_ids = list(context.pending_approval_ids)
            else:
                approval_ids = [p.approval_id for p in self._pending.values() if p.run_id == run_id]

            resolution = ApprovalResolution(decision=ApprovalDecision.rejected, reason=reason)
            settled = 0
            for approval_id in approval_ids:
                pending = self._pending.pop(approval_id, None)
                if pending is None:
                    continue
                pending.resolve(resolution)
                self._emit_resolved(pending, resolution)
                settled += 1

            if context is not None:
                context.pending_approval_ids.clear()

        if settled:
            logger.info("Rejected %d pending approval(s) for run %s: %s", settled, run_id, reason)
        return settled

    def get(self, approval_id: str) -> PendingApproval | None:
        with self._lock:
            return self._pending.get(approval_id)

    def list_pending(self, run_id: str) -> list[PendingApproval]:
        with self._lock:
            items = [p for p in self._pending.values() if p.run_id == run_id]
        return sorted(items, key=lambda p: p.created_at)

    def _on_run_revoked(self, context: RunContext) -> None:
        self.reject_pending_for_run(context.run_id, RUN_ENDED_REASON)

    def _on_future_done(
        self, approval_id: str, future: asyncio.Future[ApprovalResolution]
    ) -> None:
        # The waiting handler went away (client disconnect, shutdown).
        if not future.cancelled():
            return
        with self._lock:
            pending = self._pending.pop(approval_id, None)
            if pending is None:
                return
            context = self._registry.get_run(pending.run_id)
            if context is not None:
                context.pending_approval_ids.discard(approval_id)
            self._emit_resolved(
                pending,
                ApprovalResolution(
                    decision=ApprovalDecision.rejected, reason=REQUEST_CANCELLED_REASON
                ),
            )
        logger.info("Approval %s withdrawn: waiting request was cancelled", approval_id)

    def _emit_resolved(self, pending: PendingApproval, resolution: ApprovalResolution) -> None:
        self._emit(
            ApprovalResolvedEvent(
                run_id=pending.run_id,
                approval_id=pending.approval_id,
                decision=resolution.decision.value,
                reason=resolution.reason,
            )
        )

    def _emit(self, event: BridgeEvent) -> None:
        if self._events is None:
            return
        try:
            self._events.emit(event)
        except Exception as e:
            logger.warning("failed to emit event '%s': %s", event.name, e)
