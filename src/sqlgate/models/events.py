"""Outbound notifications delivered to the UI event channel."""

from __future__ import annotations

from typing import Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, JsonValue

APPROVAL_REQUESTED = "agent:sql:approval:requested"
APPROVAL_RESOLVED = "agent:sql:approval:resolved"
RUN_STATUS = "agent:run:status"
RUN_EVENT = "agent:run:event"

RunStatus = Literal["started", "completed", "failed", "cancelled"]
RunEventSource = Literal["stdout", "stderr"]


class BridgeEvent(BaseModel):
    """Base for UI notifications; ``name`` is the wire event name."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: ClassVar[str]

    run_id: str = Field(alias="runId")

    def payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ApprovalRequestedEvent(BridgeEvent):
    name: ClassVar[str] = APPROVAL_REQUESTED

    approval_id: str = Field(alias="approvalId")
    query: str
    classification: Literal["read", "write"] = "write"


class ApprovalResolvedEvent(BridgeEvent):
    name: ClassVar[str] = APPROVAL_RESOLVED

    approval_id: str = Field(alias="approvalId")
    decision: str
    reason: str | None = None


class RunStatusEvent(BridgeEvent):
    name: ClassVar[str] = RUN_STATUS

    status: RunStatus
    exit_code: int | None = Field(default=None, alias="exitCode")
    error: str | None = None


class RunOutputEvent(BridgeEvent):
    name: ClassVar[str] = RUN_EVENT

    source: RunEventSource
    raw: str
    parsed: JsonValue | None = None
