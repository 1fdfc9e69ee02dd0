"""Control-plane routes used by the UI: start/cancel runs and decide approvals."""

from __future__ import annotations

import secrets
from typing import cast

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel, ConfigDict, Field

from sqlgate.bridge import AgentSQLBridge
from sqlgate.errors import AgentLaunchError, ApprovalNotFound, ApprovalRunMismatch, RunNotFound
from sqlgate.policy.approvals import ApprovalDecision, ApprovalResolution, PendingApprovalInfo
from sqlgate.runs.lifecycle import RunLifecycleManager


def _get_bridge(request: Request) -> AgentSQLBridge:
    return cast(AgentSQLBridge, request.app.state.bridge)


def _get_lifecycle(request: Request) -> RunLifecycleManager:
    lifecycle = cast(RunLifecycleManager | None, request.app.state.lifecycle)
    if lifecycle is None:
        raise HTTPException(status_code=503, detail="agent runs are not enabled")
    return lifecycle


def require_control_token(request: Request) -> None:
    """Reject callers that do not hold this process's control token."""
    expected = cast(str, request.app.state.control_token)
    header = request.headers.get("authorization", "")
    presented = header[len("Bearer ") :].strip() if header.startswith("Bearer ") else ""
    if not presented or not secrets.compare_digest(presented, expected):
        raise HTTPException(status_code=401, detail="unauthorized")


router = APIRouter(prefix="/api", dependencies=[Depends(require_control_token)])


class StartRunRequest(BaseModel):
    prompt: str = Field(min_length=1)


class StartRunResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    run_id: str = Field(alias="runId")


class ResolveApprovalRequest(BaseModel):
    decision: ApprovalDecision
    reason: str | None = Field(default=None, max_length=2000)


@router.post("/runs", response_model=StartRunResponse, response_model_by_alias=True)
async def start_run(body: StartRunRequest, request: Request) -> StartRunResponse:
    lifecycle = _get_lifecycle(request)
    try:
        run_id = await lifecycle.start_run(body.prompt)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except AgentLaunchError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e
    return StartRunResponse(run_id=run_id)


@router.delete("/runs/{run_id}", status_code=204)
async def cancel_run(run_id: str, request: Request) -> Response:
    lifecycle = cast(RunLifecycleManager | None, request.app.state.lifecycle)
    if lifecycle is not None:
        lifecycle.cancel_run(run_id)
    else:
        _get_bridge(request).revoke_run(run_id)
    return Response(status_code=204)


@router.get(
    "/runs/{run_id}/approvals",
    response_model=list[PendingApprovalInfo],
    response_model_by_alias=True,
)
def list_pending_approvals(run_id: str, request: Request) -> list[PendingApprovalInfo]:
    """List still-pending approvals for a run (primarily for UI hydration)."""
    bridge = _get_bridge(request)
    if bridge.registry.get_run(run_id) is None:
        raise HTTPException(status_code=404, detail=str(RunNotFound(run_id)))
    return [pending.info() for pending in bridge.coordinator.list_pending(run_id)]


@router.post("/runs/{run_id}/approvals/{approval_id}", response_model=ApprovalResolution)
async def resolve_approval(
    run_id: str, approval_id: str, body: ResolveApprovalRequest, request: Request
) -> ApprovalResolution:
    bridge = _get_bridge(request)
    try:
        return bridge.resolve_approval(run_id, approval_id, body.decision, body.reason)
    except (RunNotFound, ApprovalNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ApprovalRunMismatch as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
