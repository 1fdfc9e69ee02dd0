"""Composition root for the agent SQL bridge and its control-plane operations."""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlgate.config.settings import Settings
from sqlgate.events import EventBus
from sqlgate.gateway.interface import SQLGateway
from sqlgate.gateway.registry import default_gateway_registry
from sqlgate.mcp.tools import SQLToolExecutor
from sqlgate.models.connection import ConnectionSnapshot
from sqlgate.policy.approvals import ApprovalCoordinator, ApprovalDecision, ApprovalResolution
from sqlgate.runs.registry import RunRegistry


@dataclass
class AgentSQLBridge:
    """Run registry, approval coordinator and SQL tool wired together.

    Each instance owns its own state, so tests (and multiple windows) can
    construct isolated bridges.
    """

    settings: Settings = field(default_factory=Settings)
    gateway: SQLGateway = field(default_factory=default_gateway_registry)
    events: EventBus = field(default_factory=EventBus)

    registry: RunRegistry = field(init=False)
    coordinator: ApprovalCoordinator = field(init=False)
    executor: SQLToolExecutor = field(init=False)

    def __post_init__(self) -> None:
        self.registry = RunRegistry()
        self.coordinator = ApprovalCoordinator(self.registry, events=self.events)
        self.executor = SQLToolExecutor(
            coordinator=self.coordinator,
            gateway=self.gateway,
            tool_name=self.settings.mcp.tool_name,
        )

    def register_run(self, run_id: str, connection: ConnectionSnapshot | None) -> str:
        return self.registry.register_run(run_id, connection)

    def revoke_run(self, run_id: str) -> bool:
        return self.registry.revoke_run(run_id)

    def revoke_all_runs(self) -> int:
        """Revoke every registered run, rejecting whatever approvals they still hold."""
        return sum(self.registry.revoke_run(run_id) for run_id in self.registry.run_ids())

    def resolve_approval(
        self,
        run_id: str,
        approval_id: str,
        decision: ApprovalDecision | str,
        reason: str | None = None,
    ) -> ApprovalResolution:
        return self.coordinator.resolve_approval(run_id, approval_id, decision, reason)
