"""Exception hierarchy shared by the bridge components."""

from __future__ import annotations


class SQLGateError(Exception):
    """Base class for errors raised by sqlgate."""


class ClassificationError(SQLGateError):
    """SQL text could not be accepted for classification."""


class EmptyStatement(ClassificationError):
    def __init__(self) -> None:
        super().__init__("query cannot be empty")


class MultiStatementNotSupported(ClassificationError):
    def __init__(self, count: int) -> None:
        super().__init__("only single-statement SQL is supported")
        self.count = count


class ControlPlaneError(SQLGateError):
    """A UI-side control call referenced state that does not exist or does not match."""


class RunNotFound(ControlPlaneError):
    def __init__(self, run_id: str) -> None:
        super().__init__(f"agent run '{run_id}' not found")
        self.run_id = run_id


class ApprovalNotFound(ControlPlaneError):
    def __init__(self, approval_id: str) -> None:
        super().__init__(f"sql approval '{approval_id}' not found")
        self.approval_id = approval_id


class ApprovalRunMismatch(ControlPlaneError):
    def __init__(self, run_id: str, approval_id: str) -> None:
        super().__init__("approval does not belong to the provided run")
        self.run_id = run_id
        self.approval_id = approval_id


class GatewayError(SQLGateError):
    """The database (or the gateway in front of it) rejected a statement."""


class AgentLaunchError(SQLGateError):
    """The external agent process could not be started."""
