from sqlgate.models.connection import ConnectionKind, ConnectionSnapshot, snapshot_connection
from sqlgate.models.events import (
    APPROVAL_REQUESTED,
    APPROVAL_RESOLVED,
    RUN_EVENT,
    RUN_STATUS,
    ApprovalRequestedEvent,
    ApprovalResolvedEvent,
    BridgeEvent,
    RunOutputEvent,
    RunStatusEvent,
)

__all__ = [
    "APPROVAL_REQUESTED",
    "APPROVAL_RESOLVED",
    "RUN_EVENT",
    "RUN_STATUS",
    "ApprovalRequestedEvent",
    "ApprovalResolvedEvent",
    "BridgeEvent",
    "ConnectionKind",
    "ConnectionSnapshot",
    "RunOutputEvent",
    "RunStatusEvent",
    "snapshot_connection",
]
