"""In-memory table of active agent runs and their bearer tokens."""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlgate.models.connection import ConnectionSnapshot, snapshot_connection

logger = logging.getLogger(__name__)

TOKEN_BYTES = 24
RUN_ID_BYTES = 8


@dataclass
class RunContext:
    """State for one agent run.

    ``pending_approval_ids`` is owned by the run and mutated only while the
    registry lock is held.
    """

    run_id: str
    token: str = field(repr=False)
    connection: ConnectionSnapshot | None
    pending_approval_ids: set[str] = field(default_factory=set)


RevokeHook = Callable[[RunContext], None]


def new_run_id() -> str:
    return secrets.token_hex(RUN_ID_BYTES)


class RunRegistry:
    """Bidirectional ``token <-> run_id`` mapping plus run state.

    ``lock`` is reentrant and shared with the approval coordinator so that
    approval bookkeeping and run revocation are serialized together.
    """

    def __init__(self, *, lock: threading.RLock | None = None) -> None:
        self.lock = lock or threading.RLock()
        self._runs: dict[str, RunContext] = {}
        self._token_to_run: dict[str, str] = {}
        self._revoke_hooks: list[RevokeHook] = []

    def add_revoke_hook(self, hook: RevokeHook) -> None:
        """Register a callback invoked (under the lock) before a run is removed."""
        with self.lock:
            self._revoke_hooks.append(hook)

    def register_run(self, run_id: str, connection: ConnectionSnapshot | None) -> str:
        """Register ``run_id`` and return its freshly issued bearer token.

        Raises:
            ValueError: ``run_id`` is already registered.
        """
        with self.lock:
            if run_id in self._runs:
                raise ValueError(f"agent run '{run_id}' is already registered")

            token = secrets.token_hex(TOKEN_BYTES)
            while token in self._token_to_run:
                token = secrets.token_hex(TOKEN_BYTES)

            self._runs[run_id] = RunContext(
                run_id=run_id,
                token=token,
                connection=snapshot_connection(connection),
            )
            self._token_to_run[token] = run_id

        logger.info(
            "Registered agent run %s (connection: %s)",
            run_id,
            connection.describe() if connection else "none",
        )
        return token

    def revoke_run(self, run_id: str) -> bool:
        """Revoke ``run_id``; returns False when it was unknown (a no-op)."""
        with self.lock:
            context = self._runs.get(run_id)
            if context is None:
                return False

            for hook in self._revoke_hooks:
                try:
                    hook(context)
                except Exception as e:
                    logger.error("Revoke hook failed for run %s: %s", run_id, e, exc_info=True)

            del self._runs[run_id]
            self._token_to_run.pop(context.token, None)

        logger.info("Revoked agent run %s", run_id)
        return True

    def authenticate(self, token: str | None) -> RunContext | None:
        """Map a bearer token to its run; unknown and revoked tokens both yield None."""
        if not token:
            return None
        with self.lock:
            run_id = self._token_to_run.get(token)
            if run_id is None:
                return None
            return self._runs.get(run_id)

    def get_run(self, run_id: str) -> RunContext | None:
        with self.lock:
            return self._runs.get(run_id)

    def is_active(self, context: RunContext) -> bool:
        with self.lock:
            return self._runs.get(context.run_id) is context

    def run_ids(self) -> list[str]:
        with self.lock:
            return list(self._runs)

    def __len__(self) -> int:
        with self.lock:
            return len(self._runs)
