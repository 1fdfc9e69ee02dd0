from __future__ import annotations

import logging
import secrets
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sqlgate import __version__
from sqlgate.api.routes_runs import router as runs_router
from sqlgate.api.routes_stream import router as stream_router
from sqlgate.bridge import AgentSQLBridge
from sqlgate.config.settings import Settings
from sqlgate.mcp.server import router as mcp_router
from sqlgate.runs.lifecycle import RunLifecycleManager


def create_app(
    *,
    bridge: AgentSQLBridge | None = None,
    settings: Settings | None = None,
    lifecycle: RunLifecycleManager | None = None,
    control_token: str | None = None,
) -> FastAPI:
    """Build the ASGI app serving ``/mcp`` to agents and ``/api`` to the UI.

    ``lifecycle`` may be attached later via ``app.state.lifecycle``; without it
    the run-start route answers 503 while approvals still work.
    """
    logger = logging.getLogger("sqlgate")

    if bridge is None:
        bridge = AgentSQLBridge(settings=settings or Settings())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            # Watchers may live on another loop; killing the processes is enough
            # for them to finish and revoke their runs.
            current = app.state.lifecycle
            if isinstance(current, RunLifecycleManager):
                current.cancel_all_runs()

    app = FastAPI(title="sqlgate", version=__version__, lifespan=lifespan)
    app.state.settings = bridge.settings
    app.state.bridge = bridge
    app.state.lifecycle = lifecycle
    app.state.control_token = control_token or secrets.token_hex(24)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=bridge.settings.cors_allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    logger.debug("CORS allowed origins: %s", bridge.settings.cors_allow_origins)

    app.include_router(mcp_router)
    app.include_router(runs_router)
    app.include_router(stream_router)

    return app
