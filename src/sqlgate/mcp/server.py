"""Streamable-HTTP MCP endpoint served to agent runs.

Implements the minimal surface an MCP client needs to discover and call the
SQL tool. Every request is authenticated by the run's bearer token before any
method dispatch; a missing or unknown token is a 401 regardless of method.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Literal, cast

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse
from mcp import types
from mcp.shared.version import SUPPORTED_PROTOCOL_VERSIONS
from pydantic import BaseModel, ValidationError

from sqlgate import __version__
from sqlgate.bridge import AgentSQLBridge
from sqlgate.runs.registry import RunContext

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"
SERVER_NAME = "sqlgate-agent-sql-mcp"
SSE_KEEPALIVE_INTERVAL_S = 15.0

router = APIRouter()

RequestId = str | int | None


class RPCRequest(BaseModel):
    """JSON-RPC 2.0 request envelope."""

    jsonrpc: Literal["2.0"]
    method: str
    params: Any = None
    id: RequestId = None


class MethodNotFound(Exception):
    def __init__(self, method: str) -> None:
        super().__init__(f"unsupported MCP method '{method}'")
        self.method = method


def _get_bridge(request: Request) -> AgentSQLBridge:
    return cast(AgentSQLBridge, request.app.state.bridge)


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer ") :].strip() or None


def _rpc_error(request_id: RequestId, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _dump(result: BaseModel) -> dict[str, Any]:
    return result.model_dump(mode="json", by_alias=True, exclude_none=True)


def _initialize_result(bridge: AgentSQLBridge, params: Any) -> dict[str, Any]:
    requested = params.get("protocolVersion") if isinstance(params, dict) else None
    if isinstance(requested, str) and requested in SUPPORTED_PROTOCOL_VERSIONS:
        protocol_version = requested
    else:
        protocol_version = bridge.settings.mcp.protocol_version

    return _dump(
        types.InitializeResult(
            protocolVersion=protocol_version,
            capabilities=types.ServerCapabilities(
                tools=types.ToolsCapability(listChanged=False),
            ),
            serverInfo=types.Implementation(name=SERVER_NAME, version=__version__),
        )
    )


async def handle_rpc_method(
    bridge: AgentSQLBridge, run: RunContext, method: str, params: Any
) -> dict[str, Any]:
    """Dispatch one MCP method for an authenticated run."""
    if method == "initialize":
        return _initialize_result(bridge, params)

    if method in ("notifications/initialized", "ping"):
        return {}

    if method == "tools/list":
        return _dump(types.ListToolsResult(tools=[bridge.executor.tool_definition()]))

    if method == "tools/call":
        return _dump(await bridge.executor.call_tool(run, params))

    if method == "prompts/list":
        return _dump(types.ListPromptsResult(prompts=[]))

    if method == "resources/list":
        return _dump(types.ListResourcesResult(resources=[]))

    if method == "resources/templates/list":
        return _dump(types.ListResourceTemplatesResult(resourceTemplates=[]))

    raise MethodNotFound(method)


async def _run_notification(
    bridge: AgentSQLBridge, run: RunContext, method: str, params: Any
) -> None:
    try:
        await handle_rpc_method(bridge, run, method, params)
    except MethodNotFound as e:
        logger.debug("Ignoring notification for run %s: %s", run.run_id, e)
    except Exception as e:
        logger.error("Notification %s failed for run %s: %s", method, run.run_id, e, exc_info=True)


def _event_stream_response(
    request: Request, bridge: AgentSQLBridge, run: RunContext
) -> StreamingResponse:
    """Advertise the RPC endpoint, then keep the stream open for the run's lifetime."""

    async def generator() -> AsyncIterator[bytes]:
        yield f"event: endpoint\ndata: {MCP_PATH}\n\n".encode()
        while bridge.registry.is_active(run) and not await request.is_disconnected():
            await asyncio.sleep(SSE_KEEPALIVE_INTERVAL_S)
            yield b": ping\n\n"

    return StreamingResponse(
        generator(),
        media_type="text/event-stream",
        headers={"cache-control": "no-cache", "connection": "keep-alive"},
    )


@router.api_route(MCP_PATH, methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def mcp_endpoint(request: Request, background_tasks: BackgroundTasks) -> Response:
    bridge = _get_bridge(request)

    run = bridge.registry.authenticate(bearer_token(request))
    if run is None:
        return JSONResponse(status_code=401, content={"error": "unauthorized"})

    if request.method == "GET":
        return _event_stream_response(request, bridge, run)

    if request.method != "POST":
        return JSONResponse(status_code=405, content={"error": "method not allowed"})

    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(
            status_code=400, content=_rpc_error(None, types.PARSE_ERROR, "invalid json body")
        )

    try:
        rpc_request = RPCRequest.model_validate(body)
    except ValidationError:
        return JSONResponse(
            status_code=400,
            content=_rpc_error(None, types.INVALID_REQUEST, "invalid JSON-RPC request"),
        )

    # Notifications are acknowledged before the action runs, so nothing a
    # notification triggers can hold the HTTP exchange open.
    if "id" not in body:
        background_tasks.add_task(
            _run_notification, bridge, run, rpc_request.method, rpc_request.params
        )
        return Response(status_code=202)

    try:
        result = await handle_rpc_method(bridge, run, rpc_request.method, rpc_request.params)
    except MethodNotFound as e:
        return JSONResponse(content=_rpc_error(rpc_request.id, types.METHOD_NOT_FOUND, str(e)))
    except Exception as e:
        logger.error(
            "MCP method %s failed for run %s: %s", rpc_request.method, run.run_id, e, exc_info=True
        )
        return JSONResponse(
            content=_rpc_error(rpc_request.id, types.INTERNAL_ERROR, "internal error")
        )

    return JSONResponse(content={"jsonrpc": "2.0", "id": rpc_request.id, "result": result})
