"""The single SQL tool exposed to agent runs.

Read statements execute immediately. Write statements suspend the calling
request until the user approves or rejects them (or the run ends).
Every failure is returned as a tool-level error so the agent receives a normal,
parseable result it can reason about.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

import jsonschema
from mcp import types

from sqlgate.errors import ClassificationError, GatewayError
from sqlgate.gateway.interface import SQLGateway
from sqlgate.policy.approvals import ApprovalCoordinator
from sqlgate.policy.classifier import classify
from sqlgate.runs.registry import RunContext

logger = logging.getLogger(__name__)

DEFAULT_TOOL_NAME = "sql_execute"
DEFAULT_REJECTION_REASON = "write SQL rejected by user"
NO_CONNECTION_MESSAGE = "no active connection snapshot for this agent run"
EMPTY_QUERY_MESSAGE = "query cannot be empty"

SQL_TOOL_INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "query": {
            "type": "string",
            "minLength": 1,
            "description": "SQL text to execute",
        },
    },
    "required": ["query"],
}


def tool_error(message: str) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=message)],
        isError=True,
    )


class SQLToolExecutor:
    """Handler for ``tools/call`` on the SQL tool."""

    def __init__(
        self,
        *,
        coordinator: ApprovalCoordinator,
        gateway: SQLGateway,
        tool_name: str = DEFAULT_TOOL_NAME,
    ) -> None:
        self._coordinator = coordinator
        self._gateway = gateway
        self.tool_name = tool_name

    def tool_definition(self) -> types.Tool:
        return types.Tool(
            name=self.tool_name,
            title="Execute SQL against the active connection",
            description=(
                "Execute one SQL statement. Read queries run immediately. "
                "Write queries require explicit user approval."
            ),
            inputSchema=SQL_TOOL_INPUT_SCHEMA,
        )

    async def call_tool(self, run: RunContext, params: Any) -> types.CallToolResult:
        """Validate a raw ``tools/call`` params object and execute it."""
        if not isinstance(params, dict):
            return tool_error("invalid tool call payload")

        name = params.get("name")
        if name != self.tool_name:
            return tool_error(f"unsupported tool '{name if name is not None else ''}'")

        arguments = params.get("arguments")
        if not isinstance(arguments, dict):
            arguments = {}

        query = arguments.get("query")
        if query is None or (isinstance(query, str) and not query.strip()):
            return tool_error(EMPTY_QUERY_MESSAGE)

        try:
            jsonschema.validate(arguments, SQL_TOOL_INPUT_SCHEMA)
        except jsonschema.ValidationError as e:
            return tool_error(f"invalid arguments: {e.message}")

        start_time = time.perf_counter()
        try:
            return await self.execute_tool(run, query)
        except Exception as e:
            logger.error("Error handling tool call for run %s: %s", run.run_id, e, exc_info=True)
            return tool_error(str(e) or type(e).__name__)
        finally:
            logger.debug(
                "tools/call for run %s finished in %d ms",
                run.run_id,
                int((time.perf_counter() - start_time) * 1000),
            )

    async def execute_tool(self, run: RunContext, query: str) -> types.CallToolResult:
        """Classify, gate on approval when writing, then execute ``query``."""
        query = query.strip()
        if not query:
            return tool_error(EMPTY_QUERY_MESSAGE)

        if run.connection is None:
            return tool_error(NO_CONNECTION_MESSAGE)

        try:
            classified = classify(query)
        except ClassificationError as e:
            return tool_error(str(e))

        if classified.requires_approval:
            resolution = await self._coordinator.wait_for_approval(run, query)
            if not resolution.approved:
                return tool_error(resolution.reason or DEFAULT_REJECTION_REASON)

        try:
            result = await self._gateway.execute(run.connection, classified.normalized)
        except GatewayError as e:
            logger.warning("SQL failed for run %s: %s", run.run_id, e)
            return tool_error(str(e))

        payload: dict[str, Any] = {
            "classification": classified.classification.value,
            "result": result.to_payload(),
        }
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=json.dumps(payload, indent=2))],
            structuredContent=payload,
        )
