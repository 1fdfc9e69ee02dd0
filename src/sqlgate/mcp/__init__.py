"""MCP surface exposed to agent runs: the SQL tool and its HTTP endpoint."""

from sqlgate.mcp.tools import SQL_TOOL_INPUT_SCHEMA, SQLToolExecutor, tool_error

__all__ = ["SQL_TOOL_INPUT_SCHEMA", "SQLToolExecutor", "tool_error"]
