"""Agent SQL bridge: a loopback MCP endpoint that gates agent writes on human approval."""

__version__ = "0.1.0"
