from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, model_validator


def _default_work_dir() -> Path:
    return Path.home() / ".sqlgate"


class ServerConfig(BaseModel):
    host: str = "127.0.0.1"
    # 0 binds an ephemeral port.
    port: int = Field(default=0, ge=0, le=65535)


class MCPConfig(BaseModel):
    server_name: str = "sqlgate_sql"
    tool_name: str = "sql_execute"
    protocol_version: str = "2025-06-18"
    bearer_env_var: str = "SQLGATE_MCP_BEARER"


class AgentConfig(BaseModel):
    executable: str | None = None
    base_args: list[str] = Field(
        default_factory=lambda: [
            "exec",
            "--json",
            "--color",
            "never",
            "--skip-git-repo-check",
            "-s",
            "workspace-write",
        ]
    )
    work_dir: Path = Field(default_factory=_default_work_dir)
    event_clip_chars: int = Field(default=4000, ge=1)


class Settings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    server: ServerConfig = Field(default_factory=ServerConfig)
    mcp: MCPConfig = Field(default_factory=MCPConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ]
    )

    @model_validator(mode="after")
    def _apply_env_overrides(self) -> Settings:
        if "SQLGATE_WORK_DIR" in os.environ:
            self.agent.work_dir = Path(os.environ["SQLGATE_WORK_DIR"])
        return self
