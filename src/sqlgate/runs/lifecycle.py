"""Spawns the external agent process for each user prompt.

The manager registers a run (token + connection snapshot), launches the agent
with the token and MCP URL in its environment, relays the agent's stdout/stderr
to the UI, and revokes the run whenever the process ends or is cancelled.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
import re
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from pydantic import JsonValue

from sqlgate.bridge import AgentSQLBridge
from sqlgate.errors import AgentLaunchError
from sqlgate.models.connection import ConnectionSnapshot
from sqlgate.models.events import BridgeEvent, RunEventSource, RunOutputEvent, RunStatusEvent
from sqlgate.runs.registry import new_run_id

logger = logging.getLogger(__name__)

MCP_URL_ENV = "SQLGATE_MCP_URL"
AGENT_PATH_ENV = "SQLGATE_AGENT_PATH"
DEFAULT_AGENT_BINARY = "codex"

MANAGED_BLOCK_START = "# SQLGATE_MANAGED_MCP_START"
MANAGED_BLOCK_END = "# SQLGATE_MANAGED_MCP_END"
_MANAGED_BLOCK_RE = re.compile(
    r"\n?" + re.escape(MANAGED_BLOCK_START) + r".*?" + re.escape(MANAGED_BLOCK_END) + r"\n?",
    re.DOTALL,
)

# Agent output can carry large JSON events on a single line.
_STREAM_LIMIT_BYTES = 16 * 1024 * 1024


class ConnectionProvider(Protocol):
    def get_active_connection(self) -> ConnectionSnapshot | None: ...


class MCPEndpoint(Protocol):
    @property
    def mcp_url(self) -> str: ...

    def ensure_started(self) -> None: ...


class ActiveConnection:
    """Holds the connection currently selected in the UI."""

    def __init__(self, connection: ConnectionSnapshot | None = None) -> None:
        self._connection = connection

    def get_active_connection(self) -> ConnectionSnapshot | None:
        return self._connection

    def set_active_connection(self, connection: ConnectionSnapshot | None) -> None:
        self._connection = connection


@dataclass
class AgentRun:
    run_id: str
    process: asyncio.subprocess.Process
    cancelled: bool = False
    watcher: asyncio.Task[None] | None = None


def _resolve_binary_path(binary_name: str) -> str:
    """Resolve a binary next to the current interpreter, then on PATH."""
    local_bin = Path(sys.executable).parent / binary_name
    if local_bin.exists():
        return str(local_bin)

    path_bin = shutil.which(binary_name)
    if path_bin:
        return path_bin

    # Return original name as fallback (will fail at spawn with a clear error)
    return binary_name


def clip_text(raw: str, max_chars: int) -> str:
    if len(raw) <= max_chars:
        return raw
    return f"{raw[:max_chars]}...<truncated>"


class RunLifecycleManager:
    def __init__(
        self,
        bridge: AgentSQLBridge,
        *,
        endpoint: MCPEndpoint,
        connections: ConnectionProvider,
    ) -> None:
        self._bridge = bridge
        self._endpoint = endpoint
        self._connections = connections
        self._settings = bridge.settings
        self._runs: dict[str, AgentRun] = {}

    @property
    def work_dir(self) -> Path:
        return self._settings.agent.work_dir

    def active_run_ids(self) -> list[str]:
        return list(self._runs)

    async def start_run(self, prompt: str) -> str:
        """Launch the agent for ``prompt`` and return the new run ID.

        Raises:
            ValueError: ``prompt`` is blank.
            AgentLaunchError: The agent process could not be spawned.
        """
        cleaned = prompt.strip()
        if not cleaned:
            raise ValueError("prompt cannot be empty")

        await asyncio.to_thread(self._endpoint.ensure_started)

        run_id = new_run_id()
        connection = self._connections.get_active_connection()
        token = self._bridge.register_run(run_id, connection)

        try:
            self.work_dir.mkdir(parents=True, exist_ok=True, mode=0o750)
            mcp_url = self._endpoint.mcp_url
            self.upsert_managed_project_config(self.work_dir)
            full_prompt = await self.build_prompt(cleaned, connection)

            process = await asyncio.create_subprocess_exec(
                self.resolve_agent_executable(),
                *self.build_agent_args(mcp_url),
                "-C",
                str(self.work_dir),
                "--",
                full_prompt,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.work_dir),
                env=self.build_run_env(token, mcp_url, connection),
                limit=_STREAM_LIMIT_BYTES,
            )
        except OSError as e:
            self._bridge.revoke_run(run_id)
            raise AgentLaunchError(f"failed to start agent: {e}") from e
        except BaseException:
            self._bridge.revoke_run(run_id)
            raise

        run = AgentRun(run_id=run_id, process=process)
        self._runs[run_id] = run
        self._emit(RunStatusEvent(run_id=run_id, status="started"))
        run.watcher = asyncio.create_task(self._watch_run(run), name=f"agent-run-{run_id}")

        logger.info("Started agent run %s (pid %s)", run_id, process.pid)
        return run_id

    def cancel_run(self, run_id: str) -> bool:
        """Kill the run's process and revoke it; False if the run is unknown."""
        run = self._runs.get(run_id)
        if run is None:
            self._bridge.revoke_run(run_id)
            return False

        run.cancelled = True
        with contextlib.suppress(ProcessLookupError):
            run.process.kill()
        self._bridge.revoke_run(run_id)
        return True

    def cancel_all_runs(self) -> None:
        for run_id in list(self._runs):
            self.cancel_run(run_id)

    async def aclose(self) -> None:
        """Cancel every run and wait for its watcher to finish."""
        watchers = [run.watcher for run in self._runs.values() if run.watcher is not None]
        self.cancel_all_runs()
        if watchers:
            await asyncio.gather(*watchers, return_exceptions=True)

    async def wait_for_run(self, run_id: str) -> None:
        run = self._runs.get(run_id)
        if run is not None and run.watcher is not None:
            await asyncio.shield(run.watcher)

    def resolve_agent_executable(self) -> str:
        configured = self._settings.agent.executable
        if configured:
            return configured

        override = os.environ.get(AGENT_PATH_ENV, "").strip()
        if override:
            return override

        return _resolve_binary_path(DEFAULT_AGENT_BINARY)

    def build_agent_args(self, mcp_url: str) -> list[str]:
        server_name = self._settings.mcp.server_name
        bearer_env = self._settings.mcp.bearer_env_var
        return [
            *self._settings.agent.base_args,
            "-c",
            f'mcp_servers.{server_name}.url="{mcp_url}"',
            "-c",
            f'mcp_servers.{server_name}.bearer_token_env_var="{bearer_env}"',
            "-c",
            f"mcp_servers.{server_name}.required=true",
            "-c",
            f"mcp_servers.{server_name}.enabled=true",
        ]

    def build_run_env(
        self, token: str, mcp_url: str, connection: ConnectionSnapshot | None
    ) -> dict[str, str]:
        env = dict(os.environ)
        env[self._settings.mcp.bearer_env_var] = token
        env[MCP_URL_ENV] = mcp_url
        env["SQLGATE_ACTIVE_DB_KIND"] = connection.kind if connection else ""

        host = port = user = name = ""
        use_tls = False
        if connection is not None:
            if connection.kind in ("mysql", "postgres"):
                host, port, user, name = (
                    connection.host,
                    connection.port,
                    connection.user,
                    connection.db_name,
                )
                use_tls = connection.use_tls
            elif connection.kind == "sqlite":
                name = connection.file_path
            elif connection.kind == "bigquery":
                host, port, name = "bigquery.googleapis.com", "443", connection.project_id
                use_tls = True

        env["SQLGATE_ACTIVE_DB_HOST"] = host
        env["SQLGATE_ACTIVE_DB_PORT"] = port
        env["SQLGATE_ACTIVE_DB_USER"] = user
        env["SQLGATE_ACTIVE_DB_NAME"] = name
        env["SQLGATE_ACTIVE_DB_TLS"] = "1" if use_tls else "0"
        return env

    async def build_prompt(self, user_prompt: str, connection: ConnectionSnapshot | None) -> str:
        version = await self._resolve_connection_version(connection)
        tool_name = self._settings.mcp.tool_name
        return "\n".join(
            [
                "You are running inside the sqlgate database browser.",
                "",
                "Runtime context:",
                f"- Connection: {connection.describe() if connection else 'none'}",
                f"- Database version: {version or 'unknown'}",
                "",
                "Execution rules:",
                f"- Use MCP tool `{tool_name}` for SQL execution.",
                "- Write statements wait for explicit user approval.",
                "- Return end-user output as concise Markdown.",
                "- Do not output raw JSON event objects.",
                "",
                "User request:",
                user_prompt,
            ]
        )

    async def _resolve_connection_version(self, connection: ConnectionSnapshot | None) -> str:
        if connection is None:
            return ""
        version = getattr(self._bridge.gateway, "version", None)
        if version is None:
            return ""
        try:
            return str(await version(connection))
        except Exception as e:
            logger.warning("failed to resolve DB version for prompt context: %s", e)
            return ""

    def upsert_managed_project_config(self, project_dir: Path) -> None:
        """Write (or refresh) the agent's MCP server entry in ``.codex/config.toml``.

        Only the delimited managed block is replaced; user content is preserved.
        """
        codex_dir = project_dir / ".codex"
        codex_dir.mkdir(parents=True, exist_ok=True, mode=0o750)
        config_path = codex_dir / "config.toml"
        current = config_path.read_text(encoding="utf-8") if config_path.exists() else ""

        without_managed = _MANAGED_BLOCK_RE.sub("", current).rstrip()
        managed_block = self._build_managed_config_block()
        updated = (
            f"{without_managed}\n\n{managed_block}\n" if without_managed else f"{managed_block}\n"
        )
        if updated == current:
            return

        config_path.write_text(updated, encoding="utf-8")
        config_path.chmod(0o600)

    def _build_managed_config_block(self) -> str:
        server_name = self._settings.mcp.server_name
        return "\n".join(
            [
                MANAGED_BLOCK_START,
                f"[mcp_servers.{server_name}]",
                f'url = "{self._endpoint.mcp_url}"',
                f'bearer_token_env_var = "{self._settings.mcp.bearer_env_var}"',
                "required = true",
                "enabled = true",
                MANAGED_BLOCK_END,
            ]
        )

    async def _watch_run(self, run: AgentRun) -> None:
        exit_code = -1
        error_message = ""
        process = run.process
        readers: list[asyncio.Task[None]] = []

        try:
            if process.stdout is None or process.stderr is None:
                raise RuntimeError("agent process was started without output pipes")
            readers = [
                asyncio.create_task(self._consume_stream(run.run_id, "stdout", process.stdout)),
                asyncio.create_task(self._consume_stream(run.run_id, "stderr", process.stderr)),
            ]
            await asyncio.gather(*readers)
            exit_code = await process.wait()
        except Exception as e:
            error_message = str(e) or type(e).__name__
            logger.error("agent run failed (%s): %s", run.run_id, error_message)
            for reader in readers:
                reader.cancel()
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            exit_code = await process.wait()
        finally:
            self._bridge.revoke_run(run.run_id)
            self._runs.pop(run.run_id, None)

        if run.cancelled:
            self._emit(RunStatusEvent(run_id=run.run_id, status="cancelled", exit_code=exit_code))
        elif error_message or exit_code != 0:
            self._emit(
                RunStatusEvent(
                    run_id=run.run_id,
                    status="failed",
                    exit_code=exit_code,
                    error=error_message or f"agent exited with code {exit_code}",
                )
            )
        else:
            self._emit(RunStatusEvent(run_id=run.run_id, status="completed", exit_code=exit_code))

    async def _consume_stream(
        self, run_id: str, source: RunEventSource, stream: asyncio.StreamReader
    ) -> None:
        async for raw_line in stream:
            line = raw_line.decode("utf-8", errors="replace").strip()
            if line:
                self._emit_run_event(run_id, source, line)

    def _emit_run_event(self, run_id: str, source: RunEventSource, raw: str) -> None:
        clipped = clip_text(raw, self._settings.agent.event_clip_chars)
        if source == "stderr":
            logger.warning("[agent:%s] %s: %s", run_id, source, clipped)
        else:
            logger.info("[agent:%s] %s: %s", run_id, source, clipped)

        parsed: JsonValue | None
        try:
            parsed = json.loads(raw)
        except ValueError:
            parsed = None

        self._emit(RunOutputEvent(run_id=run_id, source=source, raw=raw, parsed=parsed))

    def _emit(self, event: BridgeEvent) -> None:
        self._bridge.events.emit(event)
