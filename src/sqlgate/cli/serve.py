from __future__ import annotations

import argparse
import threading
from pathlib import Path

from sqlgate.app import create_app
from sqlgate.bridge import AgentSQLBridge
from sqlgate.config import load_settings, resolve_config_path
from sqlgate.models.connection import ConnectionSnapshot
from sqlgate.runs.lifecycle import ActiveConnection, RunLifecycleManager
from sqlgate.server import BridgeServer


def configure_parser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("serve", help="Start the agent SQL bridge and control API")
    parser.set_defaults(func=run_serve)
    parser.add_argument("--config", type=Path, help="Path to sqlgate.toml")
    parser.add_argument("--host", default=None, help="Loopback host to bind")
    parser.add_argument("--port", type=int, default=None, help="Port to bind (0 = ephemeral)")
    parser.add_argument("--sqlite", type=Path, help="SQLite database used as the active connection")


def sqlite_connection(path: Path | None) -> ConnectionSnapshot | None:
    if path is None:
        return None
    return ConnectionSnapshot(kind="sqlite", file_path=str(path.expanduser().resolve()))


def run_serve(args: argparse.Namespace) -> int:
    from sqlgate.cli.logs import configure_logging
    from sqlgate.cli.ui import console, print_banner

    configure_logging()

    settings = load_settings(args.config, cli_overrides={"host": args.host, "port": args.port})
    config_path = resolve_config_path(args.config)
    connection = sqlite_connection(args.sqlite)

    bridge = AgentSQLBridge(settings=settings)
    app = create_app(bridge=bridge)
    server = BridgeServer(app, host=settings.server.host, port=settings.server.port)
    app.state.lifecycle = RunLifecycleManager(
        bridge, endpoint=server, connections=ActiveConnection(connection)
    )

    with server:
        print_banner(
            mcp_url=server.mcp_url,
            control_token=app.state.control_token,
            config_path=config_path,
            connection=connection.describe() if connection else "none",
        )
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            console.print()
    return 0
