from __future__ import annotations

import argparse
import asyncio
import logging
from pathlib import Path

from sqlgate.app import create_app
from sqlgate.bridge import AgentSQLBridge
from sqlgate.cli.serve import sqlite_connection
from sqlgate.config import load_settings
from sqlgate.config.settings import Settings
from sqlgate.errors import ControlPlaneError
from sqlgate.models.connection import ConnectionSnapshot
from sqlgate.models.events import (
    ApprovalRequestedEvent,
    ApprovalResolvedEvent,
    BridgeEvent,
    RunOutputEvent,
    RunStatusEvent,
)
from sqlgate.policy.approvals import ApprovalDecision
from sqlgate.runs.lifecycle import ActiveConnection, RunLifecycleManager
from sqlgate.server import BridgeServer

_TERMINAL_STATUSES = {"completed", "failed", "cancelled"}


def configure_parser(subparsers: argparse._SubParsersAction[argparse.ArgumentParser]) -> None:
    parser = subparsers.add_parser("run", help="Run the agent once against a database")
    parser.set_defaults(func=run_agent)
    parser.add_argument("prompt", help="What the agent should do")
    parser.add_argument("--config", type=Path, help="Path to sqlgate.toml")
    parser.add_argument("--sqlite", type=Path, help="SQLite database the agent may query")
    parser.add_argument("--agent", default=None, help="Agent executable (overrides config)")
    parser.add_argument(
        "--yes",
        "-y",
        action="store_true",
        help="Approve every write statement without prompting",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show agent output lines")


def status_exit_code(event: RunStatusEvent) -> int:
    if event.status == "completed":
        return 0
    if event.status == "cancelled":
        return 130
    return event.exit_code if event.exit_code and event.exit_code > 0 else 1


def run_agent(args: argparse.Namespace) -> int:
    from sqlgate.cli.logs import configure_logging

    configure_logging(logging.INFO if args.verbose else logging.WARNING)

    settings = load_settings(args.config, cli_overrides={"agent_executable": args.agent})
    connection = sqlite_connection(args.sqlite)
    return asyncio.run(
        _run_agent(
            settings, connection, args.prompt, auto_approve=args.yes, verbose=args.verbose
        )
    )


async def _run_agent(
    settings: Settings,
    connection: ConnectionSnapshot | None,
    prompt: str,
    *,
    auto_approve: bool,
    verbose: bool,
) -> int:
    bridge = AgentSQLBridge(settings=settings)
    app = create_app(bridge=bridge)
    server = BridgeServer(app, host=settings.server.host, port=settings.server.port)
    lifecycle = RunLifecycleManager(
        bridge, endpoint=server, connections=ActiveConnection(connection)
    )
    app.state.lifecycle = lifecycle

    events = bridge.events.subscribe()
    try:
        run_id = await lifecycle.start_run(prompt)
        while True:
            event = await events.get()
            if event.run_id != run_id:
                continue
            if isinstance(event, RunStatusEvent) and event.status in _TERMINAL_STATUSES:
                _print_status(event)
                return status_exit_code(event)
            await _handle_event(bridge, event, auto_approve=auto_approve, verbose=verbose)
    finally:
        bridge.events.unsubscribe(events)
        await lifecycle.aclose()
        server.stop()


async def _handle_event(
    bridge: AgentSQLBridge, event: BridgeEvent, *, auto_approve: bool, verbose: bool
) -> None:
    from rich.markup import escape
    from rich.prompt import Confirm
    from rich.text import Text

    from sqlgate.cli.ui import console, print_approval_request

    if isinstance(event, ApprovalRequestedEvent):
        print_approval_request(
            run_id=event.run_id, approval_id=event.approval_id, query=event.query
        )
        if auto_approve:
            approved = True
        else:
            approved = await asyncio.to_thread(
                Confirm.ask, "Execute this statement?", console=console, default=False
            )
        decision = ApprovalDecision.approved if approved else ApprovalDecision.rejected
        try:
            bridge.resolve_approval(event.run_id, event.approval_id, decision)
        except ControlPlaneError as e:
            # The run may have ended while the prompt was open.
            console.print(f"[warning]{escape(str(e))}[/warning]")

    elif isinstance(event, ApprovalResolvedEvent):
        style = "success" if event.decision == ApprovalDecision.approved.value else "warning"
        suffix = f" ({escape(event.reason)})" if event.reason else ""
        console.print(f"[{style}]approval {event.approval_id}: {event.decision}{suffix}[/{style}]")

    elif isinstance(event, RunOutputEvent):
        if verbose or event.source == "stderr":
            line = Text.assemble((f"{event.source} ", "dim"), event.raw)
            console.print(line, highlight=False)

    elif isinstance(event, RunStatusEvent):
        console.print(f"[info]run {event.run_id} {event.status}[/info]")


def _print_status(event: RunStatusEvent) -> None:
    from sqlgate.cli.ui import print_error, print_success

    if event.status == "completed":
        print_success(f"agent run {event.run_id} completed")
    elif event.status == "cancelled":
        print_error("Run cancelled", f"agent run {event.run_id} was cancelled")
    else:
        print_error("Run failed", event.error or f"agent run {event.run_id} failed")
