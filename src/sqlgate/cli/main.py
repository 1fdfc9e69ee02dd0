from __future__ import annotations

import argparse
import os

from sqlgate.cli.classify import configure_parser as configure_classify
from sqlgate.cli.run import configure_parser as configure_run
from sqlgate.cli.serve import configure_parser as configure_serve


def build_parser() -> argparse.ArgumentParser:
    from sqlgate import __version__

    parser = argparse.ArgumentParser(
        prog="sqlgate",
        description="sqlgate CLI (agent SQL bridge with write approvals)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Print version and exit",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Print full traceback on errors (or set SQLGATE_TRACE=1)",
    )
    subparsers = parser.add_subparsers(dest="command")

    configure_serve(subparsers)
    configure_run(subparsers)
    configure_classify(subparsers)

    return parser


def _error_tip(exc: BaseException) -> str:
    message = str(exc)
    if isinstance(exc, FileNotFoundError) and "sqlgate.toml" in message:
        return "Check that your config file path is correct."
    if "failed to start agent" in message:
        return "Install the agent CLI or point SQLGATE_AGENT_PATH at it."
    if "loopback" in message:
        return "The bridge only listens on 127.0.0.1, ::1 or localhost."
    return "re-run with --trace to see the full traceback."


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 2

    want_trace = bool(getattr(args, "trace", False)) or os.environ.get("SQLGATE_TRACE") in {
        "1",
        "true",
        "TRUE",
        "yes",
        "YES",
    }
    try:
        return int(args.func(args))
    except KeyboardInterrupt:
        return 130
    except Exception as exc:
        if want_trace:
            from rich.console import Console

            Console(stderr=True).print_exception()
        else:
            from sqlgate.cli.ui import print_error

            print_error(type(exc).__name__, str(exc), tip=_error_tip(exc))
        return 1
