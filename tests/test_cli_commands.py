"""Tests for CLI command parsing and the classify command."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import pytest

from sqlgate.cli.classify import run_classify
from sqlgate.cli.logs import NoisyShutdownFilter
from sqlgate.cli.main import build_parser, main
from sqlgate.cli.run import run_agent, status_exit_code
from sqlgate.cli.serve import run_serve, sqlite_connection
from sqlgate.models.events import RunStatusEvent


def test_serve_command_parsing() -> None:
    parser = build_parser()
    args = parser.parse_args(["serve", "--port", "8765", "--sqlite", "app.db"])

    assert args.command == "serve"
    assert args.port == 8765
    assert args.host is None
    assert args.sqlite == Path("app.db")
    assert args.func is run_serve


def test_run_command_parsing() -> None:
    parser = build_parser()
    args = parser.parse_args(["run", "--sqlite", "app.db", "--yes", "how many rows?"])

    assert args.command == "run"
    assert args.prompt == "how many rows?"
    assert args.yes is True
    assert args.agent is None
    assert args.func is run_agent


def test_classify_command_parsing() -> None:
    parser = build_parser()
    args = parser.parse_args(["classify", "SELECT 1"])

    assert args.sql == "SELECT 1"
    assert args.func is run_classify


def test_no_command_prints_help() -> None:
    assert main([]) == 2


def test_classify_exit_codes(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["classify", "DELETE FROM t"]) == 0
    assert "write" in capsys.readouterr().out

    assert main(["classify", "SELECT 1; SELECT 2"]) == 1


def test_sqlite_connection_snapshot(tmp_path: Path) -> None:
    assert sqlite_connection(None) is None

    snapshot = sqlite_connection(tmp_path / "app.db")
    assert snapshot is not None
    assert snapshot.kind == "sqlite"
    assert snapshot.file_path == str((tmp_path / "app.db").resolve())


@pytest.mark.parametrize(
    ("status", "exit_code", "expected"),
    [
        ("completed", 0, 0),
        ("cancelled", -9, 130),
        ("failed", 3, 3),
        ("failed", -1, 1),
        ("failed", None, 1),
    ],
)
def test_status_exit_code(status: str, exit_code: int | None, expected: int) -> None:
    event = RunStatusEvent.model_validate({"runId": "r", "status": status, "exitCode": exit_code})
    assert status_exit_code(event) == expected


def _record_with_exc(exc: BaseException) -> logging.LogRecord:
    return logging.LogRecord(
        name="test",
        level=logging.ERROR,
        pathname=__file__,
        lineno=1,
        msg="boom",
        args=(),
        exc_info=(type(exc), exc, None),
    )


def test_noisy_shutdown_filter() -> None:
    noisy_filter = NoisyShutdownFilter()
    assert noisy_filter.filter(_record_with_exc(KeyboardInterrupt())) is False
    assert noisy_filter.filter(_record_with_exc(asyncio.CancelledError())) is False
    group = BaseExceptionGroup("shutdown", [KeyboardInterrupt(), asyncio.CancelledError()])
    assert noisy_filter.filter(_record_with_exc(group)) is False
    assert noisy_filter.filter(_record_with_exc(ValueError("nope"))) is True
