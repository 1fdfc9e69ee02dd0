"""Tests for the SQLite gateway and gateway registry."""

from __future__ import annotations

import sqlite3
from contextlib import closing
from pathlib import Path

import pytest

from sqlgate.errors import GatewayError
from sqlgate.gateway import GatewayRegistry, SQLiteGateway, default_gateway_registry
from sqlgate.models.connection import ConnectionSnapshot


@pytest.mark.asyncio
async def test_select_returns_columns_and_rows(sqlite_connection: ConnectionSnapshot) -> None:
    result = await SQLiteGateway().execute(sqlite_connection, "SELECT id, name FROM t ORDER BY id")

    assert result.columns == ["id", "name"]
    assert result.rows == [[1, "alpha"], [2, "beta"]]
    assert result.rows_affected is None


@pytest.mark.asyncio
async def test_update_reports_rows_affected_and_commits(
    sqlite_connection: ConnectionSnapshot, sqlite_db: Path
) -> None:
    result = await SQLiteGateway().execute(sqlite_connection, "UPDATE t SET x = 1")

    assert result.to_payload() == {"rowsAffected": 2}
    with closing(sqlite3.connect(sqlite_db)) as conn:
        assert conn.execute("SELECT SUM(x) FROM t").fetchone()[0] == 2


@pytest.mark.asyncio
async def test_blob_values_are_base64(sqlite_connection: ConnectionSnapshot) -> None:
    result = await SQLiteGateway().execute(sqlite_connection, "SELECT X'0102' AS b")
    assert result.rows == [["AQI="]]


@pytest.mark.asyncio
async def test_database_errors_become_gateway_errors(
    sqlite_connection: ConnectionSnapshot,
) -> None:
    with pytest.raises(GatewayError, match="no such table"):
        await SQLiteGateway().execute(sqlite_connection, "SELECT * FROM missing")


@pytest.mark.asyncio
async def test_rejects_non_sqlite_snapshots() -> None:
    postgres = ConnectionSnapshot(kind="postgres", host="db", port="5432", user="u", db_name="d")
    with pytest.raises(GatewayError):
        await SQLiteGateway().execute(postgres, "SELECT 1")

    with pytest.raises(GatewayError, match="no file path"):
        await SQLiteGateway().execute(ConnectionSnapshot(kind="sqlite"), "SELECT 1")


@pytest.mark.asyncio
async def test_version(sqlite_connection: ConnectionSnapshot) -> None:
    version = await SQLiteGateway().version(sqlite_connection)
    assert version.startswith("SQLite 3.")


@pytest.mark.asyncio
async def test_registry_dispatches_by_kind(sqlite_connection: ConnectionSnapshot) -> None:
    registry = default_gateway_registry()
    assert registry.list_kinds() == ["sqlite"]

    result = await registry.execute(sqlite_connection, "SELECT COUNT(*) AS n FROM t")
    assert result.rows == [[2]]


@pytest.mark.asyncio
async def test_registry_rejects_unsupported_kind() -> None:
    registry = GatewayRegistry()
    mysql = ConnectionSnapshot(kind="mysql", host="db")

    with pytest.raises(GatewayError, match="unsupported connection kind 'mysql'"):
        await registry.execute(mysql, "SELECT 1")


def test_describe_never_includes_password() -> None:
    snapshot = ConnectionSnapshot(
        kind="postgres", host="db", port="5432", user="app", password="hunter2", db_name="prod"
    )
    assert snapshot.describe() == "postgres app@db:5432/prod"
    assert "hunter2" not in repr(snapshot)
