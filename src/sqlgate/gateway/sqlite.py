from __future__ import annotations

import asyncio
import base64
import logging
import sqlite3
from contextlib import closing
from typing import Any

from pydantic import JsonValue

from sqlgate.errors import GatewayError
from sqlgate.gateway.interface import SQLResult
from sqlgate.models.connection import ConnectionSnapshot

logger = logging.getLogger(__name__)


def _to_json_value(value: Any) -> JsonValue:
    if isinstance(value, bytes | bytearray | memoryview):
        return base64.b64encode(bytes(value)).decode("ascii")
    if value is None or isinstance(value, str | int | float | bool):
        return value
    return str(value)


class SQLiteGateway:
    """Gateway for ``sqlite`` snapshots using the stdlib driver.

    Each call opens its own connection in a worker thread, so concurrent runs
    never share a cursor.
    """

    def __init__(self, *, timeout_s: float = 5.0) -> None:
        self._timeout_s = timeout_s

    def _connect(self, connection: ConnectionSnapshot) -> sqlite3.Connection:
        if connection.kind != "sqlite":
            raise GatewayError(f"sqlite gateway cannot serve '{connection.kind}' connections")
        if not connection.file_path:
            raise GatewayError("sqlite connection has no file path")
        try:
            return sqlite3.connect(connection.file_path, timeout=self._timeout_s)
        except sqlite3.Error as e:
            raise GatewayError(str(e)) from e

    def _execute_sync(self, connection: ConnectionSnapshot, statement: str) -> SQLResult:
        with closing(self._connect(connection)) as conn:
            try:
                cursor = conn.execute(statement)
                if cursor.description is not None:
                    columns = [col[0] for col in cursor.description]
                    rows = [[_to_json_value(v) for v in row] for row in cursor.fetchall()]
                    conn.commit()
                    return SQLResult(columns=columns, rows=rows)
                conn.commit()
                return SQLResult(rows_affected=max(cursor.rowcount, 0))
            except sqlite3.Error as e:
                logger.warning("sqlite statement failed: %s", e)
                raise GatewayError(str(e)) from e

    def _version_sync(self, connection: ConnectionSnapshot) -> str:
        with closing(self._connect(connection)) as conn:
            row = conn.execute("SELECT sqlite_version()").fetchone()
        return f"SQLite {row[0]}" if row else "SQLite"

    async def execute(self, connection: ConnectionSnapshot, statement: str) -> SQLResult:
        return await asyncio.to_thread(self._execute_sync, connection, statement)

    async def version(self, connection: ConnectionSnapshot) -> str:
        return await asyncio.to_thread(self._version_sync, connection)
