"""Contract for the per-vendor SQL execution gateway.

The bridge treats the gateway as a black box: it hands over the run's
connection snapshot and a single normalized statement and gets back a result
or a ``GatewayError`` whose message is shown to the agent verbatim.
"""

from __future__ import annotations

from typing import Protocol

from pydantic import BaseModel, ConfigDict, Field, JsonValue

from sqlgate.models.connection import ConnectionSnapshot


class SQLResult(BaseModel):
    """Outcome of one statement.

    Row-returning statements fill ``columns``/``rows``; others report
    ``rows_affected`` and optionally a driver ``message``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    columns: list[str] | None = None
    rows: list[list[JsonValue]] | None = None
    rows_affected: int | None = Field(default=None, alias="rowsAffected")
    message: str | None = None

    def to_payload(self) -> dict[str, JsonValue]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SQLGateway(Protocol):
    """Executes SQL against the database described by a connection snapshot."""

    async def execute(self, connection: ConnectionSnapshot, statement: str) -> SQLResult:
        """Run ``statement``.

        Raises:
            GatewayError: The database rejected the statement or is unreachable.
        """
        ...

    async def version(self, connection: ConnectionSnapshot) -> str:
        """Return the server version string (used for agent prompt context)."""
        ...
