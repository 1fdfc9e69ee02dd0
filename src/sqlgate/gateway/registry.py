"""Gateway registry for dispatching statements by connection kind."""

from __future__ import annotations

from sqlgate.errors import GatewayError
from sqlgate.gateway.interface import SQLGateway, SQLResult
from sqlgate.gateway.sqlite import SQLiteGateway
from sqlgate.models.connection import ConnectionSnapshot


class GatewayRegistry:
    """Routes each call to the gateway registered for ``connection.kind``.

    Itself satisfies ``SQLGateway`` so the bridge only ever holds one gateway.
    """

    def __init__(self, gateways: dict[str, SQLGateway] | None = None) -> None:
        self._gateways: dict[str, SQLGateway] = {}
        for kind, gateway in (gateways or {}).items():
            self.register_gateway(kind, gateway)

    def register_gateway(self, kind: str, gateway: SQLGateway) -> None:
        self._gateways[kind.lower().strip()] = gateway

    def get_gateway(self, kind: str) -> SQLGateway:
        gateway = self._gateways.get(kind.lower().strip())
        if gateway is None:
            raise GatewayError(f"unsupported connection kind '{kind}'")
        return gateway

    def list_kinds(self) -> list[str]:
        return sorted(self._gateways)

    async def execute(self, connection: ConnectionSnapshot, statement: str) -> SQLResult:
        return await self.get_gateway(connection.kind).execute(connection, statement)

    async def version(self, connection: ConnectionSnapshot) -> str:
        return await self.get_gateway(connection.kind).version(connection)


def default_gateway_registry() -> GatewayRegistry:
    """Registry with the gateways that ship with sqlgate (SQLite only)."""
    return GatewayRegistry({"sqlite": SQLiteGateway()})
